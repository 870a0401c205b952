"""发布存储

按rollout_id索引的记录，每条记录持有自己的锁、取消事件和控制循环任务。
终态记录超过保留期后由prune()清除。
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, List

from kanary.kanary_utils.errors import RolloutNotFound
from kanary.models import Phase, RolloutPlan, RolloutState

logger = logging.getLogger(__name__)


@dataclass
class RolloutRecord:
    """一个发布的运行时记录"""

    state: RolloutState
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    cancel: asyncio.Event = field(default_factory=asyncio.Event)
    task: asyncio.Task[Any] | None = None
    # 上一次仍在工作线程中执行的写入
    inflight: asyncio.Future[Any] | None = None
    # 因外部冲突暂停；恢复后下一次写入接管集群当前状态
    conflicted: bool = False
    adopt_next: bool = False
    last_phase: Phase | None = None

    @property
    def rollout_id(self) -> str:
        return self.state.rollout_id

    @property
    def loop_running(self) -> bool:
        return self.task is not None and not self.task.done()


class RolloutStore:
    """发布记录存储"""

    def __init__(self) -> None:
        self._records: dict[str, RolloutRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, rollout_id: object) -> bool:
        return rollout_id in self._records

    def add(self, record: RolloutRecord) -> None:
        if record.rollout_id in self._records:
            raise ValueError(f"Rollout '{record.rollout_id}' already exists")
        self._records[record.rollout_id] = record

    def get(self, rollout_id: str) -> RolloutRecord:
        record = self._records.get(rollout_id)
        if record is None:
            raise RolloutNotFound(f"Rollout '{rollout_id}' not found")
        return record

    def find_active(self, service: str, namespace: str) -> RolloutRecord | None:
        """查找同一服务上未结束的发布"""
        for record in self._records.values():
            plan = record.state.plan
            if (
                plan.service == service
                and plan.namespace == namespace
                and not record.state.is_terminal
            ):
                return record
        return None

    def find_sharing_ingress(self, plan: RolloutPlan) -> RolloutRecord | None:
        """查找与计划共用Ingress的未结束发布"""
        wanted = {plan.stable_ingress, plan.canary_ingress}
        for record in self._records.values():
            other = record.state.plan
            if (
                other.namespace == plan.namespace
                and wanted & {other.stable_ingress, other.canary_ingress}
                and not record.state.is_terminal
            ):
                return record
        return None

    def list(self) -> List[RolloutRecord]:
        return sorted(self._records.values(), key=lambda r: r.state.created_at)

    def prune(self, now: float, retention: float) -> List[str]:
        """删除已结束且超过保留期的记录，返回被删除的ID"""
        expired = [
            rollout_id
            for rollout_id, record in self._records.items()
            if record.state.is_terminal
            and record.state.finished_at is not None
            and now - record.state.finished_at >= retention
            and not record.loop_running
        ]
        for rollout_id in expired:
            del self._records[rollout_id]
            logger.info(f"Pruned rollout {rollout_id} after retention")
        return expired
