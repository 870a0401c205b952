"""发布编排器

驱动完整的推进/回滚流程并提供 start/pause/resume/abort/status 控制接口。

每个发布运行一个独立的asyncio控制循环。循环的每次tick与所有运维命令
都持有该发布的锁，因此暂停、终止等命令在tick边界生效，不会打断正在进行的写入。
"""

import asyncio
import functools
import logging
import time
import uuid
from typing import Any, Awaitable, Callable, Iterable, List

from kanary.kanary_monitor.alerting import AlertHistory
from kanary.kanary_monitor.metrics import ControllerMetrics
from kanary.kanary_orchestrator.store import RolloutRecord, RolloutStore
from kanary.kanary_probe.probe import MetricsProbe
from kanary.kanary_reconciler.reconciler import ApplyResult, ManifestReconciler
from kanary.kanary_utils import config
from kanary.kanary_utils.errors import (
    ApplyError,
    ConflictError,
    PlanValidationError,
    ProbeUnavailable,
)
from kanary.kanary_utils.retry import retry_async
from kanary.kanary_weight.controller import Action, WeightController
from kanary.models import Phase, RolloutPlan, RolloutState

logger = logging.getLogger(__name__)


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, ApplyError) and error.retryable


def _consume_result(future: "asyncio.Future[Any]") -> None:
    # 超时后被遗弃的写入，其异常在此取走，避免事件循环报告未检索的异常
    if not future.cancelled():
        future.exception()


class RolloutOrchestrator:
    """发布编排器"""

    def __init__(
        self,
        reconciler: ManifestReconciler,
        probe: MetricsProbe,
        controller: WeightController | None = None,
        clock: Callable[[], float] = time.time,
        run_loops: bool = True,
        apply_timeout: float | None = None,
        retry_attempts: int | None = None,
        retry_base_delay: float | None = None,
        retention: float | None = None,
        metrics: ControllerMetrics | None = None,
        alerts: AlertHistory | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.reconciler = reconciler
        self.probe = probe
        self.controller = controller or WeightController()
        self.clock = clock
        self.run_loops = run_loops
        self.apply_timeout = (
            apply_timeout if apply_timeout is not None else config.get_apply_timeout()
        )
        self.retry_attempts = (
            retry_attempts if retry_attempts is not None else config.get_retry_attempts()
        )
        self.retry_base_delay = (
            retry_base_delay
            if retry_base_delay is not None
            else config.get_retry_base_delay()
        )
        self.retention = (
            retention if retention is not None else config.get_retention_seconds()
        )
        self.metrics = metrics or ControllerMetrics()
        self.alerts = alerts or AlertHistory()
        self.store = RolloutStore()
        self._sleep = sleep
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    # 控制接口

    async def start(self, plan: RolloutPlan) -> RolloutState:
        """
        开始一个发布

        异常:
            PlanValidationError: 计划无效或该服务已有进行中的发布（不创建状态）
            ConflictError / ApplyError: 初始权重写入失败，发布被标记为Failed
        """
        plan.validate()
        self.prune()
        active = self.store.find_active(plan.service, plan.namespace)
        if active is not None:
            raise PlanValidationError(
                f"service {plan.namespace}/{plan.service} already has active rollout "
                f"{active.rollout_id}",
                [f"active rollout {active.rollout_id}"],
            )
        sharing = self.store.find_sharing_ingress(plan)
        if sharing is not None:
            raise PlanValidationError(
                f"ingress in {plan.namespace} is already managed by active rollout "
                f"{sharing.rollout_id}",
                [f"ingress shared with active rollout {sharing.rollout_id}"],
            )

        now = self.clock()
        state = RolloutState(
            rollout_id=f"{plan.service}-{uuid.uuid4().hex[:8]}",
            plan=plan,
            created_at=now,
            last_transition=now,
        )
        record = RolloutRecord(state=state, last_phase=state.phase)
        self.store.add(record)
        self.metrics.increment_counter("rollouts_started_total")
        logger.info(
            f"Starting rollout {state.rollout_id}: {plan.service} "
            f"{plan.stable_revision} -> {plan.canary_revision}"
        )

        async with record.lock:
            try:
                await self._apply(record, plan.initial_weight, adopt=True)
            except ConflictError as e:
                self.controller.fail(state, f"initial apply failed: {e}", self.clock())
                self._after_change(record)
                raise
            except ApplyError as e:
                self.controller.fail(
                    state, f"initial apply failed: {e}", self.clock(), e.live_weight
                )
                self._after_change(record)
                raise
            self.controller.begin(state, self.clock())
            self._after_change(record)

        self._ensure_loop(record)
        return state.snapshot()

    async def pause(self, rollout_id: str) -> RolloutState:
        """暂停推进；已暂停时为空操作，终态时抛出InvalidTransitionError"""
        record = self.store.get(rollout_id)
        async with record.lock:
            self.controller.pause(record.state, "paused by operator", self.clock())
            self._after_change(record)
        return record.state.snapshot()

    async def resume(self, rollout_id: str) -> RolloutState:
        """恢复推进；已在推进中时为空操作，终态时抛出InvalidTransitionError"""
        record = self.store.get(rollout_id)
        async with record.lock:
            if self.controller.resume(record.state, self.clock()):
                # 运维人员处理完冲突后恢复，下一次写入以集群现状为基准
                record.adopt_next = record.conflicted
                record.conflicted = False
            self._after_change(record)
        self._ensure_loop(record)
        return record.state.snapshot()

    async def abort(self, rollout_id: str) -> RolloutState:
        """
        强制回滚到0权重；终态发布上为空操作，直接返回当前状态

        终止以运维人员的意图为准，接管集群现状后写入0权重。
        写入失败时发布被标记为Failed并重新抛出ApplyError。
        """
        record = self.store.get(rollout_id)
        async with record.lock:
            state = record.state
            if state.is_terminal:
                return state.snapshot()
            try:
                await self._apply(record, 0, adopt=True)
            except ApplyError as e:
                self.controller.fail(
                    state, f"abort failed: {e}", self.clock(), e.live_weight
                )
                self._after_change(record)
                raise
            record.conflicted = False
            self.controller.abort(state, "aborted by operator", self.clock())
            self._after_change(record)
        return state.snapshot()

    def status(self, rollout_id: str) -> RolloutState:
        return self.store.get(rollout_id).state.snapshot()

    def list(self) -> List[RolloutState]:
        self.prune()
        return [record.state.snapshot() for record in self.store.list()]

    def prune(self) -> List[str]:
        """清除超过保留期的终态发布及其仪表盘"""
        pruned = self.store.prune(self.clock(), self.retention)
        for rollout_id in pruned:
            labels = {"rollout": rollout_id}
            self.metrics.remove_gauge("canary_weight", labels)
            self.metrics.remove_gauge("stable_weight", labels)
        return pruned

    async def tick(self, rollout_id: str) -> RolloutState:
        """执行一次控制循环迭代（采样、决策、写入、落地）"""
        record = self.store.get(rollout_id)
        async with record.lock:
            await self._tick_locked(record)
        return record.state.snapshot()

    async def wait_for(
        self,
        rollout_id: str,
        phases: Iterable[Phase],
        poll_interval: float = 1.0,
        timeout: float | None = None,
    ) -> RolloutState:
        """等待发布进入给定阶段之一"""
        targets = set(phases)

        async def _poll() -> RolloutState:
            while True:
                state = self.status(rollout_id)
                if state.phase in targets:
                    return state
                await asyncio.sleep(poll_interval)

        return await asyncio.wait_for(_poll(), timeout=timeout)

    async def shutdown(self) -> None:
        """停止所有控制循环"""
        self._closed = True
        tasks = []
        for record in self.store.list():
            record.cancel.set()
            if record.task is not None and not record.task.done():
                record.task.cancel()
                tasks.append(record.task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(f"Orchestrator stopped ({len(tasks)} loops cancelled)")

    # 内部实现

    def _ensure_loop(self, record: RolloutRecord) -> None:
        if not self.run_loops or self._closed or record.state.is_terminal:
            return
        if record.loop_running:
            return
        record.cancel.clear()
        record.task = asyncio.create_task(
            self._run_loop(record), name=f"rollout-{record.rollout_id}"
        )

    async def _run_loop(self, record: RolloutRecord) -> None:
        state = record.state
        logger.info(f"Control loop started for {state.rollout_id}")
        try:
            while not record.cancel.is_set():
                try:
                    await asyncio.wait_for(
                        record.cancel.wait(), timeout=state.plan.probe_interval
                    )
                    break
                except asyncio.TimeoutError:
                    pass
                async with record.lock:
                    if record.cancel.is_set() or state.is_terminal:
                        break
                    try:
                        await self._tick_locked(record)
                    except Exception as e:
                        logger.exception(f"Unexpected error in rollout {state.rollout_id}")
                        self.controller.fail(state, f"controller error: {e}", self.clock())
                        self._after_change(record)
                    if state.is_terminal:
                        break
        finally:
            logger.info(
                f"Control loop stopped for {state.rollout_id} ({state.phase.value})"
            )

    async def _sample(self, record: RolloutRecord, revision: str, now: float) -> bool:
        state = record.state
        try:
            sample = await self.probe.sample(state.plan, revision, key=state.rollout_id)
        except ProbeUnavailable:
            self.metrics.increment_counter(
                "probe_failures_total", {"revision": revision}
            )
            return False
        self.controller.record_sample(state, sample, now)
        return True

    async def _tick_locked(self, record: RolloutRecord) -> None:
        state = record.state
        if state.is_terminal or state.phase is Phase.PENDING:
            return
        plan = state.plan
        now = self.clock()

        await self._sample(record, plan.canary_revision, now)
        # stable版本的指标仅用于展示
        await self._sample(record, plan.stable_revision, now)
        self.controller.observe_health(
            state, self.probe.health(state.rollout_id, plan.canary_revision), now
        )

        if record.inflight is not None and not record.inflight.done():
            logger.warning(
                f"Rollout {state.rollout_id}: previous apply still in flight, skipping tick"
            )
            return

        decision = self.controller.evaluate(state, now)
        if decision.action is Action.HOLD:
            self._after_change(record)
            return

        if decision.weight != state.weight:
            try:
                await self._apply(record, decision.weight)
            except ConflictError as e:
                logger.error(f"Rollout {state.rollout_id}: {e}")
                record.conflicted = True
                self.controller.pause(state, f"conflict: {e}", now)
                self._after_change(record)
                return
            except ApplyError as e:
                self.controller.fail(
                    state, f"apply failed: {e}", self.clock(), e.live_weight
                )
                self._after_change(record)
                return

        self.controller.commit(state, decision, now)
        self._after_change(record)

    async def _await_inflight(self, record: RolloutRecord) -> None:
        inflight = record.inflight
        if inflight is None or inflight.done():
            return
        try:
            await asyncio.wait_for(asyncio.shield(inflight), timeout=self.apply_timeout)
        except asyncio.TimeoutError as e:
            raise ApplyError(
                f"previous apply for {record.rollout_id} still in flight"
            ) from e
        except Exception as e:
            # 上一次写入的失败已在它自己的调用中以超时上报
            logger.warning(f"Abandoned apply for {record.rollout_id} finished with error: {e}")

    async def _apply(
        self, record: RolloutRecord, weight: int, adopt: bool = False
    ) -> ApplyResult:
        state = record.state

        async def _attempt() -> ApplyResult:
            await self._await_inflight(record)
            loop = asyncio.get_running_loop()
            future = loop.run_in_executor(
                None,
                functools.partial(
                    self.reconciler.apply_weight,
                    state.plan,
                    weight,
                    state.rollout_id,
                    adopt or record.adopt_next,
                ),
            )
            future.add_done_callback(_consume_result)
            record.inflight = future
            started = time.monotonic()
            try:
                result = await asyncio.wait_for(
                    asyncio.shield(future), timeout=self.apply_timeout
                )
            except asyncio.TimeoutError as e:
                raise ApplyError(
                    f"apply of weight {weight} timed out after {self.apply_timeout}s"
                ) from e
            self.metrics.observe_histogram(
                "apply_duration_seconds", time.monotonic() - started
            )
            record.adopt_next = False
            return result

        try:
            return await retry_async(
                _attempt,
                attempts=self.retry_attempts,
                base_delay=self.retry_base_delay,
                retry_if=_is_retryable,
                sleep=self._sleep,
            )
        except (ApplyError, ConflictError) as e:
            self.metrics.increment_counter("apply_errors_total", {"kind": e.kind})
            raise

    def _after_change(self, record: RolloutRecord) -> None:
        state = record.state
        labels = {"rollout": state.rollout_id}
        self.metrics.set_gauge("canary_weight", state.weight, labels)
        self.metrics.set_gauge("stable_weight", state.stable_weight, labels)
        if state.phase is record.last_phase:
            return
        record.last_phase = state.phase
        self.metrics.increment_counter(
            "rollout_transitions_total", {"phase": state.phase.value}
        )
        if state.is_terminal:
            record.cancel.set()
            self.probe.reset(state.rollout_id)
            self.alerts.check_rollout(state)
