# -*- coding: utf-8 -*-
"""
指标探针

对修订版本采样并跟踪连续失败次数。
连续失败达到计划中的阈值后，该修订版本的健康状态变为Unknown，
由WeightController据此冻结权重推进。
"""
import asyncio
import logging
import math
import threading
import time
from typing import Callable, Dict, Tuple

from kanary.kanary_probe.sources import MetricsSource
from kanary.kanary_utils.errors import ProbeUnavailable
from kanary.models import Health, MetricSample, RolloutPlan

logger = logging.getLogger(__name__)


class MetricsProbe:
    """指标探针"""

    def __init__(
        self, source: MetricsSource, clock: Callable[[], float] = time.time
    ) -> None:
        self.source = source
        self._clock = clock
        self._lock = threading.Lock()
        self._failures: Dict[Tuple[str, str], int] = {}
        self._thresholds: Dict[Tuple[str, str], int] = {}

    async def sample(
        self, plan: RolloutPlan, revision: str, key: str = ""
    ) -> MetricSample:
        """
        采样一次

        参数:
            plan: 发布计划
            revision: 修订版本ID
            key: 失败计数的归属（通常为rollout_id）

        返回:
            MetricSample

        异常:
            ProbeUnavailable: 指标源不可用或返回了无效数值
        """
        slot = (key, revision)
        try:
            # 阻塞的HTTP查询放到工作线程，避免阻塞其他发布的控制循环
            success_ratio, latency_ms = await asyncio.to_thread(
                self.source.query, plan, revision
            )
            if not 0.0 <= success_ratio <= 1.0 or math.isnan(latency_ms):
                raise ProbeUnavailable(
                    f"invalid reading for {revision}: ratio={success_ratio} latency={latency_ms}"
                )
        except Exception as e:
            failures = self._record_failure(slot, plan.probe_failure_threshold)
            logger.warning(
                f"Probe failed for {revision} ({failures}/{plan.probe_failure_threshold}): {e}"
            )
            if isinstance(e, ProbeUnavailable):
                raise
            raise ProbeUnavailable(f"metrics source error for {revision}: {e}") from e

        with self._lock:
            self._failures[slot] = 0
            self._thresholds[slot] = plan.probe_failure_threshold
        return MetricSample(
            timestamp=self._clock(),
            revision=revision,
            success_ratio=float(success_ratio),
            latency_ms=float(latency_ms),
        )

    def _record_failure(self, slot: Tuple[str, str], threshold: int) -> int:
        with self._lock:
            self._failures[slot] = self._failures.get(slot, 0) + 1
            self._thresholds[slot] = threshold
            return self._failures[slot]

    def failures(self, key: str, revision: str) -> int:
        with self._lock:
            return self._failures.get((key, revision), 0)

    def health(self, key: str, revision: str) -> Health:
        """连续失败次数达到阈值即为Unknown"""
        with self._lock:
            slot = (key, revision)
            failures = self._failures.get(slot, 0)
            threshold = self._thresholds.get(slot, 1)
        return Health.UNKNOWN if failures >= threshold else Health.HEALTHY

    def reset(self, key: str) -> None:
        """清除某个发布的所有失败计数"""
        with self._lock:
            for slot in [s for s in self._failures if s[0] == key]:
                del self._failures[slot]
                self._thresholds.pop(slot, None)
