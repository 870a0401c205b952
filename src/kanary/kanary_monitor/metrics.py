"""
控制器指标模块

提供轻量级的计数器、仪表盘与延迟直方图，通过 /metrics 以JSON摘要导出。
"""

import logging
import threading
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

# 直方图只保留最近的样本
MAX_HISTOGRAM_SAMPLES = 1000


def _label_key(name: str, labels: Optional[dict]) -> str:
    if not labels:
        return name
    rendered = ",".join(f'{k}="{v}"' for k, v in sorted(labels.items()))
    return f"{name}{{{rendered}}}"


class ControllerMetrics:
    """线程安全的控制器指标集合"""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: Dict[str, float] = {}
        self._gauges: Dict[str, float] = {}
        self._histograms: Dict[str, List[float]] = {}

    def increment_counter(
        self, counter_name: str, labels: Optional[dict] = None, amount: float = 1
    ) -> None:
        """
        增加计数器

        Args:
            counter_name: 计数器名称
            labels: 标签字典
            amount: 增量
        """
        key = _label_key(counter_name, labels)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + amount

    def set_gauge(self, gauge_name: str, value: float, labels: Optional[dict] = None) -> None:
        """
        设置仪表盘值

        Args:
            gauge_name: 仪表盘名称
            value: 值
            labels: 标签字典
        """
        key = _label_key(gauge_name, labels)
        with self._lock:
            self._gauges[key] = value

    def remove_gauge(self, gauge_name: str, labels: Optional[dict] = None) -> None:
        with self._lock:
            self._gauges.pop(_label_key(gauge_name, labels), None)

    def observe_histogram(
        self, histogram_name: str, value: float, labels: Optional[dict] = None
    ) -> None:
        """
        记录直方图观测值

        Args:
            histogram_name: 直方图名称
            value: 观测值
            labels: 标签字典
        """
        key = _label_key(histogram_name, labels)
        with self._lock:
            samples = self._histograms.setdefault(key, [])
            samples.append(value)
            if len(samples) > MAX_HISTOGRAM_SAMPLES:
                del samples[: len(samples) - MAX_HISTOGRAM_SAMPLES]

    def get_counter(self, counter_name: str, labels: Optional[dict] = None) -> float:
        with self._lock:
            return self._counters.get(_label_key(counter_name, labels), 0)

    def get_gauge(self, gauge_name: str, labels: Optional[dict] = None) -> Optional[float]:
        with self._lock:
            return self._gauges.get(_label_key(gauge_name, labels))

    def get_metrics_summary(self) -> dict:
        """
        获取指标摘要

        Returns:
            包含所有指标摘要的字典
        """
        with self._lock:
            histograms = {}
            for key, samples in self._histograms.items():
                if samples:
                    histograms[key] = {
                        "count": len(samples),
                        "min": min(samples),
                        "max": max(samples),
                        "avg": sum(samples) / len(samples),
                    }
            return {
                "counters": dict(self._counters),
                "gauges": dict(self._gauges),
                "histograms": histograms,
            }

    def reset_metrics(self) -> None:
        """重置所有指标"""
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()
