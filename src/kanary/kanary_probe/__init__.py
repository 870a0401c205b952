"""Kanary指标探针

对stable与canary修订版本采样成功率和延迟，并维护健康状态。
"""

from kanary.kanary_probe.probe import MetricsProbe
from kanary.kanary_probe.sources import (
    DEFAULT_LATENCY_QUERY,
    DEFAULT_SUCCESS_QUERY,
    MetricsSource,
    PrometheusSource,
    StaticSource,
)

__all__ = [
    "MetricsProbe",
    "MetricsSource",
    "PrometheusSource",
    "StaticSource",
    "DEFAULT_SUCCESS_QUERY",
    "DEFAULT_LATENCY_QUERY",
]
