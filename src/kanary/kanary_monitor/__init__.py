"""
Kanary Monitor Module

控制器监控：存活/就绪检查、指标摘要和发布告警。
"""

from .alerting import AlertHistory
from .health_check import check_liveness, check_readiness, get_health_summary
from .metrics import ControllerMetrics

__all__ = [
    # Health check
    "check_liveness",
    "check_readiness",
    "get_health_summary",
    # Metrics
    "ControllerMetrics",
    # Alerting
    "AlertHistory",
]
