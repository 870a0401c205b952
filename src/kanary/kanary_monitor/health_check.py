"""
健康检查模块

提供控制器存活与就绪状态检查功能。
"""

import logging
import time
from typing import TYPE_CHECKING, Any, Dict

if TYPE_CHECKING:
    from kanary.kanary_orchestrator.orchestrator import RolloutOrchestrator

logger = logging.getLogger(__name__)


def check_liveness() -> Dict[str, Any]:
    """
    检查进程存活

    Returns:
        存活状态字典
    """
    return {"status": "alive", "timestamp": time.time()}


def check_readiness(orchestrator: "RolloutOrchestrator") -> Dict[str, Any]:
    """
    检查控制器是否就绪

    Args:
        orchestrator: 发布编排器

    Returns:
        包含集群连通性、控制循环状态的字典
    """
    try:
        cluster_reachable = orchestrator.reconciler.cluster.ping()
    except Exception as e:
        logger.error(f"Error checking cluster connectivity: {e}")
        cluster_reachable = False

    records = orchestrator.store.list()
    active = [r for r in records if not r.state.is_terminal]
    stalled = [
        r.rollout_id
        for r in active
        if orchestrator.run_loops and not r.loop_running
    ]
    ready = cluster_reachable and not orchestrator.closed and not stalled
    return {
        "status": "ready" if ready else "not_ready",
        "cluster_reachable": cluster_reachable,
        "accepting_commands": not orchestrator.closed,
        "active_rollouts": len(active),
        "tracked_rollouts": len(records),
        "stalled_loops": stalled,
        "timestamp": time.time(),
    }


def get_health_summary(orchestrator: "RolloutOrchestrator") -> Dict[str, Any]:
    """
    获取健康状态摘要

    Returns:
        包含存活、就绪与最近告警的摘要
    """
    readiness = check_readiness(orchestrator)
    return {
        "liveness": check_liveness(),
        "readiness": readiness,
        "recent_alerts": orchestrator.alerts.get_alert_history(limit=10),
        "overall_status": "healthy" if readiness["status"] == "ready" else "degraded",
        "timestamp": time.time(),
    }
