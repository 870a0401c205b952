"""Kanary发布编排器

协调指标探针、权重控制器与清单调和器，提供发布控制接口。
"""

from kanary.kanary_orchestrator.factory import build_orchestrator
from kanary.kanary_orchestrator.orchestrator import RolloutOrchestrator
from kanary.kanary_orchestrator.store import RolloutRecord, RolloutStore

__all__ = [
    "build_orchestrator",
    "RolloutOrchestrator",
    "RolloutRecord",
    "RolloutStore",
]
