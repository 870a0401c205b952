"""Kanary控制API：FastAPI服务端与requests客户端"""

from kanary.kanary_api.client import ControlClient
from kanary.kanary_api.service import PlanRequest, create_app, start_service

__all__ = [
    "ControlClient",
    "PlanRequest",
    "create_app",
    "start_service",
]
