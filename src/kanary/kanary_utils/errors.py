# -*- coding: utf-8 -*-
"""
错误分类模块

每种错误携带CLI退出码与HTTP状态码，控制API和命令行据此统一映射。
"""
from typing import Any
from typing import Dict
from typing import List
from typing import Optional
from typing import Type


class KanaryError(Exception):
    """Kanary所有错误的基类"""

    exit_code = 1
    http_status = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_payload(self) -> Dict[str, Any]:
        """转换为API错误响应体"""
        return {"error": self.kind, "message": self.message}


class PlanValidationError(KanaryError):
    """发布计划校验失败，计划不会进入RolloutState"""

    exit_code = 2
    http_status = 422

    def __init__(self, message: str, problems: Optional[List[str]] = None) -> None:
        super().__init__(message)
        self.problems = list(problems or [])

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        payload["problems"] = self.problems
        return payload


class ConflictError(KanaryError):
    """检测到外部并发修改，不自动重试"""

    exit_code = 3
    http_status = 409


class ApplyError(KanaryError):
    """集群API写入失败"""

    exit_code = 4
    http_status = 502

    def __init__(
        self, message: str, retryable: bool = True, live_weight: Optional[int] = None
    ) -> None:
        super().__init__(message)
        self.retryable = retryable
        # 部分写入且无法恢复时，集群上实际生效的canary权重
        self.live_weight = live_weight


class ProbeUnavailable(KanaryError):
    """指标源不可用"""

    exit_code = 5
    http_status = 503


class RolloutNotFound(KanaryError):
    """发布ID不存在"""

    exit_code = 6
    http_status = 404


class InvalidTransitionError(KanaryError):
    """非法的阶段迁移（例如终态之后的操作）"""

    exit_code = 7
    http_status = 409


class ControlAPIUnavailable(KanaryError):
    """无法连接控制API"""

    exit_code = 8
    http_status = 503


ERROR_KINDS: Dict[str, Type[KanaryError]] = {
    cls.__name__: cls
    for cls in (
        PlanValidationError,
        ConflictError,
        ApplyError,
        ProbeUnavailable,
        RolloutNotFound,
        InvalidTransitionError,
        ControlAPIUnavailable,
    )
}


def error_from_payload(payload: Dict[str, Any]) -> KanaryError:
    """
    根据API错误响应体重建对应的异常

    参数:
        payload: 形如 {"error": kind, "message": text} 的字典

    返回:
        KanaryError 子类实例，未知类型返回 KanaryError
    """
    kind = str(payload.get("error", ""))
    message = str(payload.get("message", "unknown error"))
    cls = ERROR_KINDS.get(kind)
    if cls is PlanValidationError:
        return PlanValidationError(message, payload.get("problems") or [])
    if cls is ApplyError:
        return ApplyError(message, retryable=False)
    if cls is None:
        return KanaryError(message)
    return cls(message)
