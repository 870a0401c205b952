"""灰度发布数据模型

RolloutPlan（不可变的发布计划）、RolloutState（发布运行状态）与MetricSample（指标样本）。
"""

import copy
import math
import time
from collections import deque
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any

from kanary.kanary_utils.config import get_namespace
from kanary.kanary_utils.errors import PlanValidationError


class Phase(Enum):
    """发布阶段"""

    PENDING = "Pending"
    PROGRESSING = "Progressing"
    PAUSED = "Paused"
    PROMOTED = "Promoted"
    ROLLED_BACK = "RolledBack"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_PHASES


TERMINAL_PHASES = frozenset({Phase.PROMOTED, Phase.ROLLED_BACK, Phase.FAILED})


class Health(Enum):
    """修订版本的健康状态"""

    HEALTHY = "Healthy"
    UNKNOWN = "Unknown"


@dataclass(frozen=True)
class RolloutPlan:
    """发布计划，发布开始后不可变"""

    service: str
    stable_revision: str
    canary_revision: str
    initial_weight: int = 0
    step_size: int = 10
    step_interval: float = 60.0
    success_threshold: float = 0.99
    max_weight: int = 100
    namespace: str = ""
    stable_ingress: str = ""
    canary_ingress: str = ""
    hysteresis: float = 0.0
    bake_duration: float = 0.0
    grace_period: float = 120.0
    probe_interval: float = 10.0
    metric_window: float = 300.0
    max_latency_ms: float | None = None
    probe_failure_threshold: int = 3

    def __post_init__(self) -> None:
        # 冻结的dataclass只能通过object.__setattr__补全派生默认值
        if not self.namespace:
            object.__setattr__(self, "namespace", get_namespace())
        if not self.stable_ingress and self.service:
            object.__setattr__(self, "stable_ingress", f"{self.service}-stable")
        if not self.canary_ingress and self.service:
            object.__setattr__(self, "canary_ingress", f"{self.service}-canary")

    def validate(self) -> "RolloutPlan":
        """校验计划，收集所有问题后一次性抛出PlanValidationError"""
        problems: list[str] = []
        for name in ("service", "stable_revision", "canary_revision", "namespace"):
            if not str(getattr(self, name) or "").strip():
                problems.append(f"{name} must not be empty")
        if self.stable_revision and self.stable_revision == self.canary_revision:
            problems.append("stable_revision and canary_revision must differ")
        if self.stable_ingress == self.canary_ingress:
            problems.append("stable_ingress and canary_ingress must differ")
        if not 0 <= self.initial_weight <= 100:
            problems.append("initial_weight must be within 0..100")
        if not 1 <= self.max_weight <= 100:
            problems.append("max_weight must be within 1..100")
        if self.initial_weight > self.max_weight:
            problems.append("initial_weight must not exceed max_weight")
        if not 1 <= self.step_size <= 100:
            problems.append("step_size must be within 1..100")
        for name in ("step_interval", "probe_interval", "metric_window"):
            if not getattr(self, name) > 0:
                problems.append(f"{name} must be positive")
        for name in ("bake_duration", "grace_period", "hysteresis"):
            if getattr(self, name) < 0:
                problems.append(f"{name} must not be negative")
        if not 0.0 <= self.success_threshold <= 1.0:
            problems.append("success_threshold must be within 0..1")
        if self.hysteresis > self.success_threshold:
            problems.append("hysteresis must not exceed success_threshold")
        if self.max_latency_ms is not None and not self.max_latency_ms > 0:
            problems.append("max_latency_ms must be positive")
        if self.probe_failure_threshold < 1:
            problems.append("probe_failure_threshold must be at least 1")
        if problems:
            raise PlanValidationError(
                f"invalid rollout plan: {'; '.join(problems)}", problems
            )
        return self

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RolloutPlan":
        """从YAML/JSON映射构建计划，未知字段或类型错误抛出PlanValidationError"""
        if not isinstance(data, dict):
            raise PlanValidationError("rollout plan must be a mapping")
        known = {f.name: f for f in fields(cls)}
        unknown = sorted(set(data) - set(known))
        if unknown:
            raise PlanValidationError(
                f"unknown plan fields: {', '.join(unknown)}",
                [f"unknown field {name}" for name in unknown],
            )
        missing = [
            name
            for name in ("service", "stable_revision", "canary_revision")
            if name not in data
        ]
        if missing:
            raise PlanValidationError(
                f"missing plan fields: {', '.join(missing)}",
                [f"missing field {name}" for name in missing],
            )
        kwargs: dict[str, Any] = {}
        problems: list[str] = []
        for name, value in data.items():
            if value is None:
                continue
            default = known[name].default
            try:
                if isinstance(default, bool) or name in (
                    "service",
                    "stable_revision",
                    "canary_revision",
                    "namespace",
                    "stable_ingress",
                    "canary_ingress",
                ):
                    kwargs[name] = str(value)
                elif isinstance(default, int):
                    if isinstance(value, float) and not value.is_integer():
                        raise ValueError(f"{value} is not an integer")
                    kwargs[name] = int(value)
                else:
                    number = float(value)
                    if math.isnan(number):
                        raise ValueError("NaN")
                    kwargs[name] = number
            except (TypeError, ValueError) as e:
                problems.append(f"{name}: {e}")
        if problems:
            raise PlanValidationError(
                f"invalid plan field types: {'; '.join(problems)}", problems
            )
        return cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class MetricSample:
    """指标样本"""

    timestamp: float
    revision: str
    success_ratio: float
    latency_ms: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class PhaseTransition:
    """阶段迁移记录"""

    from_phase: Phase
    to_phase: Phase
    at: float
    weight: int
    reason: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "from": self.from_phase.value,
            "to": self.to_phase.value,
            "at": self.at,
            "weight": self.weight,
            "reason": self.reason,
        }


@dataclass
class RolloutState:
    """发布运行状态，仅由WeightController修改"""

    rollout_id: str
    plan: RolloutPlan
    weight: int = 0
    phase: Phase = Phase.PENDING
    health: Health = Health.HEALTHY
    created_at: float = field(default_factory=time.time)
    last_transition: float = field(default_factory=time.time)
    last_step_at: float | None = None
    unknown_since: float | None = None
    bake_started_at: float | None = None
    finished_at: float | None = None
    reason: str = ""
    samples: deque[MetricSample] = field(default_factory=deque)
    history: list[PhaseTransition] = field(default_factory=list)

    @property
    def stable_weight(self) -> int:
        return 100 - self.weight

    @property
    def is_terminal(self) -> bool:
        return self.phase.is_terminal

    def samples_for(self, revision: str) -> list[MetricSample]:
        return [s for s in self.samples if s.revision == revision]

    def snapshot(self) -> "RolloutState":
        """返回与内部状态无共享可变数据的副本"""
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        latest: dict[str, Any] = {}
        for revision in (self.plan.stable_revision, self.plan.canary_revision):
            revision_samples = self.samples_for(revision)
            latest[revision] = (
                revision_samples[-1].to_dict() if revision_samples else None
            )
        return {
            "rollout_id": self.rollout_id,
            "plan": self.plan.to_dict(),
            "weight": self.weight,
            "stable_weight": self.stable_weight,
            "phase": self.phase.value,
            "health": self.health.value,
            "created_at": self.created_at,
            "last_transition": self.last_transition,
            "last_step_at": self.last_step_at,
            "unknown_since": self.unknown_since,
            "bake_started_at": self.bake_started_at,
            "finished_at": self.finished_at,
            "reason": self.reason,
            "sample_count": len(self.samples),
            "latest_samples": latest,
            "history": [t.to_dict() for t in self.history],
        }
