"""权重控制器

维护RolloutState的阶段状态机并决定下一步权重。
evaluate() 只做决策不修改状态；Reconciler写入成功后再调用commit()落地。
"""

import logging
from dataclasses import dataclass
from enum import Enum

from kanary.kanary_utils.errors import InvalidTransitionError
from kanary.models import Health, MetricSample, Phase, PhaseTransition, RolloutState

logger = logging.getLogger(__name__)


class Action(Enum):
    """决策动作"""

    HOLD = "hold"
    STEP = "step"
    PROMOTE = "promote"
    ROLLBACK = "rollback"
    PAUSE = "pause"


@dataclass(frozen=True)
class Decision:
    """一次评估的结果"""

    action: Action
    weight: int
    phase: Phase
    reason: str = ""


ALLOWED_TRANSITIONS: dict[Phase, frozenset[Phase]] = {
    Phase.PENDING: frozenset({Phase.PROGRESSING, Phase.ROLLED_BACK, Phase.FAILED}),
    Phase.PROGRESSING: frozenset(
        {Phase.PAUSED, Phase.PROMOTED, Phase.ROLLED_BACK, Phase.FAILED}
    ),
    Phase.PAUSED: frozenset({Phase.PROGRESSING, Phase.ROLLED_BACK, Phase.FAILED}),
    Phase.PROMOTED: frozenset(),
    Phase.ROLLED_BACK: frozenset(),
    Phase.FAILED: frozenset(),
}

FULL_WEIGHT = 100


class WeightController:
    """权重控制器"""

    # 样本窗口

    def record_sample(self, state: RolloutState, sample: MetricSample, now: float) -> None:
        """追加样本并裁剪窗口外的旧样本"""
        state.samples.append(sample)
        horizon = now - state.plan.metric_window
        while state.samples and state.samples[0].timestamp < horizon:
            state.samples.popleft()

    def _window(self, state: RolloutState, now: float) -> list[MetricSample]:
        horizon = now - state.plan.metric_window
        return [
            s
            for s in state.samples
            if s.revision == state.plan.canary_revision and s.timestamp >= horizon
        ]

    def window_ratio(self, state: RolloutState, now: float) -> float | None:
        """窗口内canary成功率均值，无样本返回None"""
        window = self._window(state, now)
        if not window:
            return None
        return sum(s.success_ratio for s in window) / len(window)

    def window_latency(self, state: RolloutState, now: float) -> float | None:
        """窗口内canary延迟均值（毫秒），无样本返回None"""
        window = self._window(state, now)
        if not window:
            return None
        return sum(s.latency_ms for s in window) / len(window)

    def observe_health(self, state: RolloutState, health: Health, now: float) -> None:
        """记录canary健康状态，Unknown开始的时间用于计算宽限期"""
        if health is Health.UNKNOWN:
            if state.unknown_since is None:
                state.unknown_since = now
        else:
            state.unknown_since = None
        state.health = health

    # 决策

    def evaluate(self, state: RolloutState, now: float) -> Decision:
        """根据当前窗口与健康状态给出下一步决策"""
        plan = state.plan
        if state.phase not in (Phase.PROGRESSING, Phase.PAUSED):
            return Decision(Action.HOLD, state.weight, state.phase)

        ratio = self.window_ratio(state, now)
        latency = self.window_latency(state, now)
        floor = plan.success_threshold - plan.hysteresis
        if ratio is not None and ratio < floor:
            return Decision(
                Action.ROLLBACK,
                0,
                Phase.ROLLED_BACK,
                f"success ratio {ratio:.4f} below {floor:.4f}",
            )
        if (
            plan.max_latency_ms is not None
            and latency is not None
            and latency > plan.max_latency_ms
        ):
            return Decision(
                Action.ROLLBACK,
                0,
                Phase.ROLLED_BACK,
                f"latency {latency:.1f}ms above {plan.max_latency_ms:.1f}ms",
            )

        if state.phase is Phase.PAUSED:
            return Decision(Action.HOLD, state.weight, state.phase, "paused")

        # 权重为0时canary没有流量，查询不到指标是正常的，允许迈出第一步
        zero_traffic = state.weight == 0 and ratio is None
        if state.health is Health.UNKNOWN and not zero_traffic:
            since = state.unknown_since if state.unknown_since is not None else now
            if now - since >= plan.grace_period:
                return Decision(
                    Action.PAUSE,
                    state.weight,
                    Phase.PAUSED,
                    f"canary metrics unavailable for {now - since:.0f}s",
                )
            return Decision(
                Action.HOLD, state.weight, state.phase, "metrics unavailable, frozen"
            )

        if ratio is None and not zero_traffic:
            return Decision(Action.HOLD, state.weight, state.phase, "no samples in window")
        if ratio is not None and ratio < plan.success_threshold:
            return Decision(
                Action.HOLD, state.weight, state.phase, "within hysteresis margin"
            )

        if state.weight >= plan.max_weight:
            return self._bake(state, now)

        if state.last_step_at is not None and now - state.last_step_at < plan.step_interval:
            return Decision(Action.HOLD, state.weight, state.phase, "waiting for step interval")

        target = min(state.weight + plan.step_size, plan.max_weight)
        if target >= plan.max_weight and plan.bake_duration <= 0:
            return Decision(
                Action.PROMOTE, FULL_WEIGHT, Phase.PROMOTED, "max weight reached"
            )
        return Decision(Action.STEP, target, Phase.PROGRESSING, f"step to {target}")

    def _bake(self, state: RolloutState, now: float) -> Decision:
        started = state.bake_started_at if state.bake_started_at is not None else now
        if now - started >= state.plan.bake_duration:
            return Decision(
                Action.PROMOTE,
                FULL_WEIGHT,
                Phase.PROMOTED,
                f"healthy at max weight for {now - started:.0f}s",
            )
        return Decision(Action.HOLD, state.weight, state.phase, "baking at max weight")

    # 状态修改

    def _transition(
        self, state: RolloutState, to: Phase, reason: str, now: float, weight: int | None = None
    ) -> None:
        if to not in ALLOWED_TRANSITIONS[state.phase]:
            raise InvalidTransitionError(
                f"rollout {state.rollout_id}: {state.phase.value} -> {to.value} is not allowed"
            )
        if weight is not None:
            state.weight = weight
        state.history.append(
            PhaseTransition(state.phase, to, now, state.weight, reason)
        )
        logger.info(
            f"Rollout {state.rollout_id}: {state.phase.value} -> {to.value} "
            f"(weight={state.weight}) {reason}"
        )
        state.phase = to
        state.last_transition = now
        state.reason = reason
        if to.is_terminal:
            state.finished_at = now

    def begin(self, state: RolloutState, now: float) -> None:
        """Pending -> Progressing，初始权重已写入集群"""
        self._transition(
            state, Phase.PROGRESSING, "rollout started", now, state.plan.initial_weight
        )
        state.last_step_at = now
        if state.weight >= state.plan.max_weight:
            state.bake_started_at = now

    def commit(self, state: RolloutState, decision: Decision, now: float) -> None:
        """落地一次决策（Reconciler已成功写入decision.weight）"""
        if decision.action is Action.HOLD:
            return
        if decision.action is Action.STEP:
            if state.phase is not Phase.PROGRESSING:
                raise InvalidTransitionError(
                    f"rollout {state.rollout_id}: cannot step while {state.phase.value}"
                )
            if decision.weight < state.weight:
                raise InvalidTransitionError(
                    f"rollout {state.rollout_id}: weight must not decrease while progressing"
                )
            if state.weight == 0 and state.unknown_since is not None:
                # 宽限期从canary开始接收流量时计算
                state.unknown_since = now
            state.weight = decision.weight
            state.last_step_at = now
            if state.weight >= state.plan.max_weight and state.bake_started_at is None:
                state.bake_started_at = now
            logger.info(f"Rollout {state.rollout_id}: canary weight -> {state.weight}")
            return
        self._transition(state, decision.phase, decision.reason, now, decision.weight)

    def pause(self, state: RolloutState, reason: str, now: float) -> bool:
        """暂停，已暂停时返回False"""
        if state.phase is Phase.PAUSED:
            return False
        self._transition(state, Phase.PAUSED, reason, now)
        return True

    def resume(self, state: RolloutState, now: float) -> bool:
        """恢复推进，已在推进中时返回False"""
        if state.phase is Phase.PROGRESSING:
            return False
        self._transition(state, Phase.PROGRESSING, "resumed by operator", now)
        # 宽限期和烘焙时间从恢复时刻重新计算
        state.unknown_since = now if state.health is Health.UNKNOWN else None
        if state.bake_started_at is not None:
            state.bake_started_at = now
        return True

    def abort(self, state: RolloutState, reason: str, now: float) -> bool:
        """强制回滚到0权重，终态时返回False"""
        if state.is_terminal:
            return False
        self._transition(state, Phase.ROLLED_BACK, reason, now, 0)
        return True

    def fail(
        self, state: RolloutState, reason: str, now: float, weight: int | None = None
    ) -> bool:
        """标记为Failed，终态时返回False；weight为集群上实际生效的canary权重"""
        if state.is_terminal:
            return False
        self._transition(state, Phase.FAILED, reason, now, weight)
        return True
