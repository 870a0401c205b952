# -*- coding: utf-8 -*-
"""
清单调和器

将期望的canary权重转换为两个Ingress上的权重注解并幂等地写入：
- canary Ingress: nginx.ingress.kubernetes.io/canary-weight = w
- stable Ingress: kanary.io/stable-weight = 100 - w

每个Ingress同时记录控制器最后一次写入的值（applied-weight）与归属的rollout_id，
实际值与记录不一致即视为外部修改，抛出ConflictError而不是覆盖。
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from kanary.kanary_reconciler.cluster import ClusterClient, IngressView
from kanary.kanary_utils.errors import ApplyError, ConflictError
from kanary.models import RolloutPlan

logger = logging.getLogger(__name__)

CANARY_ANNOTATION = "nginx.ingress.kubernetes.io/canary"
CANARY_WEIGHT_ANNOTATION = "nginx.ingress.kubernetes.io/canary-weight"
CANARY_WEIGHT_TOTAL_ANNOTATION = "nginx.ingress.kubernetes.io/canary-weight-total"
STABLE_WEIGHT_ANNOTATION = "kanary.io/stable-weight"
APPLIED_WEIGHT_ANNOTATION = "kanary.io/applied-weight"
ROLLOUT_ID_ANNOTATION = "kanary.io/rollout-id"


@dataclass
class ApplyResult:
    """一次写入的结果"""

    weight: int
    changed: bool
    patched: List[str] = field(default_factory=list)

    @property
    def stable_weight(self) -> int:
        return 100 - self.weight


def desired_annotations(weight: int, rollout_id: str) -> Dict[str, Dict[str, str]]:
    """返回 {"stable": {...}, "canary": {...}} 两组期望注解"""
    return {
        "stable": {
            STABLE_WEIGHT_ANNOTATION: str(100 - weight),
            APPLIED_WEIGHT_ANNOTATION: str(100 - weight),
            ROLLOUT_ID_ANNOTATION: rollout_id,
        },
        "canary": {
            CANARY_ANNOTATION: "true",
            CANARY_WEIGHT_ANNOTATION: str(weight),
            CANARY_WEIGHT_TOTAL_ANNOTATION: "100",
            APPLIED_WEIGHT_ANNOTATION: str(weight),
            ROLLOUT_ID_ANNOTATION: rollout_id,
        },
    }


class ManifestReconciler:
    """清单调和器"""

    def __init__(self, cluster: ClusterClient) -> None:
        self.cluster = cluster

    @staticmethod
    def _check_conflict(view: IngressView, weight_key: str, rollout_id: str) -> None:
        annotations = view.annotations
        owner = annotations.get(ROLLOUT_ID_ANNOTATION)
        if owner and owner != rollout_id:
            raise ConflictError(
                f"ingress {view.namespace}/{view.name} is managed by rollout {owner}"
            )
        applied = annotations.get(APPLIED_WEIGHT_ANNOTATION)
        live = annotations.get(weight_key)
        if applied is not None and live != applied:
            raise ConflictError(
                f"ingress {view.namespace}/{view.name} was edited externally: "
                f"{weight_key}={live!r}, last applied {applied!r}"
            )

    def _restore_canary(
        self,
        before: IngressView,
        written: Tuple[IngressView, Dict[str, Optional[str]]],
        weight: int,
        error: Exception,
    ) -> None:
        """stable写入失败后把canary注解恢复为写入前的值，恢复失败时抛出带live_weight的ApplyError"""
        after, delta = written
        previous = {k: before.annotations.get(k) for k in delta}
        try:
            self.cluster.patch_ingress_annotations(
                after.namespace, after.name, previous, after.resource_version
            )
        except (ApplyError, ConflictError) as restore_error:
            logger.error(
                f"Could not restore {after.namespace}/{after.name} after partial apply: "
                f"{restore_error}"
            )
            raise ApplyError(
                f"partial apply: canary weight {weight} written but stable update "
                f"failed ({error}) and restore failed ({restore_error})",
                retryable=False,
                live_weight=weight,
            ) from error
        logger.warning(
            f"Restored {after.namespace}/{after.name} after failed stable update: {error}"
        )

    def apply_weight(
        self, plan: RolloutPlan, weight: int, rollout_id: str, adopt: bool = False
    ) -> ApplyResult:
        """
        写入canary权重

        参数:
            plan: 发布计划
            weight: canary权重 0..100
            rollout_id: 归属的发布ID
            adopt: 接管当前集群状态，不做外部修改与归属检查（发布开始时使用）

        返回:
            ApplyResult，权重已是期望值时 changed=False 且不发出任何写请求

        异常:
            ConflictError: 检测到外部修改或归属其他发布
            ApplyError: 集群API写入失败（retryable标识是否可重试）
        """
        if not 0 <= weight <= 100:
            raise ApplyError(f"weight {weight} out of range 0..100", retryable=False)

        views = {
            "stable": self.cluster.get_ingress(plan.namespace, plan.stable_ingress),
            "canary": self.cluster.get_ingress(plan.namespace, plan.canary_ingress),
        }
        weight_keys = {
            "stable": STABLE_WEIGHT_ANNOTATION,
            "canary": CANARY_WEIGHT_ANNOTATION,
        }
        if not adopt:
            for role in ("canary", "stable"):
                self._check_conflict(views[role], weight_keys[role], rollout_id)

        desired = desired_annotations(weight, rollout_id)
        result = ApplyResult(weight=weight, changed=False)
        written: Dict[str, Tuple[IngressView, Dict[str, Optional[str]]]] = {}
        # 先写canary（数据面只读取canary-weight），再写stable上的记录
        for role in ("canary", "stable"):
            view = views[role]
            delta: Dict[str, Optional[str]] = {
                k: v for k, v in desired[role].items() if view.annotations.get(k) != v
            }
            if not delta:
                continue
            try:
                after = self.cluster.patch_ingress_annotations(
                    view.namespace, view.name, delta, view.resource_version
                )
            except (ApplyError, ConflictError) as e:
                if "canary" in written:
                    self._restore_canary(views["canary"], written["canary"], weight, e)
                raise
            written[role] = (after, delta)
            result.changed = True
            result.patched.append(view.name)

        if result.changed:
            logger.info(
                f"Applied weight canary={weight} stable={100 - weight} "
                f"for {plan.namespace}/{plan.service} ({', '.join(result.patched)})"
            )
        else:
            logger.debug(f"Weight {weight} already applied for {plan.service}")
        return result

