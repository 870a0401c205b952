"""Kanary清单调和器

将权重写入NGINX Ingress的canary注解，并渲染灰度发布所需的清单。
"""

from kanary.kanary_reconciler.cluster import (
    ClusterClient,
    IngressView,
    InMemoryClusterClient,
    KubernetesClusterClient,
)
from kanary.kanary_reconciler.manifests import dump_manifests, render_manifests
from kanary.kanary_reconciler.reconciler import (
    APPLIED_WEIGHT_ANNOTATION,
    CANARY_WEIGHT_ANNOTATION,
    ROLLOUT_ID_ANNOTATION,
    STABLE_WEIGHT_ANNOTATION,
    ApplyResult,
    ManifestReconciler,
)

__all__ = [
    "ClusterClient",
    "IngressView",
    "InMemoryClusterClient",
    "KubernetesClusterClient",
    "ManifestReconciler",
    "ApplyResult",
    "APPLIED_WEIGHT_ANNOTATION",
    "CANARY_WEIGHT_ANNOTATION",
    "ROLLOUT_ID_ANNOTATION",
    "STABLE_WEIGHT_ANNOTATION",
    "render_manifests",
    "dump_manifests",
]
