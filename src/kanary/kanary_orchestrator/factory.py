"""根据配置组装编排器"""

import logging

from kanary.kanary_orchestrator.orchestrator import RolloutOrchestrator
from kanary.kanary_probe.probe import MetricsProbe
from kanary.kanary_probe.sources import MetricsSource, PrometheusSource, StaticSource
from kanary.kanary_reconciler.cluster import (
    ClusterClient,
    InMemoryClusterClient,
    KubernetesClusterClient,
)
from kanary.kanary_reconciler.reconciler import ManifestReconciler
from kanary.kanary_utils import config

logger = logging.getLogger(__name__)


def build_cluster_client(dry_run: bool = False) -> ClusterClient:
    """dry_run或cluster_mode=memory时使用进程内集群"""
    if dry_run or config.get_cluster_mode() == "memory":
        logger.info("Using in-memory cluster (no changes reach Kubernetes)")
        return InMemoryClusterClient(auto_create=True)
    return KubernetesClusterClient(
        kubeconfig=config.get_kubeconfig(), request_timeout=config.get_apply_timeout()
    )


def build_metrics_source(dry_run: bool = False) -> MetricsSource:
    """dry_run时使用始终健康的静态指标源"""
    if dry_run:
        return StaticSource()
    return PrometheusSource(
        config.get_prometheus_url(),
        success_query=config.get_success_query(),
        latency_query=config.get_latency_query(),
        timeout=config.get_probe_timeout(),
    )


def build_orchestrator(dry_run: bool = False, run_loops: bool = True) -> RolloutOrchestrator:
    """按全局配置构建编排器"""
    return RolloutOrchestrator(
        reconciler=ManifestReconciler(build_cluster_client(dry_run)),
        probe=MetricsProbe(build_metrics_source(dry_run)),
        run_loops=run_loops,
    )
