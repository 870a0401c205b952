# -*- coding: utf-8 -*-
"""pytest 配置文件"""
import sys
import os
import pytest

# 将项目根目录添加到 Python 路径
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src'))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

from kanary.kanary_orchestrator.orchestrator import RolloutOrchestrator  # noqa: E402
from kanary.kanary_probe.probe import MetricsProbe  # noqa: E402
from kanary.kanary_probe.sources import StaticSource  # noqa: E402
from kanary.kanary_reconciler.cluster import InMemoryClusterClient  # noqa: E402
from kanary.kanary_reconciler.reconciler import ManifestReconciler  # noqa: E402
from kanary.kanary_utils import config  # noqa: E402
from kanary.kanary_utils.errors import ApplyError  # noqa: E402
from kanary.models import RolloutPlan  # noqa: E402


class FakeClock:
    """可手动推进的时钟"""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


async def no_sleep(delay: float) -> None:
    return None


class StableWriteFailingCluster(InMemoryClusterClient):
    """armed后stable Ingress的写入失败；restore_fails=True时随后的canary回写也失败"""

    def __init__(self, stable_ingress: str, restore_fails: bool = False) -> None:
        super().__init__()
        self.stable_ingress = stable_ingress
        self.restore_fails = restore_fails
        self.armed = False
        self._canary_writes = 0

    def patch_ingress_annotations(self, namespace, name, annotations, resource_version=None):
        if self.armed:
            if name == self.stable_ingress:
                raise ApplyError("admission webhook denied the request", retryable=False)
            self._canary_writes += 1
            if self.restore_fails and self._canary_writes > 1:
                raise ApplyError("api server unavailable", retryable=False)
        return super().patch_ingress_annotations(
            namespace, name, annotations, resource_version
        )


@pytest.fixture(scope="function")
def temp_dir(tmp_path):
    """临时目录 fixture，每个测试函数都会获得一个新的临时目录"""
    return tmp_path


@pytest.fixture(autouse=True)
def reset_globals(monkeypatch):
    """自动重置全局配置，防止测试之间的干扰"""
    for key in list(os.environ):
        if key.startswith("KANARY_"):
            monkeypatch.delenv(key, raising=False)
    config.set_global_env_data({})
    yield
    config.set_global_env_data({})


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def plan():
    """stable=v1、canary=v2，每次提升25%，无烘焙"""
    return RolloutPlan(
        service="checkout",
        stable_revision="v1",
        canary_revision="v2",
        namespace="shop",
        initial_weight=0,
        step_size=25,
        step_interval=30.0,
        success_threshold=0.95,
        probe_interval=10.0,
        metric_window=60.0,
        grace_period=60.0,
    )


@pytest.fixture
def cluster(plan):
    """已创建stable/canary两个Ingress的进程内集群"""
    client = InMemoryClusterClient()
    client.create_ingress(plan.namespace, plan.stable_ingress)
    client.create_ingress(plan.namespace, plan.canary_ingress)
    return client


@pytest.fixture
def source():
    return StaticSource()


@pytest.fixture
def orchestrator(cluster, source, clock):
    """不启动后台循环的编排器，测试中通过tick()手动驱动"""
    return RolloutOrchestrator(
        reconciler=ManifestReconciler(cluster),
        probe=MetricsProbe(source, clock=clock),
        clock=clock,
        run_loops=False,
        apply_timeout=5.0,
        retry_attempts=3,
        retry_base_delay=0.0,
        retention=600.0,
        sleep=no_sleep,
    )


@pytest.fixture
def failing_cluster(plan):
    """stable写入可被设置为失败的进程内集群"""
    client = StableWriteFailingCluster(plan.stable_ingress)
    client.create_ingress(plan.namespace, plan.stable_ingress)
    client.create_ingress(plan.namespace, plan.canary_ingress)
    return client
