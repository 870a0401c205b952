# -*- coding: utf-8 -*-
"""
指标源

提供Prometheus HTTP API与静态脚本两种指标源，
统一返回 (成功率, P95延迟毫秒)，读取失败时抛出ProbeUnavailable。
"""
import logging
import math
import threading
from abc import ABC, abstractmethod
from string import Template
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

import requests

from kanary.kanary_utils.errors import ProbeUnavailable
from kanary.models import RolloutPlan

logger = logging.getLogger(__name__)

# NGINX Ingress Controller 导出的指标，后端服务命名为 <service>-<revision>
DEFAULT_SUCCESS_QUERY = (
    'sum(rate(nginx_ingress_controller_requests{namespace="$namespace",'
    'service="$service-$revision",status!~"5.."}[$window]))'
    ' / sum(rate(nginx_ingress_controller_requests{namespace="$namespace",'
    'service="$service-$revision"}[$window]))'
)
DEFAULT_LATENCY_QUERY = (
    "histogram_quantile(0.95, sum(rate("
    'nginx_ingress_controller_request_duration_seconds_bucket{namespace="$namespace",'
    'service="$service-$revision"}[$window])) by (le))'
)

Reading = Tuple[float, float]


class MetricsSource(ABC):
    """指标源抽象接口"""

    @abstractmethod
    def query(self, plan: RolloutPlan, revision: str) -> Reading:
        """读取修订版本的 (成功率, 延迟毫秒)，失败抛出ProbeUnavailable"""
        raise NotImplementedError


class PrometheusSource(MetricsSource):
    """基于Prometheus即时查询的指标源"""

    def __init__(
        self,
        base_url: str,
        success_query: Optional[str] = None,
        latency_query: Optional[str] = None,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.success_query = Template(success_query or DEFAULT_SUCCESS_QUERY)
        self.latency_query = Template(latency_query or DEFAULT_LATENCY_QUERY)
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": "kanary-probe"})

    @staticmethod
    def _window(plan: RolloutPlan) -> str:
        # rate() 至少需要覆盖两次抓取
        return f"{max(60, int(plan.probe_interval * 2))}s"

    def render(self, template: Template, plan: RolloutPlan, revision: str) -> str:
        return template.safe_substitute(
            service=plan.service,
            revision=revision,
            namespace=plan.namespace,
            window=self._window(plan),
        )

    def _instant(self, promql: str) -> float:
        try:
            response = self._session.get(
                f"{self.base_url}/api/v1/query",
                params={"query": promql},
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except requests.RequestException as e:
            raise ProbeUnavailable(f"prometheus request failed: {e}") from e
        except ValueError as e:
            raise ProbeUnavailable(f"prometheus returned invalid JSON: {e}") from e

        if payload.get("status") != "success":
            raise ProbeUnavailable(
                f"prometheus query failed: {payload.get('error', 'unknown error')}"
            )
        result = payload.get("data", {}).get("result") or []
        if not result:
            raise ProbeUnavailable(f"no data for query: {promql}")
        try:
            value = float(result[0]["value"][1])
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise ProbeUnavailable(f"unexpected prometheus result: {e}") from e
        if math.isnan(value) or math.isinf(value):
            raise ProbeUnavailable(f"non-finite value for query: {promql}")
        return value

    def query(self, plan: RolloutPlan, revision: str) -> Reading:
        success_ratio = self._instant(self.render(self.success_query, plan, revision))
        latency_seconds = self._instant(self.render(self.latency_query, plan, revision))
        return success_ratio, latency_seconds * 1000.0


ScriptedValue = Union[Reading, BaseException, Callable[[], Reading]]


class StaticSource(MetricsSource):
    """
    脚本化的指标源，用于演练（dry run）和测试。

    每个修订版本对应一个值序列，依次消费，序列耗尽后重复最后一个值。
    值可以是 (成功率, 延迟) 元组、异常实例（被抛出）或返回元组的可调用对象。
    未配置的修订版本返回 default。
    """

    def __init__(
        self,
        values: Optional[Dict[str, Union[ScriptedValue, Iterable[ScriptedValue]]]] = None,
        default: Optional[Reading] = (1.0, 50.0),
    ) -> None:
        self._lock = threading.Lock()
        self._scripts: Dict[str, List[ScriptedValue]] = {}
        self.default = default
        self.calls: List[str] = []
        for revision, value in (values or {}).items():
            self.set(revision, value)

    def set(self, revision: str, value: Union[ScriptedValue, Iterable[ScriptedValue]]) -> None:
        if isinstance(value, (tuple, BaseException)) or callable(value):
            script: List[ScriptedValue] = [value]  # type: ignore[list-item]
        else:
            script = list(value)  # type: ignore[arg-type]
        with self._lock:
            self._scripts[revision] = script

    def _next(self, revision: str) -> Any:
        with self._lock:
            self.calls.append(revision)
            script = self._scripts.get(revision)
            if not script:
                return self.default
            return script.pop(0) if len(script) > 1 else script[0]

    def query(self, plan: RolloutPlan, revision: str) -> Reading:
        value = self._next(revision)
        if value is None:
            raise ProbeUnavailable(f"no scripted metrics for {revision}")
        if isinstance(value, BaseException):
            raise value
        if callable(value):
            value = value()
        success_ratio, latency_ms = value
        return float(success_ratio), float(latency_ms)
