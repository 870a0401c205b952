# -*- coding: utf-8 -*-
"""
集群客户端

KubernetesClusterClient 通过官方 kubernetes 客户端读写 Ingress 注解；
InMemoryClusterClient 在进程内模拟带 resourceVersion 的 Ingress，用于演练和测试。
"""
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException
from urllib3.exceptions import HTTPError

from kanary.kanary_utils.errors import ApplyError, ConflictError

logger = logging.getLogger(__name__)


@dataclass
class IngressView:
    """Ingress 的注解快照"""

    namespace: str
    name: str
    annotations: Dict[str, str] = field(default_factory=dict)
    resource_version: Optional[str] = None


class ClusterClient(ABC):
    """集群编排API抽象接口"""

    @abstractmethod
    def get_ingress(self, namespace: str, name: str) -> IngressView:
        raise NotImplementedError

    @abstractmethod
    def patch_ingress_annotations(
        self,
        namespace: str,
        name: str,
        annotations: Dict[str, Optional[str]],
        resource_version: Optional[str] = None,
    ) -> IngressView:
        """合并写入注解，值为None表示删除；resource_version不匹配时抛出ConflictError"""
        raise NotImplementedError

    def ping(self) -> bool:
        """集群是否可达"""
        return True


def _translate_api_exception(e: ApiException, what: str) -> Exception:
    status = e.status or 0
    if status == 409:
        return ConflictError(f"{what}: resource changed concurrently ({e.reason})")
    if status == 404:
        return ApplyError(f"{what}: not found", retryable=False)
    if status == 429 or status >= 500:
        return ApplyError(f"{what}: transient API error {status} {e.reason}")
    return ApplyError(f"{what}: API error {status} {e.reason}", retryable=False)


class KubernetesClusterClient(ClusterClient):
    """基于 kubernetes Python 客户端的实现"""

    def __init__(
        self,
        api_client: Optional[client.ApiClient] = None,
        kubeconfig: Optional[str] = None,
        request_timeout: float = 30.0,
    ) -> None:
        if api_client is None:
            try:
                config.load_incluster_config()
            except ConfigException:
                config.load_kube_config(config_file=kubeconfig)
            api_client = client.ApiClient()
        self._api_client = api_client
        self._networking = client.NetworkingV1Api(api_client)
        self._request_timeout = request_timeout

    def get_ingress(self, namespace: str, name: str) -> IngressView:
        what = f"get ingress {namespace}/{name}"
        try:
            ingress = self._networking.read_namespaced_ingress(
                name, namespace, _request_timeout=self._request_timeout
            )
        except ApiException as e:
            raise _translate_api_exception(e, what) from e
        except (HTTPError, OSError) as e:
            raise ApplyError(f"{what}: {e}") from e
        return IngressView(
            namespace=namespace,
            name=name,
            annotations=dict(ingress.metadata.annotations or {}),
            resource_version=ingress.metadata.resource_version,
        )

    def patch_ingress_annotations(
        self,
        namespace: str,
        name: str,
        annotations: Dict[str, Optional[str]],
        resource_version: Optional[str] = None,
    ) -> IngressView:
        what = f"patch ingress {namespace}/{name}"
        metadata: Dict[str, object] = {"annotations": annotations}
        if resource_version:
            # 合并补丁携带resourceVersion时由API Server做乐观并发校验
            metadata["resourceVersion"] = resource_version
        try:
            ingress = self._networking.patch_namespaced_ingress(
                name,
                namespace,
                {"metadata": metadata},
                _request_timeout=self._request_timeout,
            )
        except ApiException as e:
            raise _translate_api_exception(e, what) from e
        except (HTTPError, OSError) as e:
            raise ApplyError(f"{what}: {e}") from e
        return IngressView(
            namespace=namespace,
            name=name,
            annotations=dict(ingress.metadata.annotations or {}),
            resource_version=ingress.metadata.resource_version,
        )

    def ping(self) -> bool:
        try:
            client.VersionApi(self._api_client).get_code(_request_timeout=5)
            return True
        except (ApiException, HTTPError, OSError) as e:
            logger.warning(f"Kubernetes API unreachable: {e}")
            return False


class InMemoryClusterClient(ClusterClient):
    """进程内模拟集群，auto_create=True 时访问不存在的Ingress会自动创建空对象"""

    def __init__(self, auto_create: bool = False) -> None:
        self.auto_create = auto_create
        self._lock = threading.Lock()
        self._ingresses: Dict[Tuple[str, str], Dict[str, str]] = {}
        self._versions: Dict[Tuple[str, str], int] = {}
        self._failures: List[Exception] = []
        self.patches: List[Tuple[str, str, Dict[str, Optional[str]]]] = []

    def create_ingress(
        self, namespace: str, name: str, annotations: Optional[Dict[str, str]] = None
    ) -> IngressView:
        with self._lock:
            key = (namespace, name)
            self._ingresses[key] = dict(annotations or {})
            self._versions[key] = self._versions.get(key, 0) + 1
            return self._view(key)

    def _view(self, key: Tuple[str, str]) -> IngressView:
        return IngressView(
            namespace=key[0],
            name=key[1],
            annotations=dict(self._ingresses[key]),
            resource_version=str(self._versions[key]),
        )

    def fail_next(self, *errors: Exception) -> None:
        """让接下来的若干次patch依次抛出给定异常"""
        with self._lock:
            self._failures.extend(errors)

    def external_edit(self, namespace: str, name: str, annotations: Dict[str, str]) -> None:
        """模拟运维人员绕过控制器直接修改注解"""
        with self._lock:
            key = (namespace, name)
            self._ingresses[key].update(annotations)
            self._versions[key] += 1

    def get_ingress(self, namespace: str, name: str) -> IngressView:
        with self._lock:
            key = (namespace, name)
            if key not in self._ingresses and self.auto_create:
                self._ingresses[key] = {}
                self._versions[key] = 1
            if key not in self._ingresses:
                raise ApplyError(f"get ingress {namespace}/{name}: not found", retryable=False)
            return self._view(key)

    def patch_ingress_annotations(
        self,
        namespace: str,
        name: str,
        annotations: Dict[str, Optional[str]],
        resource_version: Optional[str] = None,
    ) -> IngressView:
        with self._lock:
            if self._failures:
                raise self._failures.pop(0)
            key = (namespace, name)
            if key not in self._ingresses:
                raise ApplyError(f"patch ingress {namespace}/{name}: not found", retryable=False)
            if resource_version is not None and resource_version != str(self._versions[key]):
                raise ConflictError(
                    f"patch ingress {namespace}/{name}: resource changed concurrently"
                )
            current = self._ingresses[key]
            for k, v in annotations.items():
                if v is None:
                    current.pop(k, None)
                else:
                    current[k] = v
            self._versions[key] += 1
            self.patches.append((namespace, name, dict(annotations)))
            return self._view(key)
