# -*- coding: utf-8 -*-
"""配置管理模块。

该模块提供了获取Kanary各项配置的函数。
配置来自YAML配置文件（默认 ~/.kanary/config.yaml），
可被 KANARY_ 前缀的环境变量覆盖，所有读取函数都带有回退默认值。
"""
import os
from pathlib import Path
from typing import Any
from typing import Dict
from typing import Iterator
from typing import Mapping
from typing import Optional
from typing import cast

import yaml

from kanary.kanary_utils.errors import KanaryError

DEFAULT_CONFIG_FILE = "~/.kanary/config.yaml"
ENV_PREFIX = "KANARY_"


class CaseInsensitiveDict(Mapping[str, Any]):
    """大小写不敏感的配置字典，迭代时保留原始键名"""

    def __init__(self, data: Optional[Mapping[str, Any]] = None) -> None:
        self._data: Dict[str, Any] = {}
        self._keys: Dict[str, str] = {}
        for key, value in (data or {}).items():
            self[key] = value

    def __setitem__(self, key: str, value: Any) -> None:
        lower = key.lower()
        self._keys[lower] = key
        self._data[lower] = value

    def __getitem__(self, key: str) -> Any:
        return self._data[key.lower()]

    def __delitem__(self, key: str) -> None:
        lower = key.lower()
        del self._data[lower]
        del self._keys[lower]

    def __iter__(self) -> Iterator[str]:
        return iter(self._keys.values())

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and key.lower() in self._data

    def __repr__(self) -> str:
        return f"CaseInsensitiveDict({dict(self.items())!r})"


# 全局配置存储
GLOBAL_CONFIG_DATA: CaseInsensitiveDict = CaseInsensitiveDict()


def set_global_env_data(env_data: Dict[str, Any]) -> None:
    """设置全局配置数据"""
    global GLOBAL_CONFIG_DATA
    GLOBAL_CONFIG_DATA = CaseInsensitiveDict(env_data)


def set_config(key: str, value: Any) -> None:
    """设置配置"""
    GLOBAL_CONFIG_DATA[key] = value


def _coerce(value: str) -> Any:
    """将环境变量字符串按YAML标量解析（数字、布尔值等）"""
    try:
        return yaml.safe_load(value)
    except yaml.YAMLError:
        return value


def load_config(config_file: Optional[str] = None) -> Dict[str, Any]:
    """
    加载配置文件并应用环境变量覆盖

    参数:
        config_file: 配置文件路径，默认为 ~/.kanary/config.yaml，
                     也可通过 KANARY_CONFIG 环境变量指定

    返回:
        合并后的配置字典

    异常:
        KanaryError: 配置文件存在但无法解析或不是映射
    """
    path = Path(
        os.path.expanduser(
            config_file or os.environ.get("KANARY_CONFIG") or DEFAULT_CONFIG_FILE
        )
    )
    config_data: Dict[str, Any] = {}
    if path.exists():
        try:
            with open(path, "r", encoding="utf-8") as f:
                loaded = yaml.safe_load(f.read()) or {}
        except yaml.YAMLError as e:
            raise KanaryError(f"配置文件解析失败 {path}: {e}") from e
        if not isinstance(loaded, dict):
            raise KanaryError(f"配置文件必须是映射: {path}")
        config_data.update(loaded)

    for key, value in os.environ.items():
        if key.startswith(ENV_PREFIX) and key != "KANARY_CONFIG":
            config_data[key[len(ENV_PREFIX):].lower()] = _coerce(value)

    set_global_env_data(config_data)
    return config_data


def get_namespace() -> str:
    """获取默认的Kubernetes命名空间，默认为 default"""
    return cast(str, GLOBAL_CONFIG_DATA.get("namespace", "default"))


def get_cluster_mode() -> str:
    """
    获取集群客户端模式。

    返回:
        str: kubernetes（真实集群）或 memory（进程内模拟集群）
    """
    return cast(str, GLOBAL_CONFIG_DATA.get("cluster_mode", "kubernetes")).lower()


def get_kubeconfig() -> Optional[str]:
    """获取kubeconfig路径，未配置时使用客户端库的默认查找逻辑"""
    return cast(Optional[str], GLOBAL_CONFIG_DATA.get("kubeconfig"))


def get_prometheus_url() -> str:
    """获取Prometheus地址"""
    return cast(
        str, GLOBAL_CONFIG_DATA.get("prometheus_url", "http://prometheus:9090")
    )


def get_success_query() -> Optional[str]:
    """获取成功率查询模板，未配置返回None（使用内置NGINX查询）"""
    return cast(Optional[str], GLOBAL_CONFIG_DATA.get("success_query"))


def get_latency_query() -> Optional[str]:
    """获取延迟查询模板，未配置返回None（使用内置NGINX查询）"""
    return cast(Optional[str], GLOBAL_CONFIG_DATA.get("latency_query"))


def get_probe_timeout() -> float:
    """获取单次指标查询超时时间（秒），默认10"""
    return float(GLOBAL_CONFIG_DATA.get("probe_timeout", 10.0))


def get_api_host() -> str:
    """获取控制API监听地址"""
    return cast(str, GLOBAL_CONFIG_DATA.get("api_host", "0.0.0.0"))


def get_api_port() -> int:
    """获取控制API监听端口，默认8787"""
    return int(GLOBAL_CONFIG_DATA.get("api_port", 8787))


def get_api_url() -> str:
    """获取CLI访问的控制API地址"""
    return cast(
        str,
        GLOBAL_CONFIG_DATA.get("api_url", f"http://127.0.0.1:{get_api_port()}"),
    )


def get_apply_timeout() -> float:
    """获取单次集群写入的超时时间（秒），默认30"""
    return float(GLOBAL_CONFIG_DATA.get("apply_timeout", 30.0))


def get_retry_attempts() -> int:
    """获取可重试写入错误的最大尝试次数，默认4"""
    return int(GLOBAL_CONFIG_DATA.get("retry_attempts", 4))


def get_retry_base_delay() -> float:
    """获取指数退避的首次等待时间（秒），默认1"""
    return float(GLOBAL_CONFIG_DATA.get("retry_base_delay", 1.0))


def get_retention_seconds() -> float:
    """获取终态发布在存储中的保留时间（秒），默认3600"""
    return float(GLOBAL_CONFIG_DATA.get("retention_seconds", 3600.0))


def get_log_level() -> str:
    """获取日志级别，默认INFO"""
    return cast(str, GLOBAL_CONFIG_DATA.get("log_level", "INFO")).upper()
