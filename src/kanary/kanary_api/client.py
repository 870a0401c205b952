# -*- coding: utf-8 -*-
"""
控制API客户端

使用 requests 访问控制API，并将错误响应还原为对应的 KanaryError 子类。
"""
from typing import Any
from typing import Dict
from typing import List
from typing import Optional

import requests

from kanary.kanary_utils.errors import ControlAPIUnavailable
from kanary.kanary_utils.errors import KanaryError
from kanary.kanary_utils.errors import PlanValidationError
from kanary.kanary_utils.errors import error_from_payload


def get_requests_session() -> requests.Session:
    """
    获取一个配置好的 requests.Session 对象

    返回:
        requests.Session 对象
    """
    session = requests.Session()
    session.headers.update({"User-Agent": "kanary-cli", "Accept": "application/json"})
    return session


def _raise_for_error(response: requests.Response) -> None:
    if response.status_code < 400:
        return
    try:
        body = response.json()
    except ValueError:
        raise KanaryError(f"HTTP {response.status_code}: {response.text.strip()}")
    detail = body.get("detail") if isinstance(body, dict) else None
    if isinstance(detail, dict):
        raise error_from_payload(detail)
    if isinstance(detail, list):
        # FastAPI 请求体校验错误
        problems = [
            f"{'.'.join(str(p) for p in item.get('loc', [])[1:])}: {item.get('msg', '')}"
            for item in detail
            if isinstance(item, dict)
        ]
        raise PlanValidationError(f"invalid rollout plan: {'; '.join(problems)}", problems)
    raise KanaryError(f"HTTP {response.status_code}: {detail or response.text.strip()}")


class ControlClient:
    """控制API客户端"""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or get_requests_session()

    def _request(
        self, method: str, path: str, json: Optional[Dict[str, Any]] = None
    ) -> Any:
        """
        发送请求

        参数:
            method: HTTP方法
            path: 相对路径
            json: (可选) JSON请求体

        返回:
            解析后的JSON响应

        异常:
            ControlAPIUnavailable: 无法连接控制API
            KanaryError: 服务端返回的错误
        """
        url = f"{self.base_url}{path}"
        try:
            response = self._session.request(method, url, json=json, timeout=self.timeout)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise ControlAPIUnavailable(f"cannot reach control API at {self.base_url}: {e}") from e
        _raise_for_error(response)
        return response.json()

    def start(self, plan: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/rollouts", json=plan)

    def pause(self, rollout_id: str) -> Dict[str, Any]:
        return self._request("POST", f"/rollouts/{rollout_id}/pause")

    def resume(self, rollout_id: str) -> Dict[str, Any]:
        return self._request("POST", f"/rollouts/{rollout_id}/resume")

    def abort(self, rollout_id: str) -> Dict[str, Any]:
        return self._request("POST", f"/rollouts/{rollout_id}/abort")

    def status(self, rollout_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/rollouts/{rollout_id}")

    def list(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/rollouts")

    def readiness(self) -> Dict[str, Any]:
        url = f"{self.base_url}/readyz"
        try:
            response = self._session.get(url, timeout=self.timeout)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise ControlAPIUnavailable(f"cannot reach control API at {self.base_url}: {e}") from e
        return response.json()
