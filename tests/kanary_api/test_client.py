"""控制API客户端测试"""

from unittest.mock import MagicMock

import pytest
import requests
from fastapi.testclient import TestClient

from kanary.kanary_api import ControlClient, create_app
from kanary.kanary_utils.errors import (
    ControlAPIUnavailable,
    InvalidTransitionError,
    KanaryError,
    PlanValidationError,
    RolloutNotFound,
)

PLAN = {
    "service": "checkout",
    "stable_revision": "v1",
    "canary_revision": "v2",
    "namespace": "shop",
}


def mock_response(status_code, body):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = body
    response.text = str(body)
    return response


@pytest.fixture
def control(orchestrator):
    """通过TestClient直连进程内服务的客户端"""
    with TestClient(create_app(orchestrator)) as test_client:
        yield ControlClient("http://testserver", session=test_client)


class TestControlClient:
    """客户端与服务端联调测试"""

    def test_lifecycle(self, control) -> None:
        state = control.start(PLAN)
        rollout_id = state["rollout_id"]
        assert control.status(rollout_id)["phase"] == "Progressing"
        assert control.pause(rollout_id)["phase"] == "Paused"
        assert control.resume(rollout_id)["phase"] == "Progressing"
        assert control.abort(rollout_id)["phase"] == "RolledBack"
        assert [r["rollout_id"] for r in control.list()] == [rollout_id]

    def test_typed_errors(self, control) -> None:
        with pytest.raises(RolloutNotFound):
            control.status("missing")
        with pytest.raises(PlanValidationError) as exc_info:
            control.start(dict(PLAN, canary_revision="v1"))
        assert exc_info.value.exit_code == 2
        rollout_id = control.start(PLAN)["rollout_id"]
        control.abort(rollout_id)
        with pytest.raises(InvalidTransitionError):
            control.pause(rollout_id)

    def test_request_validation_becomes_plan_error(self, control) -> None:
        with pytest.raises(PlanValidationError) as exc_info:
            control.start(dict(PLAN, speed=3))
        assert any("speed" in p for p in exc_info.value.problems)

    def test_readiness(self, control) -> None:
        assert control.readiness()["status"] == "ready"


class TestTransportErrors:
    """传输层错误测试"""

    def test_connection_refused(self) -> None:
        session = MagicMock()
        session.request.side_effect = requests.ConnectionError("refused")
        client = ControlClient("http://127.0.0.1:1/", session=session)
        with pytest.raises(ControlAPIUnavailable) as exc_info:
            client.list()
        assert exc_info.value.exit_code == 8
        assert session.request.call_args.args == ("GET", "http://127.0.0.1:1/rollouts")

    def test_non_json_error(self) -> None:
        session = MagicMock()
        response = mock_response(500, None)
        response.json.side_effect = ValueError("not json")
        response.text = "Internal Server Error"
        session.request.return_value = response
        client = ControlClient("http://api", session=session)
        with pytest.raises(KanaryError, match="HTTP 500"):
            client.status("r1")

    def test_error_payload(self) -> None:
        session = MagicMock()
        session.request.return_value = mock_response(
            404, {"detail": {"error": "RolloutNotFound", "message": "Rollout 'r1' not found"}}
        )
        client = ControlClient("http://api", session=session)
        with pytest.raises(RolloutNotFound, match="r1"):
            client.abort("r1")
