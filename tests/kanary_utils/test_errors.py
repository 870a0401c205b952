"""错误分类测试"""

import pytest

from kanary.kanary_utils.errors import (
    ERROR_KINDS,
    ApplyError,
    ConflictError,
    ControlAPIUnavailable,
    InvalidTransitionError,
    KanaryError,
    PlanValidationError,
    ProbeUnavailable,
    RolloutNotFound,
    error_from_payload,
)


class TestErrorCodes:
    """退出码与HTTP状态码测试"""

    @pytest.mark.parametrize(
        "cls,exit_code,http_status",
        [
            (PlanValidationError, 2, 422),
            (ConflictError, 3, 409),
            (ApplyError, 4, 502),
            (ProbeUnavailable, 5, 503),
            (RolloutNotFound, 6, 404),
            (InvalidTransitionError, 7, 409),
            (ControlAPIUnavailable, 8, 503),
        ],
    )
    def test_codes(self, cls, exit_code, http_status) -> None:
        error = cls("boom")
        assert error.exit_code == exit_code
        assert error.http_status == http_status
        assert isinstance(error, KanaryError)

    def test_exit_codes_are_distinct(self) -> None:
        codes = [cls("x").exit_code for cls in ERROR_KINDS.values()]
        assert len(codes) == len(set(codes))
        assert KanaryError("x").exit_code not in codes


class TestPayload:
    """错误响应体测试"""

    def test_payload_has_kind_and_message(self) -> None:
        payload = RolloutNotFound("missing").to_payload()
        assert payload == {"error": "RolloutNotFound", "message": "missing"}

    def test_validation_payload_lists_problems(self) -> None:
        payload = PlanValidationError("bad", ["a", "b"]).to_payload()
        assert payload["problems"] == ["a", "b"]

    def test_round_trip_through_payload(self) -> None:
        error = error_from_payload(ConflictError("edited").to_payload())
        assert isinstance(error, ConflictError)
        assert error.message == "edited"

    def test_validation_problems_survive(self) -> None:
        error = error_from_payload(PlanValidationError("bad", ["x"]).to_payload())
        assert isinstance(error, PlanValidationError)
        assert error.problems == ["x"]

    def test_unknown_kind_is_base_error(self) -> None:
        error = error_from_payload({"error": "Whatever", "message": "?"})
        assert type(error) is KanaryError
        assert error.exit_code == 1

    def test_apply_error_retryable_default(self) -> None:
        assert ApplyError("x").retryable is True
        assert ApplyError("x", retryable=False).retryable is False
