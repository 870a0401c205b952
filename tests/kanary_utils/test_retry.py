"""有界指数退避测试"""

import pytest

from kanary.kanary_utils.errors import ApplyError
from kanary.kanary_utils.retry import backoff_delay, retry_async


class TestBackoffDelay:
    """退避时间测试"""

    def test_doubles(self) -> None:
        assert [backoff_delay(n, 1.0) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 8.0]

    def test_capped(self) -> None:
        assert backoff_delay(20, 1.0, max_delay=30.0) == 30.0


class TestRetryAsync:
    """重试执行测试"""

    @pytest.mark.asyncio
    async def test_succeeds_after_failures(self) -> None:
        delays = []
        calls = {"n": 0}

        async def flaky():
            calls["n"] += 1
            if calls["n"] < 3:
                raise ApplyError("transient")
            return "ok"

        async def record(delay):
            delays.append(delay)

        result = await retry_async(flaky, attempts=4, base_delay=0.5, sleep=record)
        assert result == "ok"
        assert calls["n"] == 3
        assert delays == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_gives_up(self) -> None:
        calls = {"n": 0}

        async def broken():
            calls["n"] += 1
            raise ApplyError(f"failure {calls['n']}")

        async def record(delay):
            return None

        with pytest.raises(ApplyError, match="failure 3"):
            await retry_async(broken, attempts=3, base_delay=0.0, sleep=record)
        assert calls["n"] == 3

    @pytest.mark.asyncio
    async def test_non_retryable_raises_immediately(self) -> None:
        calls = {"n": 0}

        async def fatal():
            calls["n"] += 1
            raise ApplyError("fatal", retryable=False)

        with pytest.raises(ApplyError):
            await retry_async(
                fatal,
                attempts=5,
                retry_if=lambda e: isinstance(e, ApplyError) and e.retryable,
            )
        assert calls["n"] == 1
