"""Tests for the async retry helper."""

import pytest

from factories import RecordingSleep
from leasecosts.exceptions import TransientError, UpstreamError
from leasecosts.utils.retry import RetryPolicy, retry_async


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, TransientError)


class Flaky:
    """Fails with the queued errors, then returns ``result``."""

    def __init__(self, *errors: Exception, result: str = "ok") -> None:
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


class TestRetryPolicy:
    def test_exponential_backoff_with_jitter(self) -> None:
        policy = RetryPolicy(base_delay=1.0, max_delay=10.0, jitter=1.0)

        assert policy.delay_for(1, rand=lambda: 0.0) == 1.0
        assert policy.delay_for(2, rand=lambda: 0.0) == 2.0
        assert policy.delay_for(3, rand=lambda: 0.5) == 4.5

    def test_backoff_capped(self) -> None:
        policy = RetryPolicy(base_delay=1.0, max_delay=10.0, jitter=0.0)
        assert policy.delay_for(10) == 10.0


class TestRetryAsync:
    @pytest.mark.asyncio
    async def test_returns_first_success(self, recording_sleep: RecordingSleep) -> None:
        op = Flaky()

        assert await retry_async(op, is_retryable=_is_transient, sleep=recording_sleep) == "ok"
        assert op.calls == 1
        assert recording_sleep.calls == []

    @pytest.mark.asyncio
    async def test_retries_transient_errors(self, recording_sleep: RecordingSleep) -> None:
        op = Flaky(TransientError("503"), TransientError("503"))
        policy = RetryPolicy(max_attempts=3, base_delay=1.0, jitter=0.0)

        result = await retry_async(
            op, is_retryable=_is_transient, policy=policy, sleep=recording_sleep
        )

        assert result == "ok"
        assert op.calls == 3
        assert recording_sleep.calls == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_reraises_last_error_when_exhausted(
        self, recording_sleep: RecordingSleep
    ) -> None:
        last = TransientError("third")
        op = Flaky(TransientError("first"), TransientError("second"), last)

        with pytest.raises(TransientError) as exc_info:
            await retry_async(op, is_retryable=_is_transient, sleep=recording_sleep)

        assert exc_info.value is last
        assert op.calls == 3
        assert len(recording_sleep.calls) == 2

    @pytest.mark.asyncio
    async def test_non_retryable_raises_immediately(
        self, recording_sleep: RecordingSleep
    ) -> None:
        op = Flaky(UpstreamError("401"))

        with pytest.raises(UpstreamError):
            await retry_async(op, is_retryable=_is_transient, sleep=recording_sleep)

        assert op.calls == 1
        assert recording_sleep.calls == []
