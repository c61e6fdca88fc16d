"""
Tests for retry policy and retry_with_backoff.
"""

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError

from roster.membership.errors import MonitorStateError, TransientStoreError
from roster.membership.retry import (
    RetryDecision,
    RetryPolicy,
    retry_with_backoff,
)


class TestRetryPolicy:

    def test_delay_grows_linearly_and_caps(self) -> None:
        policy = RetryPolicy(base_delay=0.5, max_delay=5.0)

        assert policy.get_delay(1) == 0.5
        assert policy.get_delay(4) == 2.0
        assert policy.get_delay(10) == 5.0
        assert policy.get_delay(50) == 5.0

    def test_jitter_stays_within_range(self) -> None:
        policy = RetryPolicy(base_delay=1.0, max_delay=5.0, jitter=0.2)

        for _ in range(20):
            delay = policy.get_delay(2)
            assert 1.6 <= delay <= 2.4

    def test_connection_errors_are_retried(self) -> None:
        policy = RetryPolicy()

        assert policy.should_retry(RedisConnectionError()) == RetryDecision.RETRY
        assert policy.should_retry(TimeoutError()) == RetryDecision.RETRY
        assert policy.should_retry(TransientStoreError("GET", 1)) == RetryDecision.RETRY

    def test_other_errors_abort(self) -> None:
        policy = RetryPolicy()

        assert policy.should_retry(ResponseError("WRONGTYPE")) == RetryDecision.ABORT
        assert policy.should_retry(ValueError()) == RetryDecision.ABORT
        assert policy.should_retry(MonitorStateError("start", "running")) == RetryDecision.ABORT


class TestRetryWithBackoff:

    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failures(self) -> None:
        calls = 0
        retries: list[int] = []

        async def flaky():
            nonlocal calls
            calls += 1
            if calls < 3:
                raise RedisConnectionError("reset")
            return "ok"

        result = await retry_with_backoff(
            flaky,
            policy=RetryPolicy(max_attempts=5, base_delay=0.0),
            on_retry=lambda attempt, error, delay: retries.append(attempt),
        )

        assert result == "ok"
        assert calls == 3
        assert retries == [1, 2]

    @pytest.mark.asyncio
    async def test_raises_after_max_attempts(self) -> None:
        calls = 0

        async def always_down():
            nonlocal calls
            calls += 1
            raise RedisConnectionError("refused")

        with pytest.raises(RedisConnectionError):
            await retry_with_backoff(
                always_down,
                policy=RetryPolicy(max_attempts=3, base_delay=0.0),
            )

        assert calls == 3

    @pytest.mark.asyncio
    async def test_non_retryable_error_raises_immediately(self) -> None:
        calls = 0

        async def wrong_type():
            nonlocal calls
            calls += 1
            raise ResponseError("WRONGTYPE")

        with pytest.raises(ResponseError):
            await retry_with_backoff(
                wrong_type,
                policy=RetryPolicy(max_attempts=3, base_delay=0.0),
            )

        assert calls == 1
