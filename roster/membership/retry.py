"""
Retry utilities with capped backoff for store commands.

The delay before retry ``n`` (1-based) is ``min(n * base_delay, max_delay)``
plus optional jitter. Each logical request has a bounded number of attempts;
once exhausted the last error is raised to the caller.
"""

import asyncio
import random
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Awaitable, Callable, TypeVar

from redis.exceptions import (
    ConnectionError as RedisConnectionError,
    TimeoutError as RedisTimeoutError,
)

from .errors import ErrorSeverity, MembershipError


T = TypeVar('T')


class RetryDecision(Enum):
    """Decision for whether to retry an operation."""
    RETRY = auto()       # Retry after delay
    ABORT = auto()       # Don't retry, give up


@dataclass(slots=True)
class RetryPolicy:
    """
    Configuration for retry behavior.

    Example:
        policy = RetryPolicy(
            max_attempts=5,
            base_delay=0.5,
            max_delay=5.0,
        )
    """

    max_attempts: int = 5
    """Maximum number of attempts (including first try)."""

    base_delay: float = 0.5
    """Delay growth per attempt in seconds."""

    max_delay: float = 5.0
    """Maximum delay in seconds."""

    jitter: float = 0.0
    """Jitter factor (0-1). Delay varies by +/- jitter*delay."""

    def should_retry(self, error: Exception) -> RetryDecision:
        """Determine if an error should trigger a retry."""
        if isinstance(error, MembershipError):
            if error.severity == ErrorSeverity.TRANSIENT:
                return RetryDecision.RETRY
            return RetryDecision.ABORT

        if isinstance(
            error,
            (
                RedisConnectionError,
                RedisTimeoutError,
                asyncio.TimeoutError,
                ConnectionError,
                OSError,
            ),
        ):
            return RetryDecision.RETRY

        return RetryDecision.ABORT

    def get_delay(self, attempt: int) -> float:
        """Calculate the delay before retry number ``attempt`` (1-based)."""
        delay = min(self.base_delay * attempt, self.max_delay)

        if self.jitter > 0:
            jitter_range = delay * self.jitter
            delay += random.uniform(-jitter_range, jitter_range)

        return max(0, delay)


DEFAULT_RETRY_POLICY = RetryPolicy()


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    on_retry: Callable[[int, Exception, float], Awaitable[None] | None] | None = None,
) -> T:
    """
    Retry an async function with capped backoff.

    Args:
        fn: Async function to retry
        policy: Retry policy (defaults to DEFAULT_RETRY_POLICY)
        on_retry: Callback before each retry (attempt, error, delay)

    Returns:
        Result of successful function call

    Raises:
        Last exception if all retries exhausted or the error is not retryable
    """
    if policy is None:
        policy = DEFAULT_RETRY_POLICY

    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await fn()

        except Exception as e:
            if policy.should_retry(e) == RetryDecision.ABORT:
                raise

            if attempt == policy.max_attempts:
                raise

            delay = policy.get_delay(attempt)

            if on_retry:
                callback_result = on_retry(attempt, e, delay)
                if asyncio.iscoroutine(callback_result):
                    await callback_result

            if delay > 0:
                await asyncio.sleep(delay)

    raise RuntimeError("Retry loop exited unexpectedly")


async def maybe_await(result: Any) -> Any:
    """Await ``result`` if a callback handed back a coroutine."""
    if asyncio.iscoroutine(result):
        return await result

    return result
