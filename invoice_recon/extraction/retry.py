"""Retry/backoff controller.

Wraps one fallible async operation with bounded retries using tenacity.
Backoff depends on what went wrong:

- RateLimited: min(1s * 2^(attempt-1), 30s) + up to 1s jitter
- anything else: min(0.5s * 1.5^(attempt-1), 5s) + up to 0.5s jitter

Non-retryable errors (malformed responses, rejected requests, timeouts)
propagate immediately. When every attempt fails, ExhaustedRetries is raised
with the last error attached and chained.
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
)
from tenacity.wait import wait_base

from invoice_recon.shared.errors import (
    ExhaustedRetries,
    ProviderError,
    RetryClass,
    retry_class,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class wait_by_error_class(wait_base):
    """Exponential backoff with jitter, parameterized by the failed attempt's error."""

    def __init__(self, rng: Callable[[], float] = random.random) -> None:
        self._rng = rng

    def __call__(self, retry_state: RetryCallState) -> float:
        attempt = retry_state.attempt_number
        error = retry_state.outcome.exception() if retry_state.outcome else None
        if error is not None and retry_class(error) is RetryClass.RATE_LIMITED:
            return backoff_seconds(RetryClass.RATE_LIMITED, attempt, self._rng())
        return backoff_seconds(RetryClass.OTHER, attempt, self._rng())


def backoff_seconds(policy: RetryClass, attempt: int, jitter_fraction: float = 0.0) -> float:
    """Delay after a failed attempt.

    Args:
        policy: Backoff policy for the error that occurred
        attempt: 1-based number of the attempt that failed
        jitter_fraction: Value in [0, 1) scaling the random jitter

    Returns:
        Delay in seconds
    """
    if policy is RetryClass.RATE_LIMITED:
        base_ms = min(1000 * 2 ** (attempt - 1), 30000)
        jitter_ms = 1000 * jitter_fraction
    else:
        base_ms = min(500 * 1.5 ** (attempt - 1), 5000)
        jitter_ms = 500 * jitter_fraction
    return (base_ms + jitter_ms) / 1000


def is_retryable(error: BaseException) -> bool:
    """Default retry predicate: provider errors flagged retryable."""
    return isinstance(error, ProviderError) and error.retryable


class RetryController:
    """Bounded retries with error-dependent exponential backoff."""

    def __init__(
        self,
        retry_on: tuple[type[BaseException], ...] = (),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ) -> None:
        """Initialize controller.

        Args:
            retry_on: Extra exception types to retry besides retryable provider errors
            sleep: Async sleep (injectable for tests)
            rng: Jitter source returning floats in [0, 1)
        """
        self._retry_on = retry_on
        self._sleep = sleep
        self._rng = rng

    def _should_retry(self, error: BaseException) -> bool:
        return is_retryable(error) or (bool(self._retry_on) and isinstance(error, self._retry_on))

    async def with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        max_attempts: int,
        label: str = "operation",
    ) -> T:
        """Run operation until it succeeds or attempts run out.

        Args:
            operation: Zero-argument async callable
            max_attempts: Total attempts including the first
            label: Name used in log messages

        Returns:
            Result of the first successful attempt

        Raises:
            ExhaustedRetries: If every attempt failed with a retryable error
            Exception: Non-retryable errors, unchanged
        """

        def log_failure(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            logger.warning(
                f"{label} attempt {retry_state.attempt_number}/{max_attempts} failed: {error}; "
                f"retrying in {delay:.2f}s"
            )

        # tenacity only awaits coroutine functions; operation may be a plain
        # callable returning an awaitable
        async def attempt() -> T:
            return await operation()

        retrying = AsyncRetrying(
            retry=retry_if_exception(self._should_retry),
            wait=wait_by_error_class(self._rng),
            stop=stop_after_attempt(max_attempts),
            sleep=self._sleep,
            before_sleep=log_failure,
        )
        try:
            result: Any = await retrying(attempt)
        except RetryError as e:
            last_error = e.last_attempt.exception()
            attempts = e.last_attempt.attempt_number
            logger.warning(f"{label} failed after {attempts} attempt(s): {last_error}")
            raise ExhaustedRetries(last_error, attempts) from last_error  # type: ignore[arg-type]
        return result  # type: ignore[no-any-return]
