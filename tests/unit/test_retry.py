"""Unit tests for the retry/backoff controller."""

from unittest.mock import AsyncMock

import pytest

from invoice_recon.extraction.retry import RetryController, backoff_seconds
from invoice_recon.shared.errors import (
    ExhaustedRetries,
    MalformedProviderResponse,
    RateLimited,
    RetryClass,
    TransientProviderError,
)


class TestBackoffSchedule:
    """Backoff delays per error class."""

    @pytest.mark.parametrize(
        "attempt,expected",
        [(1, 1.0), (2, 2.0), (3, 4.0), (5, 16.0), (6, 30.0), (10, 30.0)],
    )
    def test_rate_limited_doubles_and_caps_at_30s(self, attempt: int, expected: float) -> None:
        """Rate limits back off 1s, 2s, 4s, ... up to 30s."""
        assert backoff_seconds(RetryClass.RATE_LIMITED, attempt) == pytest.approx(expected)

    @pytest.mark.parametrize(
        "attempt,expected",
        [(1, 0.5), (2, 0.75), (3, 1.125), (10, 5.0)],
    )
    def test_other_grows_by_half_and_caps_at_5s(self, attempt: int, expected: float) -> None:
        """Other errors back off 0.5s x 1.5^n up to 5s."""
        assert backoff_seconds(RetryClass.OTHER, attempt) == pytest.approx(expected)

    def test_jitter_bounds(self) -> None:
        """Jitter adds at most 1s for rate limits and 0.5s otherwise."""
        assert backoff_seconds(RetryClass.RATE_LIMITED, 1, 0.999) < 2.0
        assert backoff_seconds(RetryClass.OTHER, 1, 0.999) < 1.0


class TestRetryController:
    """Retry behavior of with_retry."""

    @pytest.mark.asyncio
    async def test_returns_first_success(self, clock) -> None:
        """Succeeds after transient failures, sleeping between attempts."""
        operation = AsyncMock(
            side_effect=[TransientProviderError("down"), TransientProviderError("down"), "result"]
        )
        controller = RetryController(sleep=clock.sleep, rng=lambda: 0.0)

        result = await controller.with_retry(operation, max_attempts=5)

        assert result == "result"
        assert operation.await_count == 3
        assert clock.sleeps == pytest.approx([0.5, 0.75])

    @pytest.mark.asyncio
    async def test_rate_limited_uses_longer_backoff(self, clock) -> None:
        """RateLimited failures use the exponential 1s base."""
        operation = AsyncMock(side_effect=[RateLimited("429"), RateLimited("429"), "ok"])
        controller = RetryController(sleep=clock.sleep, rng=lambda: 0.5)

        assert await controller.with_retry(operation, max_attempts=5) == "ok"
        assert clock.sleeps == pytest.approx([1.5, 2.5])

    @pytest.mark.asyncio
    async def test_exhausted_retries_carries_last_error(self, clock) -> None:
        """After max attempts the terminal error is attached, never swallowed."""
        last = RateLimited("still limited")
        operation = AsyncMock(side_effect=[RateLimited("first"), last])
        controller = RetryController(sleep=clock.sleep, rng=lambda: 0.0)

        with pytest.raises(ExhaustedRetries) as exc_info:
            await controller.with_retry(operation, max_attempts=2)

        assert exc_info.value.last_error is last
        assert exc_info.value.attempts == 2
        assert exc_info.value.__cause__ is last
        assert len(clock.sleeps) == 1

    @pytest.mark.asyncio
    async def test_non_retryable_error_surfaces_immediately(self, clock) -> None:
        """Malformed responses are not retried."""
        operation = AsyncMock(side_effect=MalformedProviderResponse("not json"))
        controller = RetryController(sleep=clock.sleep)

        with pytest.raises(MalformedProviderResponse):
            await controller.with_retry(operation, max_attempts=5)

        assert operation.await_count == 1
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_extra_retry_types(self, clock) -> None:
        """Callers can name additional exception types to retry."""
        operation = AsyncMock(side_effect=[KeyError("flaky"), "ok"])
        controller = RetryController(retry_on=(KeyError,), sleep=clock.sleep)

        assert await controller.with_retry(operation, max_attempts=2) == "ok"

    @pytest.mark.asyncio
    async def test_single_attempt_never_sleeps(self, clock) -> None:
        """max_attempts=1 fails on the first error without waiting."""
        operation = AsyncMock(side_effect=TransientProviderError("down"))
        controller = RetryController(sleep=clock.sleep)

        with pytest.raises(ExhaustedRetries):
            await controller.with_retry(operation, max_attempts=1)
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_plain_callable_returning_coroutine(self, clock) -> None:
        """A lambda returning a coroutine is awaited and retried like an async def."""
        operation = AsyncMock(side_effect=[TransientProviderError("down"), "ok"])
        controller = RetryController(sleep=clock.sleep, rng=lambda: 0.0)

        result = await controller.with_retry(lambda: operation(), max_attempts=3)

        assert result == "ok"
        assert operation.await_count == 2
        assert clock.sleeps == pytest.approx([0.5])
