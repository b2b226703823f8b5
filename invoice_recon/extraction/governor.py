"""Rate governor for outbound provider calls.

Serializes every operation submitted to one instance and spaces their start
times by a minimum interval. asyncio.Lock hands itself to waiters in FIFO
order, so queued callers run in submission order.

One instance is created per process (see create_rate_governor) and passed to
every orchestrator that talks to the same provider account.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import TypeVar

from invoice_recon.shared.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RateGovernor:
    """Runs operations one at a time with a minimum start-to-start gap.

    Attributes:
        min_interval: Minimum gap between two operation starts, in seconds
    """

    def __init__(
        self,
        min_interval: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize governor.

        Args:
            min_interval: Minimum gap between operation starts, in seconds
            clock: Monotonic clock (injectable for tests)
            sleep: Async sleep (injectable for tests)
        """
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last_start: float | None = None
        self._waiting = 0

    @property
    def queue_length(self) -> int:
        """Number of callers waiting for their turn."""
        return self._waiting

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run an operation when its turn and the interval allow.

        Args:
            operation: Zero-argument callable performing the external call

        Returns:
            Whatever the operation returns

        Raises:
            Exception: Whatever the operation raises
        """
        self._waiting += 1
        try:
            await self._lock.acquire()
        finally:
            self._waiting -= 1

        try:
            if self._last_start is not None:
                remaining = self.min_interval - (self._clock() - self._last_start)
                if remaining > 0:
                    logger.debug(f"Rate governor: waiting {remaining:.2f}s before next call")
                    await self._sleep(remaining)
            self._last_start = self._clock()
            return await operation()
        finally:
            self._lock.release()


def create_rate_governor(settings: Settings) -> RateGovernor:
    """Create the process-wide governor from configuration."""
    return RateGovernor(min_interval=settings.rate_limit_min_interval_ms / 1000)
