"""
Process-wide gate for outbound inference calls.

At most one call is in flight at a time, and successive call starts are
spaced by at least ``min_interval_seconds``. Waiters are admitted in arrival
order through the FIFO waiter queue of ``asyncio.Lock``.
"""

import asyncio
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager

import structlog

logger = structlog.get_logger(__name__)


class InferenceRateLimiter:
    """Serialises inference calls across all concurrently handled requests."""

    def __init__(
        self,
        min_interval_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if min_interval_seconds < 0:
            raise ValueError("min_interval_seconds must not be negative")
        self.min_interval_seconds = min_interval_seconds
        self._clock = clock
        self._lock = asyncio.Lock()
        self._last_start: float | None = None
        self.calls_started = 0
        self.logger = logger.bind(component="inference_rate_limiter")

    @property
    def in_flight(self) -> bool:
        return self._lock.locked()

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[int]:
        """
        Wait for the permit and hold it for the duration of the block.

        Yields the sequence number of the call being started.
        """
        async with self._lock:
            if self._last_start is not None:
                wait = self._last_start + self.min_interval_seconds - self._clock()
                if wait > 0:
                    self.logger.debug("rate_limiter_waiting", wait_seconds=round(wait, 3))
                    await asyncio.sleep(wait)
            self._last_start = self._clock()
            self.calls_started += 1
            yield self.calls_started
