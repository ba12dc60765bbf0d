"""Process-wide throttle for calls to the keyword volume provider."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from demand_sweep.config import settings

logger = logging.getLogger(__name__)


class IntervalRateLimiter:
    """Single gate enforcing a minimum interval between provider calls.

    Every concurrent category task shares one instance, so calls are spaced
    across the whole process rather than per task. Waiters are served in
    arrival order because they queue on one lock.
    """

    def __init__(
        self,
        min_interval_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if min_interval_seconds < 0:
            raise ValueError("min_interval_seconds must be >= 0")
        self.min_interval_seconds = min_interval_seconds
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last_call_at: float | None = None
        self.total_calls = 0

    async def acquire(self) -> float:
        """Wait for the next free slot and return the seconds spent waiting."""
        async with self._lock:
            waited = 0.0
            if self._last_call_at is not None:
                elapsed = self._clock() - self._last_call_at
                waited = max(0.0, self.min_interval_seconds - elapsed)
                if waited > 0:
                    logger.debug("Throttling provider call", extra={"wait_seconds": round(waited, 3)})
                    await self._sleep(waited)
            self._last_call_at = self._clock()
            self.total_calls += 1
            return waited

    async def __aenter__(self) -> IntervalRateLimiter:
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        return None


_volume_rate_limiter: IntervalRateLimiter | None = None


def get_volume_rate_limiter() -> IntervalRateLimiter:
    """Get the shared limiter for DataForSEO calls."""
    global _volume_rate_limiter
    if _volume_rate_limiter is None:
        _volume_rate_limiter = IntervalRateLimiter(settings.volume_min_interval_seconds)
    return _volume_rate_limiter
