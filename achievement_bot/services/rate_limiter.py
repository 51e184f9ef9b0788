"""
Rate limiting for calls against the RetroAchievements API.

The sync driver awaits IntervalRateLimiter.acquire() between users. It is a
token bucket of size one refilled every `interval` seconds, kept apart from
the per-user processing so the business logic never sleeps on its own.
"""

import time
import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

class IntervalRateLimiter:
    """Enforces a minimum delay between consecutive acquisitions."""

    def __init__(self, interval: float,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        if interval < 0:
            raise ValueError("interval must not be negative")
        self.interval = interval
        self._clock = clock
        self._sleep = sleep
        self._last_acquired: Optional[float] = None
        self._lock = asyncio.Lock()  # Async lock for concurrent access

    async def acquire(self) -> float:
        """Wait until the token is available and take it. Returns the time waited."""
        async with self._lock:
            waited = 0.0
            if self._last_acquired is not None:
                remaining = self.interval - (self._clock() - self._last_acquired)
                if remaining > 0:
                    logger.debug(f"Rate limiter waiting {remaining:.2f}s")
                    await self._sleep(remaining)
                    waited = remaining
            self._last_acquired = self._clock()
            return waited

    def reset(self):
        """Make the next acquisition immediate."""
        self._last_acquired = None
