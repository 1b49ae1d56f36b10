"""Token-bucket rate limiter shared by all upstream API calls."""

import asyncio
import logging
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Token bucket admitting at most `rate` calls per second.

    With the default capacity of 1 there is no burst: consecutive calls are
    spaced 1/rate seconds apart. Waiters are admitted one at a time, in the
    order they acquire the internal lock. Cancelling a waiter (directly or via
    asyncio.timeout) raises CancelledError and consumes no token.
    """

    def __init__(
        self,
        rate: float,
        capacity: int = 1,
        clock: Callable[[], float] = time.monotonic,
    ):
        if rate <= 0:
            raise ValueError(f"rate must be positive, got {rate}")
        if capacity < 1:
            raise ValueError(f"capacity must be at least 1, got {capacity}")

        self.rate = rate
        self.capacity = capacity
        self._clock = clock
        self._tokens = float(capacity)
        self._updated_at = clock()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._updated_at)
        self._tokens = min(float(self.capacity), self._tokens + elapsed * self.rate)
        self._updated_at = now

    def delay(self) -> float:
        """Seconds until a token is available (0 if one is available now)."""
        self._refill()
        if self._tokens >= 1:
            return 0.0
        return (1 - self._tokens) / self.rate

    async def acquire(self) -> None:
        """Wait until a token is available, then take it."""
        async with self._lock:
            delay = self.delay()
            if delay > 0:
                logger.debug(f"Rate limiter: waiting {delay * 1000:.0f}ms before request")
                await asyncio.sleep(delay)
                self._refill()
            self._tokens = max(0.0, self._tokens - 1)
