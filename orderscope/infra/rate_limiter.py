from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable

from orderscope.config import RateLimitConfig
from orderscope.errors import ConfigurationError


class AsyncTokenBucket:
    """Continuous token bucket pacing requests to a single endpoint.

    The bucket starts full. Refill, wait and debit happen under one lock, so
    concurrent callers are admitted one at a time in arrival order.
    """

    def __init__(
        self,
        rate_per_sec: float,
        burst: int,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if rate_per_sec <= 0:
            raise ConfigurationError(f"rate_per_sec must be > 0, got {rate_per_sec}")
        if burst < 1:
            raise ConfigurationError(f"burst must be >= 1, got {burst}")
        self.rate_per_sec = float(rate_per_sec)
        self.capacity = float(burst)
        self.tokens = float(burst)
        self._clock = clock
        self._sleep = sleep
        self.updated_at = clock()
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config: RateLimitConfig) -> AsyncTokenBucket:
        return cls(config.rate, config.burst)

    async def acquire(self) -> None:
        async with self._lock:
            self._refill()
            while self.tokens < 1.0:
                await self._sleep(1.0 / self.rate_per_sec)
                self._refill()
            self.tokens -= 1.0

    def _refill(self) -> None:
        now = self._clock()
        # Clocks that step backwards must not drain the bucket.
        elapsed = max(0.0, now - self.updated_at)
        self.updated_at = now
        self.tokens = min(self.capacity, self.tokens + elapsed * self.rate_per_sec)
