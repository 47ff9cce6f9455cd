"""Token buckets for inbound WebSocket quotas and outbound provider pacing."""

from __future__ import annotations

import asyncio
import time
from typing import Callable


class TokenBucket:
    def __init__(self, rate_per_sec: float, burst: float, clock: Callable[[], float] = time.perf_counter):
        self.rate = float(rate_per_sec)
        self.capacity = float(burst)
        self.tokens = float(burst)
        self.clock = clock
        self.last = clock()

    def _refill(self) -> None:
        now = self.clock()
        dt = now - self.last
        self.last = now
        self.tokens = min(self.capacity, self.tokens + dt * self.rate)

    def allow(self, cost: float = 1.0) -> bool:
        self._refill()
        if self.tokens >= cost:
            self.tokens -= cost
            return True
        return False

    def wait_time(self, cost: float = 1.0) -> float:
        """Seconds until `cost` tokens are available (0 if already there)."""
        self._refill()
        missing = cost - self.tokens
        if missing <= 0 or self.rate <= 0:
            return 0.0
        return missing / self.rate

    async def acquire(self, cost: float = 1.0) -> None:
        while not self.allow(cost):
            await asyncio.sleep(max(0.001, self.wait_time(cost)))
