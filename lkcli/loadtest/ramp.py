"""
RampTicker: releases new testers in one-second windows.

Each window admits at most ceil(rate) testers. Testers call
`await ticker.acquire()` before connecting.
"""

import asyncio
import math
import time
from collections.abc import Awaitable, Callable


class RampTicker:
    """Token bucket refilled in whole batches once per second."""

    def __init__(
        self,
        per_second: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.burst = max(1, math.ceil(per_second))
        self.tokens = self.burst
        self.released = 0
        self._clock = clock
        self._sleep = sleep
        self._window_start: float | None = None
        self._lock = asyncio.Lock()

    def _refill(self, now: float):
        if self._window_start is None:
            self._window_start = now
            return
        elapsed = now - self._window_start
        if elapsed >= 1.0:
            self._window_start += math.floor(elapsed)
            self.tokens = self.burst

    async def acquire(self):
        """Wait for the current or next window to have room, then take a slot."""
        async with self._lock:
            while True:
                now = self._clock()
                self._refill(now)
                if self.tokens > 0:
                    self.tokens -= 1
                    self.released += 1
                    return
                await self._sleep(self._window_start + 1.0 - now)
