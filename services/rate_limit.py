from __future__ import annotations
import asyncio
import logging
import time
from collections import deque
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleeper = Callable[[float], Awaitable[None]]


class SlidingWindowRateLimiter:
    """
    At most `max_requests` acquisitions per rolling `window_seconds`.
    When the budget is spent, acquire() waits until the oldest request ages out.

    State lives on the instance; create one per run.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        *,
        clock: Clock = time.monotonic,
        sleep: Sleeper = asyncio.sleep,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._sleep = sleep
        self._stamps: deque[float] = deque()
        self._lock = asyncio.Lock()
        self.waits = 0

    def _evict(self, now: float) -> None:
        while self._stamps and now - self._stamps[0] >= self.window_seconds:
            self._stamps.popleft()

    @property
    def in_window(self) -> int:
        self._evict(self._clock())
        return len(self._stamps)

    async def acquire(self) -> None:
        async with self._lock:
            while True:
                now = self._clock()
                self._evict(now)
                if len(self._stamps) < self.max_requests:
                    self._stamps.append(now)
                    return
                wait = self.window_seconds - (now - self._stamps[0])
                self.waits += 1
                logger.info(f"[rate-limit] budget of {self.max_requests}/{self.window_seconds:g}s spent, waiting {wait:.1f}s")
                await self._sleep(max(wait, 0.0))

    def reset(self) -> None:
        self._stamps.clear()
        self.waits = 0
