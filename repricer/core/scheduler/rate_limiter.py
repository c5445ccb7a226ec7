import asyncio
import time
from collections import deque
from typing import Deque


class RateLimiter:
    """
    Sliding-window limiter for marketplace calls: at most ``max_requests``
    acquisitions within any ``period`` seconds.
    """

    def __init__(self, max_requests: int, period: float):
        self.max_requests = max_requests
        self.period = period
        self._lock = asyncio.Lock()
        self._history: Deque[float] = deque()

    async def acquire(self) -> None:
        if self.max_requests <= 0 or self.period <= 0:
            return

        async with self._lock:
            now = time.monotonic()
            while self._history and now - self._history[0] >= self.period:
                self._history.popleft()

            if len(self._history) >= self.max_requests:
                sleep_for = self.period - (now - self._history[0])
                if sleep_for > 0:
                    await asyncio.sleep(sleep_for)
                while self._history and time.monotonic() - self._history[0] >= self.period:
                    self._history.popleft()

            self._history.append(time.monotonic())

    @property
    def in_window(self) -> int:
        now = time.monotonic()
        return sum(1 for stamp in self._history if now - stamp < self.period)
