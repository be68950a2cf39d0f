"""Rolling-window request throttle shared by every generation call."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60.0
SAFETY_MARGIN = 0.1  # seconds added to each wait so the oldest stamp has expired


class RateLimiter:
    """Keeps the number of requests in any rolling window under a fixed budget.

    The timestamp queue is the only mutable state shared across logical
    calls.  Callers are serialised through an ``asyncio.Lock`` so that two
    coroutines cannot both observe a free slot and overspend it.
    """

    def __init__(
        self,
        max_requests_per_minute: int = 5,
        window: float = WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_requests_per_minute < 1:
            raise ValueError("max_requests_per_minute must be at least 1")
        self.max_requests = max_requests_per_minute
        self.window = window
        self._clock = clock
        self._sleep = sleep
        self._requests: deque[float] = deque()
        self._lock = asyncio.Lock()

    def _prune(self, now: float) -> None:
        window_start = now - self.window
        while self._requests and self._requests[0] <= window_start:
            self._requests.popleft()

    async def wait_if_needed(self) -> None:
        """Suspend just long enough to stay under budget, then record the request."""
        async with self._lock:
            now = self._clock()
            self._prune(now)

            if len(self._requests) >= self.max_requests:
                wait = self._requests[0] + self.window - now + SAFETY_MARGIN
                if wait > 0:
                    logger.info(
                        "Rate limiter: waiting %.1fs to stay under %d req/window",
                        wait, self.max_requests,
                    )
                    await self._sleep(wait)
                    self._prune(self._clock())

            self._requests.append(self._clock())

    def current_count(self) -> int:
        self._prune(self._clock())
        return len(self._requests)

    def reset(self) -> None:
        self._requests.clear()
