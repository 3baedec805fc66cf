"""
In-process sliding-window rate limiter.
State lives in this process only and is lost on restart.
"""

import time
from collections import deque
from typing import Callable

from tapn.services.interfaces.rate_limiter import RateLimitDecision, RateLimiter


class InMemoryRateLimiter(RateLimiter):
    """
    Sliding log of request timestamps per key.

    Use when:
    - A single instance serves booking traffic
    - Best-effort abuse protection is enough
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}
        self._last_sweep = clock()

    def _sweep(self, now: float) -> None:
        """Forget keys whose newest hit has left the window."""
        cutoff = now - self.window_seconds
        for key in [k for k, hits in self._hits.items() if hits[-1] <= cutoff]:
            del self._hits[key]
        self._last_sweep = now

    async def check(self, key: str) -> RateLimitDecision:
        now = self._clock()
        if now - self._last_sweep >= self.window_seconds:
            self._sweep(now)

        hits = self._hits.get(key) or deque()
        while hits and hits[0] <= now - self.window_seconds:
            hits.popleft()
        if not hits:
            self._hits.pop(key, None)

        if len(hits) >= self.max_requests:
            retry_after = hits[0] + self.window_seconds - now
            return RateLimitDecision(
                allowed=False,
                remaining=0,
                limit=self.max_requests,
                retry_after_s=max(retry_after, 0.0),
            )

        hits.append(now)
        self._hits[key] = hits
        return RateLimitDecision(
            allowed=True,
            remaining=self.max_requests - len(hits),
            limit=self.max_requests,
        )

    async def reset(self, key: str) -> None:
        self._hits.pop(key, None)
