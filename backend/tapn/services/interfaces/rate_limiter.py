"""
Rate limiter interface.
Allows swapping the counter store (process memory, Redis) without
touching the booking entry points.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    limit: int
    retry_after_s: float = 0.0


class RateLimiter(ABC):
    """
    Sliding-window request cap per client key.

    Implementations:
    - InMemoryRateLimiter: per-process, resets on restart
    - RedisRateLimiter: shared across instances
    """

    @abstractmethod
    async def check(self, key: str) -> RateLimitDecision:
        """
        Count one request for `key` and decide whether it may proceed.

        Rejected requests are not counted against the window.
        """
        pass

    @abstractmethod
    async def reset(self, key: str) -> None:
        """Forget every request recorded for `key`."""
        pass
