"""
Rate limiter factory.
Configures which counter store backs the booking abuse guard.
"""

from typing import Optional

from tapn.core.config import get_settings
from tapn.services.interfaces.memory_rate_limiter import InMemoryRateLimiter
from tapn.services.interfaces.rate_limiter import RateLimiter
from tapn.services.rate_limit_service import RedisRateLimiter


def build_rate_limiter() -> RateLimiter:
    """
    Build the configured rate limiter.

    Selected via RATE_LIMIT_BACKEND:
    - memory (default): single-instance deployments
    - redis: shared counters for multi-instance deployments
    """
    settings = get_settings()
    if settings.RATE_LIMIT_BACKEND == "redis":
        return RedisRateLimiter(
            max_requests=settings.RATE_LIMIT_MAX_REQUESTS,
            window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
        )
    return InMemoryRateLimiter(
        max_requests=settings.RATE_LIMIT_MAX_REQUESTS,
        window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
    )


# Singleton instance
_limiter: Optional[RateLimiter] = None


def get_rate_limiter() -> RateLimiter:
    """Get rate limiter singleton."""
    global _limiter
    if _limiter is None:
        _limiter = build_rate_limiter()
    return _limiter
