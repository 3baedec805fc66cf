"""
Redis-backed sliding-window rate limiter for multi-instance deployments.

Each key is a sorted set of request timestamps. A Lua script prunes the
window, counts, and records the new request atomically.

Circuit Breaker Pattern:
  On Redis failure the limiter "fails open" (allows the request) and
  records it. The limiter is an abuse guard, not a correctness control,
  so a Redis outage must not take booking creation down with it.
"""

import math
import time
import uuid
from typing import Optional

from tapn.core.exceptions import RateLimitExceeded
from tapn.core.logging import get_logger
from tapn.core.metrics import record_rate_limit
from tapn.infrastructure.redis_client import get_redis
from tapn.services.interfaces.rate_limiter import RateLimitDecision, RateLimiter

logger = get_logger(__name__)

SLIDING_WINDOW_SCRIPT = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])
redis.call('ZREMRANGEBYSCORE', key, '-inf', now - window)
local count = redis.call('ZCARD', key)
if count >= limit then
  local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
  return {0, count, oldest[2]}
end
redis.call('ZADD', key, now, ARGV[4])
redis.call('PEXPIRE', key, math.ceil(window * 1000))
return {1, count + 1, ARGV[1]}
"""


class RedisRateLimiter(RateLimiter):
    """
    Shared counters across instances.

    Use when:
    - More than one API process serves booking traffic
    - Limits must survive restarts within the window
    """

    def __init__(self, max_requests: int, window_seconds: float, prefix: str = "ratelimit:booking"):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.prefix = prefix
        self._script = None

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    async def _get_script(self):
        client = await get_redis()
        if client is None:
            return None
        if self._script is None:
            self._script = client.register_script(SLIDING_WINDOW_SCRIPT)
        return self._script

    def _fail_open(self, error: Optional[str]) -> RateLimitDecision:
        record_rate_limit("fail_open")
        logger.warning("rate_limiter_fail_open", error=error)
        return RateLimitDecision(allowed=True, remaining=self.max_requests - 1, limit=self.max_requests)

    async def check(self, key: str) -> RateLimitDecision:
        now = time.time()
        try:
            script = await self._get_script()
            if script is None:
                return self._fail_open("redis unavailable")
            allowed, count, oldest = await script(
                keys=[self._key(key)],
                args=[now, self.window_seconds, self.max_requests, f"{now}:{uuid.uuid4().hex}"],
            )
        except Exception as e:
            return self._fail_open(str(e))

        if int(allowed):
            return RateLimitDecision(
                allowed=True,
                remaining=max(self.max_requests - int(count), 0),
                limit=self.max_requests,
            )
        retry_after = float(oldest) + self.window_seconds - now
        return RateLimitDecision(
            allowed=False,
            remaining=0,
            limit=self.max_requests,
            retry_after_s=max(retry_after, 0.0),
        )

    async def reset(self, key: str) -> None:
        client = await get_redis()
        if client is None:
            return
        try:
            await client.delete(self._key(key))
        except Exception as e:
            logger.warning("rate_limiter_reset_failed", key=key, error=str(e))


async def enforce_rate_limit(limiter: RateLimiter, key: str) -> RateLimitDecision:
    """Count a booking-creation request; raise RateLimitExceeded when over the cap."""
    decision = await limiter.check(key)
    if not decision.allowed:
        record_rate_limit("rejected")
        logger.warning("rate_limit_exceeded", client_key=key, retry_after_s=decision.retry_after_s)
        raise RateLimitExceeded(retry_after=math.ceil(decision.retry_after_s))
    record_rate_limit("allowed")
    return decision
