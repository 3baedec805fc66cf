"""
Per-(venue, date) locks around "check availability, then insert".

Two layers:
  - An asyncio.Lock per key serializes requests inside this process.
  - With SLOT_LOCK_BACKEND=redis, a Redis SET NX lock with a TTL also
    serializes requests across processes. The TTL frees the slot if the
    holder dies mid-request.

Redis failures fail open: the request proceeds under the in-process lock
only, and the pre-paid flow still re-checks and refunds after payment.
A Redis lock still held after SLOT_LOCK_WAIT_SECONDS raises SlotLockTimeout.
"""

import asyncio
import time
import uuid
from contextlib import asynccontextmanager
from datetime import date
from typing import AsyncIterator

from tapn.core.config import get_settings
from tapn.core.exceptions import SlotLockTimeout
from tapn.core.logging import get_logger
from tapn.core.metrics import record_slot_lock
from tapn.infrastructure.redis_client import get_redis

logger = get_logger(__name__)

POLL_INTERVAL_SECONDS = 0.05

# Delete only if this request still owns the lock
RELEASE_SCRIPT = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
  return redis.call('DEL', KEYS[1])
end
return 0
"""

_locks: dict[tuple[str, date], asyncio.Lock] = {}
_waiters: dict[tuple[str, date], int] = {}


def _redis_key(venue_id: str, booking_date: date) -> str:
    return f"lock:slot:{venue_id}:{booking_date.isoformat()}"


async def acquire_redis_lock(key: str, token: str) -> bool:
    """
    Poll SET NX until the lock is ours.

    Returns False when Redis is unavailable and the caller proceeds
    without the cross-process lock.
    """
    settings = get_settings()
    deadline = time.monotonic() + settings.SLOT_LOCK_WAIT_SECONDS
    while True:
        client = await get_redis()
        if client is None:
            record_slot_lock("acquire", "fail_open")
            logger.warning("slot_lock_fail_open", key=key, error="redis unavailable")
            return False
        try:
            acquired = await client.set(key, token, nx=True, ex=settings.SLOT_LOCK_TTL_SECONDS)
        except Exception as e:
            record_slot_lock("acquire", "fail_open")
            logger.warning("slot_lock_fail_open", key=key, error=str(e))
            return False

        if acquired:
            record_slot_lock("acquire", "success")
            return True
        if time.monotonic() >= deadline:
            record_slot_lock("acquire", "blocked")
            logger.warning("slot_lock_wait_exceeded", key=key, waited_s=settings.SLOT_LOCK_WAIT_SECONDS)
            raise SlotLockTimeout()
        await asyncio.sleep(POLL_INTERVAL_SECONDS)


async def release_redis_lock(key: str, token: str) -> None:
    client = await get_redis()
    if client is None:
        record_slot_lock("release", "error")
        return
    try:
        released = await client.eval(RELEASE_SCRIPT, 1, key, token)
    except Exception as e:
        record_slot_lock("release", "error")
        logger.warning("slot_lock_release_failed", key=key, error=str(e))
        return
    if released:
        record_slot_lock("release", "success")
    else:
        # TTL ran out while the request was still working
        record_slot_lock("release", "expired")
        logger.warning("slot_lock_expired_before_release", key=key)


@asynccontextmanager
async def slot_lock(venue_id: str, booking_date: date) -> AsyncIterator[None]:
    key = (venue_id, booking_date)
    lock = _locks.setdefault(key, asyncio.Lock())
    _waiters[key] = _waiters.get(key, 0) + 1
    try:
        async with lock:
            held = False
            if get_settings().SLOT_LOCK_BACKEND == "redis":
                redis_key = _redis_key(venue_id, booking_date)
                token = uuid.uuid4().hex
                held = await acquire_redis_lock(redis_key, token)
            try:
                yield
            finally:
                if held:
                    await release_redis_lock(redis_key, token)
    finally:
        _waiters[key] -= 1
        if _waiters[key] == 0:
            _waiters.pop(key, None)
            _locks.pop(key, None)
