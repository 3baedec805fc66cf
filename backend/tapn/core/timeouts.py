"""
Bounded waits for calls that leave the process (database, payment gateway).
"""

import asyncio
from typing import Awaitable, Optional, TypeVar

from tapn.core.config import get_settings
from tapn.core.exceptions import UpstreamTimeout
from tapn.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


async def with_timeout(
    awaitable: Awaitable[T],
    operation: str,
    timeout: Optional[float] = None,
) -> T:
    """
    Await `awaitable`, giving up after `timeout` seconds
    (UPSTREAM_TIMEOUT_SECONDS by default).

    Raises UpstreamTimeout so callers can tell a slow dependency apart
    from a real failure.
    """
    seconds = timeout if timeout is not None else get_settings().UPSTREAM_TIMEOUT_SECONDS
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except asyncio.TimeoutError as exc:
        logger.error("upstream_timeout", operation=operation, timeout_s=seconds)
        raise UpstreamTimeout(
            f"Timed out waiting for {operation}. Please try again."
        ) from exc
