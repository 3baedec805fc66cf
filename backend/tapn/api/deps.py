"""
Request-scoped dependencies: repository, rate limiter, payment gateway,
client key and the authenticated caller.
"""

from typing import Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from tapn.core.exceptions import Unauthenticated
from tapn.core.security import Actor, bearer_token, decode_access_token
from tapn.db.session import get_db
from tapn.infrastructure.stripe_gateway import StripeGateway
from tapn.repositories.booking_repository import SqlAlchemyBookingRepository
from tapn.services.interfaces.booking_repository import BookingRepository
from tapn.services.interfaces.payment_gateway import PaymentGateway
from tapn.services.interfaces.rate_limiter import RateLimiter
from tapn.services.strategy_factory import get_rate_limiter

_gateway: Optional[PaymentGateway] = None


def get_repository(db: AsyncSession = Depends(get_db)) -> BookingRepository:
    return SqlAlchemyBookingRepository(db)


def get_booking_rate_limiter() -> RateLimiter:
    return get_rate_limiter()


def get_payment_gateway() -> PaymentGateway:
    global _gateway
    if _gateway is None:
        _gateway = StripeGateway()
    return _gateway


def client_key(request: Request) -> str:
    """
    Rate-limit key for the caller.

    First X-Forwarded-For entry, then CF-Connecting-IP, then the socket
    peer, then "unknown".
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    cf_ip = request.headers.get("cf-connecting-ip")
    if cf_ip and cf_ip.strip():
        return cf_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


async def get_optional_actor(
    authorization: Optional[str] = Header(default=None),
    repo: BookingRepository = Depends(get_repository),
) -> Optional[Actor]:
    token = bearer_token(authorization)
    if token is None:
        return None
    payload = decode_access_token(token)
    user_id = str(payload["sub"])
    roles = await repo.get_roles(user_id)
    return Actor(user_id=user_id, email=payload.get("email"), roles=frozenset(roles))


async def get_current_actor(actor: Optional[Actor] = Depends(get_optional_actor)) -> Actor:
    if actor is None:
        raise Unauthenticated("Authentication required")
    return actor
