"""
Service interfaces for dependency inversion.
Allows swapping implementations without changing business logic.
"""

from .booking_repository import BookingRepository
from .memory_rate_limiter import InMemoryRateLimiter
from .payment_gateway import GatewayPaymentIntent, PaymentGateway
from .rate_limiter import RateLimitDecision, RateLimiter

__all__ = [
    'BookingRepository',
    'GatewayPaymentIntent',
    'InMemoryRateLimiter',
    'PaymentGateway',
    'RateLimitDecision',
    'RateLimiter',
]
