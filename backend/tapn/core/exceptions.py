"""
Booking domain errors.

Every error carries a human-readable message that is returned verbatim to
the caller as `{"error": message}`. Status is 400 unless a subclass says
otherwise; the rate-limit error also carries response headers.
"""

from typing import Optional


class BookingError(Exception):
    """Base class for all errors surfaced by the booking endpoints."""

    status_code: int = 400
    default_message: str = "Booking request failed"

    def __init__(
        self,
        message: Optional[str] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> None:
        self.message = message or self.default_message
        self.code = self.__class__.__name__
        self.headers = headers or {}
        super().__init__(self.message)


# Request data

class ValidationError(BookingError):
    default_message = "Invalid booking request"


class FormatError(ValidationError):
    default_message = "Invalid format"


class InvalidTimeRange(ValidationError):
    default_message = "End time must be after start time"


class InvalidPaymentReference(ValidationError):
    default_message = "Invalid payment intent ID"


# Lookups

class VenueNotFound(BookingError):
    default_message = "Venue not found"


class BookingNotFound(BookingError):
    default_message = "Booking not found"


# Conflicts

class SlotUnavailable(BookingError):
    default_message = "This time slot is no longer available. Please select a different time."


class SlotTakenDuringPayment(SlotUnavailable):
    default_message = (
        "This time slot was booked while you were paying. "
        "Your payment has been refunded."
    )


# Abuse guard

class RateLimitExceeded(BookingError):
    status_code = 429
    default_message = "Too many booking requests. Please wait a few minutes and try again."

    def __init__(self, retry_after: int, message: Optional[str] = None) -> None:
        self.retry_after = max(int(retry_after), 1)
        super().__init__(
            message,
            headers={
                "Retry-After": str(self.retry_after),
                "X-RateLimit-Remaining": "0",
            },
        )


# Identity and permissions

class Unauthenticated(BookingError):
    default_message = "Authentication required"


class Forbidden(BookingError):
    default_message = "You are not allowed to perform this action"


# State machine

class AlreadyTerminal(BookingError):
    default_message = "This booking is already closed"


class InvalidTransition(BookingError):
    default_message = "This status change is not allowed"


# Infrastructure

class UpstreamTimeout(BookingError):
    default_message = "An upstream service timed out. Please try again."


class SlotLockTimeout(BookingError):
    default_message = "Another booking for this venue is in progress. Please try again."


class AvailabilityCheckFailed(BookingError):
    default_message = "Failed to check venue availability"


class PaymentLookupFailed(BookingError):
    default_message = "Failed to retrieve payment"


class PaymentNotCompleted(BookingError):
    def __init__(self, payment_status: str) -> None:
        self.payment_status = payment_status
        super().__init__(f"Payment not completed. Status: {payment_status}")


class PaymentGatewayError(BookingError):
    default_message = "Payment provider request failed"


class BookingCreationFailed(BookingError):
    default_message = "Failed to create booking. Please try again."


class RefundFailed(BookingError):
    default_message = (
        "We could not complete your booking and the automatic refund failed. "
        "Our team has been notified and will refund you manually."
    )
