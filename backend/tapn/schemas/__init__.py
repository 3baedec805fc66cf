from tapn.schemas.booking import (
    RawBookingRequest,
    NormalizedBookingRequest,
    BookingView,
    BookingEnvelope,
    BookingListEnvelope,
    CancelBookingRequest,
    DeclineBookingRequest,
    AdminNotesUpdate,
)
from tapn.schemas.payment import (
    ConfirmPaymentRequest,
    PaymentIntentResponse,
)

__all__ = [
    "RawBookingRequest", "NormalizedBookingRequest",
    "BookingView", "BookingEnvelope", "BookingListEnvelope",
    "CancelBookingRequest", "DeclineBookingRequest", "AdminNotesUpdate",
    "ConfirmPaymentRequest", "PaymentIntentResponse",
]
