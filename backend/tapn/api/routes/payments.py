"""
Pre-paid booking endpoints: open a payment intent, then confirm the
booking once the charge succeeded.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Response

from tapn.api.deps import (
    client_key,
    get_booking_rate_limiter,
    get_optional_actor,
    get_payment_gateway,
    get_repository,
)
from tapn.api.routes.bookings import CREATED_FIELDS, booking_summary, set_rate_limit_headers
from tapn.core.security import Actor
from tapn.schemas.booking import BookingEnvelope, RawBookingRequest
from tapn.schemas.payment import ConfirmPaymentRequest, PaymentIntentResponse
from tapn.services import payment_service
from tapn.services.interfaces.booking_repository import BookingRepository
from tapn.services.interfaces.payment_gateway import PaymentGateway
from tapn.services.interfaces.rate_limiter import RateLimiter

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("/intent", response_model=PaymentIntentResponse, response_model_by_alias=True)
async def create_payment_intent(
    body: RawBookingRequest,
    response: Response,
    key: str = Depends(client_key),
    actor: Optional[Actor] = Depends(get_optional_actor),
    repo: BookingRepository = Depends(get_repository),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    limiter: RateLimiter = Depends(get_booking_rate_limiter),
):
    """
    Check the slot and open a payment intent for it.

    No booking exists until /payments/confirm reconciles the charge.
    """
    receipt = await payment_service.create_payment_intent(
        repo, gateway, limiter, body, client_key=key, actor=actor
    )
    set_rate_limit_headers(response, receipt.rate_limit)
    return PaymentIntentResponse(
        client_secret=receipt.client_secret,
        payment_intent_id=receipt.payment_intent_id,
        amount=receipt.amount,
    )


@router.post("/confirm", response_model=BookingEnvelope)
async def confirm_payment(
    body: ConfirmPaymentRequest,
    actor: Optional[Actor] = Depends(get_optional_actor),
    repo: BookingRepository = Depends(get_repository),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """
    Turn a succeeded charge into a confirmed booking.

    Safe to call more than once for the same payment. If the slot was
    taken meanwhile, or the booking cannot be saved, the charge is
    refunded and an error is returned.
    """
    receipt = await payment_service.reconcile_payment(
        repo, gateway, body.payment_intent_id, actor=actor
    )
    fields = CREATED_FIELDS | {"payment_status", "payment_method", "total_price"}
    return BookingEnvelope(booking=booking_summary(receipt.booking, fields))
