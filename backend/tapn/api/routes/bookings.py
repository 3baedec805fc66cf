"""
Booking endpoints: pay-at-venue creation, status transitions, guest lookup
and listings.
"""

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, Response

from tapn.api.deps import (
    client_key,
    get_booking_rate_limiter,
    get_current_actor,
    get_optional_actor,
    get_payment_gateway,
    get_repository,
)
from tapn.core.security import Actor
from tapn.models.booking import STATUS_CANCELLED, STATUS_REJECTED, Booking
from tapn.schemas.booking import (
    AdminNotesUpdate,
    BookingEnvelope,
    BookingListEnvelope,
    BookingView,
    CancelBookingRequest,
    DeclineBookingRequest,
    RawBookingRequest,
)
from tapn.services import booking_service
from tapn.services.interfaces.booking_repository import BookingRepository
from tapn.services.interfaces.payment_gateway import PaymentGateway
from tapn.services.interfaces.rate_limiter import RateLimitDecision, RateLimiter

router = APIRouter(prefix="/bookings", tags=["Bookings"])

GUEST_FIELDS = {
    "id",
    "venue_id",
    "booking_date",
    "start_time",
    "end_time",
    "guest_count",
    "total_price",
    "status",
    "payment_status",
    "payment_method",
    "guest_name",
    "guest_email",
    "lookup_token",
}
CREATED_FIELDS = {
    "id",
    "venue_id",
    "booking_date",
    "start_time",
    "end_time",
    "status",
    "guest_name",
    "guest_email",
    "lookup_token",
}


def booking_summary(booking: Booking, fields: Optional[set[str]] = None) -> dict[str, Any]:
    view = BookingView.model_validate(booking)
    return view.model_dump(mode="json", include=fields)


def set_rate_limit_headers(response: Response, decision: Optional[RateLimitDecision]) -> None:
    if decision is not None:
        response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
        response.headers["X-RateLimit-Limit"] = str(decision.limit)


@router.post("", response_model=BookingEnvelope)
async def create_booking(
    body: RawBookingRequest,
    response: Response,
    key: str = Depends(client_key),
    actor: Optional[Actor] = Depends(get_optional_actor),
    repo: BookingRepository = Depends(get_repository),
    limiter: RateLimiter = Depends(get_booking_rate_limiter),
):
    """
    Reserve a slot to be paid at the venue.

    The booking is created pending; the venue's partner confirms it. The
    response carries the guest lookup token, shown once.
    """
    receipt = await booking_service.create_pay_at_venue_booking(
        repo, limiter, body, client_key=key, actor=actor
    )
    set_rate_limit_headers(response, receipt.rate_limit)
    return BookingEnvelope(booking=booking_summary(receipt.booking, CREATED_FIELDS))


@router.post("/cancel", response_model=BookingEnvelope)
async def cancel_booking(
    body: CancelBookingRequest,
    actor: Actor = Depends(get_current_actor),
    repo: BookingRepository = Depends(get_repository),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """Cancel a pending or confirmed booking; paid bookings are refunded."""
    booking = await booking_service.decline_or_cancel(
        repo, gateway, body.booking_id, actor, STATUS_CANCELLED, reason=body.reason
    )
    return BookingEnvelope(
        booking=booking_summary(booking, {"id", "status", "payment_status"})
    )


@router.post("/{booking_id}/confirm", response_model=BookingEnvelope)
async def confirm_booking(
    booking_id: str,
    actor: Actor = Depends(get_current_actor),
    repo: BookingRepository = Depends(get_repository),
):
    booking = await booking_service.confirm_pending_booking(repo, booking_id, actor)
    return BookingEnvelope(booking=booking_summary(booking, {"id", "status"}))


@router.post("/{booking_id}/decline", response_model=BookingEnvelope)
async def decline_booking(
    booking_id: str,
    body: Optional[DeclineBookingRequest] = None,
    actor: Actor = Depends(get_current_actor),
    repo: BookingRepository = Depends(get_repository),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    reason = body.reason if body else None
    booking = await booking_service.decline_or_cancel(
        repo, gateway, booking_id, actor, STATUS_REJECTED, reason=reason
    )
    return BookingEnvelope(booking=booking_summary(booking, {"id", "status"}))


@router.patch("/{booking_id}/admin-notes", response_model=BookingEnvelope)
async def update_admin_notes(
    booking_id: str,
    body: AdminNotesUpdate,
    actor: Actor = Depends(get_current_actor),
    repo: BookingRepository = Depends(get_repository),
):
    booking = await booking_service.set_admin_notes(repo, booking_id, actor, body.admin_notes)
    return BookingEnvelope(booking=booking_summary(booking, {"id", "admin_notes"}))


@router.get("/lookup", response_model=BookingEnvelope)
async def lookup_booking(
    token: Optional[str] = Query(default=None),
    repo: BookingRepository = Depends(get_repository),
):
    """Guest access to a booking by the token returned at creation."""
    booking = await booking_service.get_booking_by_lookup_token(repo, token)
    return BookingEnvelope(booking=booking_summary(booking, GUEST_FIELDS))


@router.get("/me", response_model=BookingListEnvelope)
async def list_my_bookings(
    actor: Actor = Depends(get_current_actor),
    repo: BookingRepository = Depends(get_repository),
):
    bookings = await booking_service.list_own_bookings(repo, actor)
    views = [BookingView.model_validate(b).model_copy(update={"admin_notes": None}) for b in bookings]
    return BookingListEnvelope(bookings=views)


@router.get("/partner", response_model=BookingListEnvelope)
async def list_venue_bookings(
    actor: Actor = Depends(get_current_actor),
    repo: BookingRepository = Depends(get_repository),
):
    bookings = await booking_service.list_partner_bookings(repo, actor)
    return BookingListEnvelope(bookings=[BookingView.model_validate(b) for b in bookings])


@router.get("", response_model=BookingListEnvelope)
async def list_all_bookings(
    status: Optional[str] = Query(default=None),
    actor: Actor = Depends(get_current_actor),
    repo: BookingRepository = Depends(get_repository),
):
    bookings = await booking_service.list_all_bookings(repo, actor, status)
    return BookingListEnvelope(bookings=[BookingView.model_validate(b) for b in bookings])
