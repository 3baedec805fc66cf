"""
Reservation lifecycle: pay-at-venue creation and status transitions.

STATE MACHINE
=============

    pending ──confirm──▶ confirmed ──cancel──▶ cancelled
       │                                          ▲
       ├──decline──▶ rejected                     │
       └──cancel──────────────────────────────────┘

  - pending is the initial state for pay-at-venue bookings; pre-paid
    bookings are created confirmed (see payment_service).
  - confirm / decline: the venue's partner or an admin, from pending only.
  - cancel: the booking owner or an admin from pending or confirmed; the
    venue's partner from confirmed (a pending request is declined instead).
  - rejected and cancelled are terminal.

CONCURRENCY
===========

Status changes are compare-and-swap updates
(UPDATE … WHERE id = :id AND status = :expected), so two admins acting on
the same booking cannot overwrite each other: the loser sees zero rows
updated and gets InvalidTransition (or AlreadyTerminal).

Pay-at-venue creation checks availability and inserts without a database
lock. Within one process the per-slot lock serializes the two steps;
across processes a rare double booking is possible and is resolved by the
partner, since no money has been taken.
"""

import uuid
from dataclasses import dataclass
from typing import Optional, Union

from sqlalchemy.exc import SQLAlchemyError

from tapn.core.config import get_settings
from tapn.core.exceptions import (
    AlreadyTerminal,
    BookingCreationFailed,
    BookingError,
    BookingNotFound,
    FormatError,
    Forbidden,
    InvalidTransition,
    SlotUnavailable,
    Unauthenticated,
    UpstreamTimeout,
    ValidationError,
    VenueNotFound,
)
from tapn.core.logging import alert_operator, get_logger
from tapn.core.metrics import record_booking_attempt, record_refund, record_transition
from tapn.core.security import Actor
from tapn.core.timeouts import with_timeout
from tapn.models.booking import (
    LOOKUP_TOKEN_PREFIX,
    LOOKUP_TOKEN_SEPARATOR,
    METHOD_PAY_AT_VENUE,
    METHOD_STRIPE,
    PAYMENT_PAID,
    PAYMENT_PENDING,
    PAYMENT_REFUNDED,
    STATUS_CANCELLED,
    STATUS_CONFIRMED,
    STATUS_PENDING,
    STATUS_REJECTED,
    Booking,
)
from tapn.models.venue import Venue
from tapn.schemas.booking import NormalizedBookingRequest, RawBookingRequest
from tapn.services.availability_service import PAY_AT_VENUE_BLOCKING, check_available
from tapn.services.booking_validator import is_valid_uuid, sanitize_notes, validate_booking_request
from tapn.services.interfaces.booking_repository import BookingRepository
from tapn.services.interfaces.payment_gateway import PaymentGateway
from tapn.services.interfaces.rate_limiter import RateLimitDecision, RateLimiter
from tapn.services.rate_limit_service import enforce_rate_limit
from tapn.services.slot_lock import slot_lock

logger = get_logger(__name__)

FLOW = "pay_at_venue"
MAX_ADMIN_NOTES_LENGTH = 2000


@dataclass(frozen=True)
class BookingReceipt:
    booking: Booking
    lookup_token: Optional[str]
    rate_limit: Optional[RateLimitDecision] = None


def generate_lookup_token() -> str:
    return str(uuid.uuid4())


def notes_with_lookup_token(notes: Optional[str], token: str) -> str:
    """Append the machine-readable lookup line to free-text notes."""
    if notes:
        return f"{notes}{LOOKUP_TOKEN_SEPARATOR}{LOOKUP_TOKEN_PREFIX}{token}"
    return f"{LOOKUP_TOKEN_PREFIX}{token}"


def resolve_booking_user(request: NormalizedBookingRequest, actor: Optional[Actor]) -> Optional[str]:
    """
    Account the booking is recorded under.

    Guests (no token) book without an account. A user id in the body must
    match the authenticated caller.
    """
    if actor is None:
        if request.user_id:
            raise Unauthenticated("Sign in to book under an account")
        return None
    if request.user_id and request.user_id != actor.user_id:
        raise Forbidden("You can only create bookings for your own account")
    return actor.user_id


async def ensure_venue_bookable(repo: BookingRepository, venue_id: str) -> Venue:
    venue = await with_timeout(repo.get_venue(venue_id), operation="venue lookup")
    if venue is None or not venue.is_active:
        raise VenueNotFound()
    return venue


async def create_pay_at_venue_booking(
    repo: BookingRepository,
    limiter: RateLimiter,
    raw: Union[RawBookingRequest, dict],
    client_key: str,
    actor: Optional[Actor] = None,
) -> BookingReceipt:
    """
    Rate limit → validate → availability (pending + confirmed) → insert
    a pending booking carrying a fresh guest lookup token.
    """
    decision = await enforce_rate_limit(limiter, client_key)

    try:
        request = validate_booking_request(raw)
    except ValidationError as e:
        record_booking_attempt(FLOW, "invalid")
        logger.info("booking_validation_failed", client_key=client_key, reason=e.message)
        raise
    logger.info(
        "booking_request_received",
        venue_id=request.venue_id,
        booking_date=str(request.booking_date),
        start_time=request.start_time,
        end_time=request.end_time,
        total_price=request.total_price,
        client_key=client_key,
    )

    user_id = resolve_booking_user(request, actor)
    await ensure_venue_bookable(repo, request.venue_id)

    async with slot_lock(request.venue_id, request.booking_date):
        availability = await check_available(
            repo,
            request.venue_id,
            request.booking_date,
            request.time_range,
            PAY_AT_VENUE_BLOCKING,
        )
        if not availability.available:
            record_booking_attempt(FLOW, "conflict")
            raise SlotUnavailable()

        lookup_token = generate_lookup_token()
        booking = Booking(
            venue_id=request.venue_id,
            user_id=user_id,
            booking_date=request.booking_date,
            start_time=request.time_range.start_time,
            end_time=request.time_range.end_time,
            guest_count=request.guest_count,
            total_price=request.total_price,
            status=STATUS_PENDING,
            payment_status=PAYMENT_PENDING,
            payment_method=METHOD_PAY_AT_VENUE,
            notes=notes_with_lookup_token(request.notes, lookup_token),
            guest_name=request.guest_name,
            guest_phone=request.guest_phone,
            guest_email=request.guest_email,
        )
        try:
            booking = await with_timeout(repo.insert_booking(booking), operation="booking insert")
            await with_timeout(repo.commit(), operation="booking commit")
        except SQLAlchemyError as e:
            await repo.rollback()
            record_booking_attempt(FLOW, "error")
            logger.error("booking_insert_failed", venue_id=request.venue_id, error=str(e))
            raise BookingCreationFailed() from e
        except UpstreamTimeout:
            await repo.rollback()
            record_booking_attempt(FLOW, "error")
            logger.error("booking_insert_timed_out", venue_id=request.venue_id)
            raise

    record_booking_attempt(FLOW, "success")
    logger.info("booking_created", booking_id=booking.id, venue_id=booking.venue_id, client_key=client_key)
    return BookingReceipt(booking=booking, lookup_token=lookup_token, rate_limit=decision)


# Status transitions

async def load_booking(repo: BookingRepository, booking_id: Optional[str]) -> Booking:
    if not booking_id:
        raise ValidationError("Booking ID is required")
    if not is_valid_uuid(booking_id):
        raise FormatError("Invalid booking ID format")
    booking = await with_timeout(repo.get_booking(booking_id), operation="booking lookup")
    if booking is None:
        raise BookingNotFound()
    return booking


def is_booking_owner(actor: Actor, booking: Booking) -> bool:
    return booking.user_id is not None and booking.user_id == actor.user_id


async def manages_venue(repo: BookingRepository, actor: Actor, booking: Booking) -> bool:
    venue = await repo.get_venue(booking.venue_id)
    return venue is not None and venue.owner_id is not None and venue.owner_id == actor.user_id


def _append_admin_note(existing: Optional[str], line: str) -> str:
    combined = f"{existing}\n{line}" if existing else line
    return combined[-MAX_ADMIN_NOTES_LENGTH:]


async def _swap_status(
    repo: BookingRepository,
    booking: Booking,
    new_status: str,
    **changes,
) -> Booking:
    old_status = booking.status
    updated = await with_timeout(
        repo.update_status_if_expected(booking.id, old_status, new_status, **changes),
        operation="booking status update",
    )
    if updated is None:
        current = await repo.get_booking(booking.id)
        if current is not None and current.is_terminal:
            raise AlreadyTerminal(f"This booking is already {current.status}")
        raise InvalidTransition("This booking was changed by someone else. Please refresh and try again.")
    await with_timeout(repo.commit(), operation="booking commit")
    record_transition(old_status, new_status)
    logger.info(
        "booking_status_changed",
        booking_id=booking.id,
        from_status=old_status,
        to_status=new_status,
    )
    return updated


async def confirm_pending_booking(
    repo: BookingRepository,
    booking_id: str,
    actor: Actor,
    strict: Optional[bool] = None,
) -> Booking:
    """
    pending → confirmed, by the venue's partner or an admin.

    Confirming an already-confirmed booking succeeds without changes,
    unless strict mode (STRICT_TRANSITIONS) is on, where it raises
    InvalidTransition.
    """
    if strict is None:
        strict = get_settings().STRICT_TRANSITIONS

    booking = await load_booking(repo, booking_id)
    if not (actor.is_admin or await manages_venue(repo, actor, booking)):
        raise Forbidden("Only the venue's partner or an admin can confirm bookings")

    if booking.status == STATUS_CONFIRMED:
        if strict:
            raise InvalidTransition("This booking is already confirmed")
        logger.info("booking_already_confirmed", booking_id=booking.id)
        return booking
    if booking.is_terminal:
        raise AlreadyTerminal(f"This booking is already {booking.status}")

    try:
        return await _swap_status(repo, booking, STATUS_CONFIRMED)
    except InvalidTransition:
        current = await repo.get_booking(booking.id)
        if not strict and current is not None and current.status == STATUS_CONFIRMED:
            return current
        raise


async def decline_or_cancel(
    repo: BookingRepository,
    gateway: Optional[PaymentGateway],
    booking_id: str,
    actor: Actor,
    target_status: str,
    reason: Optional[str] = None,
) -> Booking:
    """
    Move a booking to `rejected` (decline) or `cancelled`.

    A booking that is already cancelled or rejected always fails with
    AlreadyTerminal, whatever the target. Cancelling a paid pre-paid
    booking refunds it; a failed refund leaves the cancellation in place,
    keeps payment_status "paid" and alerts the operator channel.
    """
    booking = await load_booking(repo, booking_id)
    if booking.is_terminal:
        raise AlreadyTerminal(f"This booking is already {booking.status}")
    if target_status not in (STATUS_REJECTED, STATUS_CANCELLED):
        raise InvalidTransition(f"Cannot move a booking to '{target_status}' here")

    partner = await manages_venue(repo, actor, booking)
    if target_status == STATUS_REJECTED:
        if not (actor.is_admin or partner):
            raise Forbidden("Only the venue's partner or an admin can decline bookings")
        if booking.status != STATUS_PENDING:
            raise InvalidTransition("Only pending bookings can be declined")
    else:
        allowed = (
            actor.is_admin
            or is_booking_owner(actor, booking)
            or (partner and booking.status == STATUS_CONFIRMED)
        )
        if not allowed:
            raise Forbidden("You can only cancel your own bookings")

    changes = {}
    cleaned_reason = sanitize_notes(reason, get_settings().MAX_NOTES_LENGTH)
    if cleaned_reason:
        label = "Declined" if target_status == STATUS_REJECTED else "Cancelled"
        changes["admin_notes"] = _append_admin_note(
            booking.admin_notes, f"{label} by {actor.user_id}: {cleaned_reason}"
        )

    updated = await _swap_status(repo, booking, target_status, **changes)

    if (
        target_status == STATUS_CANCELLED
        and updated.payment_method == METHOD_STRIPE
        and updated.payment_status == PAYMENT_PAID
        and updated.stripe_payment_intent_id
    ):
        updated = await _refund_cancelled_booking(repo, gateway, updated)
    return updated


async def _refund_cancelled_booking(
    repo: BookingRepository,
    gateway: Optional[PaymentGateway],
    booking: Booking,
) -> Booking:
    intent_id = booking.stripe_payment_intent_id
    try:
        if gateway is None:
            raise BookingError("Payment gateway is not configured")
        refund_id = await gateway.refund(intent_id)
    except BookingError as e:
        record_refund("cancellation", issued=False)
        alert_operator(
            "cancellation_refund_failed",
            booking_id=booking.id,
            payment_intent_id=intent_id,
            amount=booking.total_price,
            error=e.message,
        )
        return booking

    record_refund("cancellation", issued=True)
    logger.info("cancellation_refunded", booking_id=booking.id, refund_id=refund_id)
    try:
        refreshed = await repo.update_fields(booking.id, payment_status=PAYMENT_REFUNDED)
        await repo.commit()
    except SQLAlchemyError as e:
        alert_operator(
            "refund_not_recorded",
            booking_id=booking.id,
            payment_intent_id=intent_id,
            refund_id=refund_id,
            error=str(e),
        )
        return booking
    return refreshed or booking


async def set_admin_notes(
    repo: BookingRepository,
    booking_id: str,
    actor: Actor,
    admin_notes: Optional[str],
) -> Booking:
    if not actor.is_admin:
        raise Forbidden("Only admins can edit internal notes")
    booking = await load_booking(repo, booking_id)
    cleaned = sanitize_notes(admin_notes, MAX_ADMIN_NOTES_LENGTH)
    updated = await repo.update_fields(booking.id, admin_notes=cleaned)
    await repo.commit()
    logger.info("admin_notes_updated", booking_id=booking.id, admin_id=actor.user_id)
    return updated or booking


# Queries

async def get_booking_by_lookup_token(repo: BookingRepository, token: Optional[str]) -> Booking:
    if not token or not is_valid_uuid(token):
        raise FormatError("Invalid lookup token")
    booking = await with_timeout(repo.find_by_lookup_token(token.lower()), operation="booking lookup")
    if booking is None:
        raise BookingNotFound()
    return booking


async def list_own_bookings(repo: BookingRepository, actor: Actor) -> list[Booking]:
    return await repo.list_for_user(actor.user_id)


async def list_partner_bookings(repo: BookingRepository, actor: Actor) -> list[Booking]:
    return await repo.list_for_owner(actor.user_id)


async def list_all_bookings(
    repo: BookingRepository,
    actor: Actor,
    status: Optional[str] = None,
) -> list[Booking]:
    if not actor.is_admin:
        raise Forbidden("Admin access required")
    return await repo.list_all(status)
