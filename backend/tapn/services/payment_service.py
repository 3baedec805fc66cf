"""
Pre-paid booking flow: payment intent creation and payment reconciliation.

TWO PHASES
==========

  1. create_payment_intent: validate, check the slot against confirmed
     bookings, and open a gateway payment intent whose metadata carries
     the whole normalized booking plus a pre-generated lookup token. No
     booking row exists yet.
  2. reconcile_payment: once the client reports the charge, fetch the
     intent, require status "succeeded", and commit the reservation from
     the metadata.

Between the two phases another guest may take the slot. Reconciliation
therefore re-checks availability before inserting. From the moment the
charge is known to have succeeded, every failure path refunds the full
amount before the error is returned:

    slot taken        → refund → SlotTakenDuringPayment
    insert/commit err → refund → BookingCreationFailed
    anything else     → refund → original error

If the refund itself fails the caller gets RefundFailed and the operator
channel gets a manual-intervention alert: money was collected, there is
no booking, and there is no refund.

A paid intent maps to at most one booking (uq_bookings_payment_intent).
A repeated confirm returns that booking and never refunds: the lookup is
repeated under the slot lock, and a unique-constraint hit on insert
resolves to the booking another process committed.
"""

from dataclasses import dataclass
import re
from typing import Optional, Union

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from tapn.core.exceptions import (
    BookingCreationFailed,
    BookingError,
    Forbidden,
    InvalidPaymentReference,
    PaymentNotCompleted,
    RefundFailed,
    SlotTakenDuringPayment,
    SlotUnavailable,
    ValidationError,
)
from tapn.core.logging import alert_operator, get_logger
from tapn.core.metrics import record_booking_attempt, record_reconciliation, record_refund
from tapn.core.security import Actor
from tapn.core.timeouts import with_timeout
from tapn.models.booking import (
    METHOD_STRIPE,
    PAYMENT_PAID,
    STATUS_CONFIRMED,
    Booking,
)
from tapn.schemas.booking import NormalizedBookingRequest, RawBookingRequest
from tapn.services.availability_service import PREPAID_BLOCKING, check_available
from tapn.services.booking_service import (
    BookingReceipt,
    ensure_venue_bookable,
    generate_lookup_token,
    notes_with_lookup_token,
    resolve_booking_user,
)
from tapn.services.booking_validator import validate_booking_request
from tapn.services.interfaces.booking_repository import BookingRepository
from tapn.services.interfaces.payment_gateway import GatewayPaymentIntent, PaymentGateway
from tapn.services.interfaces.rate_limiter import RateLimitDecision, RateLimiter
from tapn.services.rate_limit_service import enforce_rate_limit
from tapn.services.slot_lock import slot_lock

logger = get_logger(__name__)

FLOW = "prepaid"
PAYMENT_INTENT_PATTERN = re.compile(r"^pi_[a-zA-Z0-9]{24,}$")

# Metadata keys written at intent creation and read back at reconciliation
BOOKING_METADATA_FIELDS = (
    "venue_id",
    "booking_date",
    "start_time",
    "end_time",
    "guest_count",
    "guest_name",
    "guest_phone",
    "guest_email",
    "notes",
    "user_id",
)
LOOKUP_TOKEN_KEY = "lookup_token"


@dataclass(frozen=True)
class PaymentIntentReceipt:
    client_secret: str
    payment_intent_id: str
    amount: int
    rate_limit: Optional[RateLimitDecision] = None


def booking_metadata(request: NormalizedBookingRequest, lookup_token: str) -> dict[str, str]:
    raw = request.as_raw().model_dump()
    metadata = {key: "" if raw[key] is None else str(raw[key]) for key in BOOKING_METADATA_FIELDS}
    metadata[LOOKUP_TOKEN_KEY] = lookup_token
    return metadata


def request_from_metadata(intent: GatewayPaymentIntent) -> NormalizedBookingRequest:
    """Rebuild and re-validate the booking described by the intent metadata."""
    fields = {key: intent.metadata.get(key) or None for key in BOOKING_METADATA_FIELDS}
    fields["total_price"] = intent.amount
    return validate_booking_request(RawBookingRequest(**fields))


async def create_payment_intent(
    repo: BookingRepository,
    gateway: PaymentGateway,
    limiter: RateLimiter,
    raw: Union[RawBookingRequest, dict],
    client_key: str,
    actor: Optional[Actor] = None,
) -> PaymentIntentReceipt:
    decision = await enforce_rate_limit(limiter, client_key)

    try:
        request = validate_booking_request(raw)
    except ValidationError as e:
        record_booking_attempt(FLOW, "invalid")
        logger.info("payment_intent_validation_failed", client_key=client_key, reason=e.message)
        raise
    logger.info(
        "payment_intent_requested",
        venue_id=request.venue_id,
        booking_date=str(request.booking_date),
        start_time=request.start_time,
        end_time=request.end_time,
        total_price=request.total_price,
    )

    user_id = resolve_booking_user(request, actor)
    if user_id != request.user_id:
        request = request.model_copy(update={"user_id": user_id})
    await ensure_venue_bookable(repo, request.venue_id)

    availability = await check_available(
        repo,
        request.venue_id,
        request.booking_date,
        request.time_range,
        PREPAID_BLOCKING,
    )
    if not availability.available:
        record_booking_attempt(FLOW, "conflict")
        raise SlotUnavailable()

    email = actor.email if actor is not None and actor.email else request.guest_email
    customer_id = await gateway.find_or_create_customer(email, user_id)
    intent = await gateway.create_intent(
        amount=request.total_price,
        customer_id=customer_id,
        metadata=booking_metadata(request, generate_lookup_token()),
    )
    logger.info("payment_intent_created", payment_intent_id=intent.id, amount=intent.amount)
    return PaymentIntentReceipt(
        client_secret=intent.client_secret or "",
        payment_intent_id=intent.id,
        amount=intent.amount,
        rate_limit=decision,
    )


async def reconcile_payment(
    repo: BookingRepository,
    gateway: PaymentGateway,
    payment_intent_id: Optional[str],
    actor: Optional[Actor] = None,
) -> BookingReceipt:
    if not payment_intent_id or not PAYMENT_INTENT_PATTERN.match(payment_intent_id):
        raise InvalidPaymentReference()

    intent = await gateway.retrieve_intent(payment_intent_id)
    logger.info(
        "payment_intent_retrieved",
        payment_intent_id=intent.id,
        status=intent.status,
        amount=intent.amount,
    )
    if not intent.succeeded:
        record_reconciliation("not_completed")
        raise PaymentNotCompleted(intent.status)

    owner_id = intent.metadata.get("user_id") or None
    if actor is not None and owner_id and owner_id != actor.user_id:
        raise Forbidden("Payment does not belong to this user")

    existing = await _find_reconciled(repo, intent.id)
    if existing is not None:
        return _already_reconciled(existing)

    # The charge has succeeded: from here every failure is refunded first
    try:
        return await _commit_reservation(repo, intent)
    except BookingError as e:
        await _compensate(repo, gateway, intent, e)
        raise


async def _find_reconciled(repo: BookingRepository, payment_intent_id: str) -> Optional[Booking]:
    return await with_timeout(
        repo.get_by_payment_intent(payment_intent_id), operation="booking lookup"
    )


def _already_reconciled(booking: Booking) -> BookingReceipt:
    record_reconciliation("duplicate")
    logger.info(
        "payment_already_reconciled",
        payment_intent_id=booking.stripe_payment_intent_id,
        booking_id=booking.id,
    )
    return BookingReceipt(booking=booking, lookup_token=booking.lookup_token)


async def _commit_reservation(
    repo: BookingRepository,
    intent: GatewayPaymentIntent,
) -> BookingReceipt:
    request = request_from_metadata(intent)
    lookup_token = intent.metadata.get(LOOKUP_TOKEN_KEY) or generate_lookup_token()
    await ensure_venue_bookable(repo, request.venue_id)

    async with slot_lock(request.venue_id, request.booking_date):
        # A concurrent confirm for this intent may have committed while we waited
        existing = await _find_reconciled(repo, intent.id)
        if existing is not None:
            return _already_reconciled(existing)

        availability = await check_available(
            repo,
            request.venue_id,
            request.booking_date,
            request.time_range,
            PREPAID_BLOCKING,
            exclude_payment_intent_id=intent.id,
        )
        if not availability.available:
            logger.warning(
                "slot_taken_during_payment",
                payment_intent_id=intent.id,
                conflicts=availability.conflict_count,
            )
            raise SlotTakenDuringPayment()

        booking = Booking(
            venue_id=request.venue_id,
            user_id=request.user_id,
            booking_date=request.booking_date,
            start_time=request.time_range.start_time,
            end_time=request.time_range.end_time,
            guest_count=request.guest_count,
            total_price=intent.amount,
            status=STATUS_CONFIRMED,
            payment_status=PAYMENT_PAID,
            payment_method=METHOD_STRIPE,
            stripe_payment_intent_id=intent.id,
            notes=notes_with_lookup_token(request.notes, lookup_token),
            guest_name=request.guest_name,
            guest_phone=request.guest_phone,
            guest_email=request.guest_email,
        )
        try:
            booking = await with_timeout(repo.insert_booking(booking), operation="booking insert")
            await with_timeout(repo.commit(), operation="booking commit")
        except IntegrityError as e:
            # uq_bookings_payment_intent: another process committed this intent first
            await repo.rollback()
            existing = await _find_reconciled(repo, intent.id)
            if existing is not None:
                return _already_reconciled(existing)
            logger.error("prepaid_booking_insert_failed", payment_intent_id=intent.id, error=str(e))
            raise BookingCreationFailed(
                "Failed to create booking. Your payment has been refunded."
            ) from e
        except SQLAlchemyError as e:
            logger.error("prepaid_booking_insert_failed", payment_intent_id=intent.id, error=str(e))
            raise BookingCreationFailed(
                "Failed to create booking. Your payment has been refunded."
            ) from e

    record_reconciliation("confirmed")
    record_booking_attempt(FLOW, "success")
    logger.info(
        "prepaid_booking_created",
        booking_id=booking.id,
        payment_intent_id=intent.id,
    )
    return BookingReceipt(booking=booking, lookup_token=lookup_token)


async def _compensate(
    repo: BookingRepository,
    gateway: PaymentGateway,
    intent: GatewayPaymentIntent,
    cause: BookingError,
) -> None:
    """Undo a succeeded charge after the reservation could not be committed."""
    try:
        await repo.rollback()
    except SQLAlchemyError as e:
        logger.error("rollback_failed", payment_intent_id=intent.id, error=str(e))

    reason = cause.code
    if isinstance(cause, SlotTakenDuringPayment):
        record_reconciliation("slot_taken")
    else:
        record_reconciliation("failed")
        record_booking_attempt(FLOW, "error")

    try:
        refund_id = await gateway.refund(intent.id)
    except BookingError as refund_error:
        record_refund(reason, issued=False)
        alert_operator(
            "charge_without_booking",
            payment_intent_id=intent.id,
            amount=intent.amount,
            cause=cause.message,
            refund_error=refund_error.message,
        )
        raise RefundFailed() from refund_error

    record_refund(reason, issued=True)
    logger.info("payment_refunded", payment_intent_id=intent.id, refund_id=refund_id, reason=reason)
