"""
Slot availability checks.

BLOCKING STATUSES
=================

Which existing bookings occupy a slot depends on the flow:

  - Pay-at-venue: pending AND confirmed. A request still waiting for the
    partner holds its slot, so two guests are never promised the same
    time while the partner decides.
  - Pre-paid: confirmed only, both when the payment intent is created
    and when the payment is reconciled. Pre-paid bookings are written
    as confirmed once the charge succeeds; there is no pending row to
    block against.

A failed query is reported as AvailabilityCheckFailed, never as
"unavailable": the caller must not treat an outage as a real conflict.
"""

from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError

from tapn.core.exceptions import AvailabilityCheckFailed
from tapn.core.logging import get_logger
from tapn.core.metrics import record_availability_check
from tapn.core.timeouts import with_timeout
from tapn.models.booking import STATUS_CONFIRMED, STATUS_PENDING
from tapn.services.interfaces.booking_repository import BookingRepository
from tapn.services.time_range import TimeRange

logger = get_logger(__name__)

PAY_AT_VENUE_BLOCKING = frozenset({STATUS_PENDING, STATUS_CONFIRMED})
PREPAID_BLOCKING = frozenset({STATUS_CONFIRMED})


@dataclass(frozen=True)
class Availability:
    available: bool
    conflict_count: int


async def check_available(
    repo: BookingRepository,
    venue_id: str,
    booking_date: date,
    time_range: TimeRange,
    blocking_statuses: Iterable[str],
    exclude_payment_intent_id: Optional[str] = None,
) -> Availability:
    """
    `exclude_payment_intent_id` leaves out the booking already written for
    that payment intent, so reconciling a paid intent twice never counts
    its own booking as a conflict.
    """
    statuses = frozenset(blocking_statuses)
    try:
        candidates = await with_timeout(
            repo.find_overlapping(venue_id, booking_date, time_range, statuses),
            operation="availability check",
        )
    except SQLAlchemyError as e:
        record_availability_check("error")
        logger.error("availability_check_failed", venue_id=venue_id, error=str(e))
        raise AvailabilityCheckFailed() from e

    conflicts = [
        booking for booking in candidates
        if booking.status in statuses
        and (exclude_payment_intent_id is None
             or booking.stripe_payment_intent_id != exclude_payment_intent_id)
        and time_range.overlaps(TimeRange.from_times(booking.start_time, booking.end_time))
    ]

    if conflicts:
        record_availability_check("conflict")
        logger.info(
            "time_slot_not_available",
            venue_id=venue_id,
            booking_date=str(booking_date),
            requested=str(time_range),
            conflicts=len(conflicts),
        )
    else:
        record_availability_check("available")
        logger.info(
            "time_slot_available",
            venue_id=venue_id,
            booking_date=str(booking_date),
            requested=str(time_range),
        )
    return Availability(available=not conflicts, conflict_count=len(conflicts))
