"""
Tests for model constraints and relationship loading.
"""

from datetime import time

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, InvalidRequestError
from sqlalchemy.ext.asyncio import AsyncSession

from tapn.models import Booking, Venue

from helpers import BOOKING_DAY


def _booking(venue_id: str, hour: int, **fields) -> Booking:
    return Booking(
        venue_id=venue_id,
        booking_date=BOOKING_DAY,
        start_time=time(hour, 0),
        end_time=time(hour + 1, 0),
        total_price=3000,
        guest_name="Alex Kim",
        guest_phone="555 000 2222",
        guest_email="alex@example.com",
        **fields,
    )


@pytest.mark.asyncio
async def test_relationships_are_never_loaded_implicitly(
    db_session: AsyncSession, confirmed_booking: Booking, test_venue: Venue
):
    with pytest.raises(InvalidRequestError):
        confirmed_booking.venue
    with pytest.raises(InvalidRequestError):
        test_venue.bookings


@pytest.mark.asyncio
async def test_one_booking_per_payment_intent(db_session: AsyncSession, confirmed_booking: Booking):
    db_session.add(
        _booking(
            confirmed_booking.venue_id,
            hour=21,
            status="confirmed",
            payment_status="paid",
            payment_method="stripe",
            stripe_payment_intent_id=confirmed_booking.stripe_payment_intent_id,
        )
    )
    with pytest.raises(IntegrityError):
        await db_session.commit()
    await db_session.rollback()


@pytest.mark.asyncio
async def test_pay_at_venue_bookings_share_a_null_intent(db_session: AsyncSession, test_venue: Venue):
    db_session.add_all([_booking(test_venue.id, hour=8), _booking(test_venue.id, hour=10)])
    await db_session.commit()

    rows = (await db_session.execute(select(Booking))).scalars().all()
    assert len(rows) == 2
    assert all(row.stripe_payment_intent_id is None for row in rows)
