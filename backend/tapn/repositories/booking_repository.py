"""
SQLAlchemy implementation of the booking repository.
"""

from datetime import date
from typing import Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tapn.core.logging import get_logger
from tapn.models.booking import LOOKUP_TOKEN_PREFIX, Booking
from tapn.models.user_role import UserRole
from tapn.models.venue import Venue
from tapn.services.interfaces.booking_repository import BookingRepository
from tapn.services.time_range import TimeRange

logger = get_logger(__name__)


class SqlAlchemyBookingRepository(BookingRepository):

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_booking(self, booking_id: str) -> Optional[Booking]:
        result = await self.db.execute(select(Booking).where(Booking.id == booking_id))
        return result.scalar_one_or_none()

    async def get_by_payment_intent(self, payment_intent_id: str) -> Optional[Booking]:
        result = await self.db.execute(
            select(Booking).where(Booking.stripe_payment_intent_id == payment_intent_id)
        )
        return result.scalars().first()

    async def get_venue(self, venue_id: str) -> Optional[Venue]:
        result = await self.db.execute(select(Venue).where(Venue.id == venue_id))
        return result.scalar_one_or_none()

    async def find_overlapping(
        self,
        venue_id: str,
        booking_date: date,
        time_range: TimeRange,
        statuses: Iterable[str],
    ) -> list[Booking]:
        # Half-open overlap: existing.start < requested.end AND requested.start < existing.end
        result = await self.db.execute(
            select(Booking).where(
                Booking.venue_id == venue_id,
                Booking.booking_date == booking_date,
                Booking.status.in_(list(statuses)),
                Booking.start_time < time_range.end_time,
                Booking.end_time > time_range.start_time,
            )
        )
        return list(result.scalars().all())

    async def insert_booking(self, booking: Booking) -> Booking:
        self.db.add(booking)
        await self.db.flush()
        await self.db.refresh(booking)
        return booking

    async def update_status_if_expected(
        self,
        booking_id: str,
        expected_status: str,
        new_status: str,
        **changes,
    ) -> Optional[Booking]:
        result = await self.db.execute(
            update(Booking)
            .where(Booking.id == booking_id, Booking.status == expected_status)
            .values(status=new_status, **changes)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.info(
                "status_update_precondition_failed",
                booking_id=booking_id,
                expected=expected_status,
                new=new_status,
            )
            return None
        return await self._reload(booking_id)

    async def update_fields(self, booking_id: str, **changes) -> Optional[Booking]:
        result = await self.db.execute(
            update(Booking)
            .where(Booking.id == booking_id)
            .values(**changes)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return None
        return await self._reload(booking_id)

    async def find_by_lookup_token(self, token: str) -> Optional[Booking]:
        result = await self.db.execute(
            select(Booking).where(Booking.notes.endswith(f"{LOOKUP_TOKEN_PREFIX}{token}"))
        )
        return result.scalars().first()

    async def list_for_user(self, user_id: str) -> list[Booking]:
        result = await self.db.execute(
            select(Booking)
            .where(Booking.user_id == user_id)
            .order_by(Booking.booking_date.desc(), Booking.start_time.desc())
        )
        return list(result.scalars().all())

    async def list_for_owner(self, owner_id: str) -> list[Booking]:
        result = await self.db.execute(
            select(Booking)
            .join(Venue, Venue.id == Booking.venue_id)
            .where(Venue.owner_id == owner_id)
            .order_by(Booking.created_at.desc())
        )
        return list(result.scalars().all())

    async def list_all(self, status: Optional[str] = None) -> list[Booking]:
        query = select(Booking).order_by(Booking.created_at.desc())
        if status:
            query = query.where(Booking.status == status)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_roles(self, user_id: str) -> set[str]:
        result = await self.db.execute(select(UserRole.role).where(UserRole.user_id == user_id))
        return set(result.scalars().all())

    async def commit(self) -> None:
        await self.db.commit()

    async def rollback(self) -> None:
        await self.db.rollback()

    async def _reload(self, booking_id: str) -> Optional[Booking]:
        result = await self.db.execute(
            select(Booking)
            .where(Booking.id == booking_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()
