"""
Booking persistence interface.

The availability checker and the lifecycle services depend on this
contract, not on a database client. Production uses the SQLAlchemy
implementation in `tapn.repositories`; tests may substitute an in-memory one.
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import Iterable, Optional

from tapn.models.booking import Booking
from tapn.models.venue import Venue
from tapn.services.time_range import TimeRange


class BookingRepository(ABC):

    @abstractmethod
    async def get_booking(self, booking_id: str) -> Optional[Booking]:
        pass

    @abstractmethod
    async def get_by_payment_intent(self, payment_intent_id: str) -> Optional[Booking]:
        pass

    @abstractmethod
    async def get_venue(self, venue_id: str) -> Optional[Venue]:
        pass

    @abstractmethod
    async def find_overlapping(
        self,
        venue_id: str,
        booking_date: date,
        time_range: TimeRange,
        statuses: Iterable[str],
    ) -> list[Booking]:
        """
        Bookings on the venue and date whose status is in `statuses` and
        whose [start, end) range intersects `time_range`.
        """
        pass

    @abstractmethod
    async def insert_booking(self, booking: Booking) -> Booking:
        """Stage a new booking and return it with its id assigned."""
        pass

    @abstractmethod
    async def update_status_if_expected(
        self,
        booking_id: str,
        expected_status: str,
        new_status: str,
        **changes,
    ) -> Optional[Booking]:
        """
        Compare-and-swap status change.

        Applies `new_status` (plus any extra column `changes`) only if the
        row's current status is still `expected_status`. Returns the
        updated booking, or None if the precondition no longer held.
        """
        pass

    @abstractmethod
    async def update_fields(self, booking_id: str, **changes) -> Optional[Booking]:
        """Unconditional update of non-status columns (admin notes, payment status)."""
        pass

    @abstractmethod
    async def find_by_lookup_token(self, token: str) -> Optional[Booking]:
        pass

    @abstractmethod
    async def list_for_user(self, user_id: str) -> list[Booking]:
        pass

    @abstractmethod
    async def list_for_owner(self, owner_id: str) -> list[Booking]:
        """Bookings on every venue owned by a partner."""
        pass

    @abstractmethod
    async def list_all(self, status: Optional[str] = None) -> list[Booking]:
        pass

    @abstractmethod
    async def get_roles(self, user_id: str) -> set[str]:
        pass

    @abstractmethod
    async def commit(self) -> None:
        pass

    @abstractmethod
    async def rollback(self) -> None:
        pass
