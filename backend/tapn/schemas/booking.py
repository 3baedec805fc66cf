"""
Pydantic schemas for booking requests and responses.

Request bodies arrive as `RawBookingRequest`: every field optional and
loosely typed, because checking them is the booking validator's job and
its messages are what the caller sees. Only a `NormalizedBookingRequest`
produced by the validator may reach persistence or the payment gateway.
"""

from datetime import date, datetime, time
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tapn.services.time_range import TimeRange


class RawBookingRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    venue_id: Optional[str] = None
    booking_date: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    guest_count: Optional[Any] = None
    total_price: Optional[Any] = None
    notes: Optional[str] = None
    guest_name: Optional[str] = None
    guest_phone: Optional[str] = None
    guest_email: Optional[str] = None
    user_id: Optional[str] = None


class NormalizedBookingRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    venue_id: str
    booking_date: date
    start_time: str
    end_time: str
    guest_count: int
    total_price: int
    guest_name: str
    guest_phone: str
    guest_email: str
    notes: Optional[str] = None
    user_id: Optional[str] = None

    @property
    def time_range(self) -> TimeRange:
        return TimeRange.parse(self.start_time, self.end_time)

    def as_raw(self) -> RawBookingRequest:
        return RawBookingRequest(
            **self.model_dump(exclude={"booking_date"}),
            booking_date=self.booking_date.isoformat(),
        )


class BookingView(BaseModel):
    """Booking as shown to its owner, partner or an admin."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    venue_id: str
    user_id: Optional[str] = None
    booking_date: date
    start_time: str
    end_time: str
    guest_count: int
    total_price: int
    status: str
    payment_status: str
    payment_method: str
    guest_name: str
    guest_phone: str
    guest_email: str
    notes: Optional[str] = None
    admin_notes: Optional[str] = None
    lookup_token: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def _clock_time(cls, value: Any) -> Any:
        if isinstance(value, time):
            return value.strftime("%H:%M")
        return value


class BookingEnvelope(BaseModel):
    success: bool = True
    booking: dict[str, Any]


class BookingListEnvelope(BaseModel):
    success: bool = True
    bookings: list[BookingView]


class CancelBookingRequest(BaseModel):
    booking_id: Optional[str] = Field(default=None, alias="bookingId")
    reason: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class DeclineBookingRequest(BaseModel):
    reason: Optional[str] = None


class AdminNotesUpdate(BaseModel):
    admin_notes: Optional[str] = None
