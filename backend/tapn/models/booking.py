"""
Booking model: one reservation of a venue for a same-day time range.

Key design decisions:
- Guest contact is copied onto the row so it survives later profile edits
  and covers guests without an account (user_id is NULL for them)
- Status changes never delete rows; cancelled and rejected are terminal
- total_price is stored in minor currency units and never updated
- Composite index on (venue_id, booking_date, status) serves the
  availability query
- One booking per payment intent (NULL for pay-at-venue rows)
"""

import uuid
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from tapn.db.base import Base, TimestampMixin

STATUS_PENDING = "pending"
STATUS_CONFIRMED = "confirmed"
STATUS_REJECTED = "rejected"
STATUS_CANCELLED = "cancelled"
BOOKING_STATUSES = (STATUS_PENDING, STATUS_CONFIRMED, STATUS_REJECTED, STATUS_CANCELLED)
TERMINAL_STATUSES = frozenset({STATUS_REJECTED, STATUS_CANCELLED})

PAYMENT_PENDING = "pending"
PAYMENT_PAID = "paid"
PAYMENT_REFUNDED = "refunded"

METHOD_PAY_AT_VENUE = "pay_at_venue"
METHOD_STRIPE = "stripe"

LOOKUP_TOKEN_PREFIX = "Lookup Token: "
LOOKUP_TOKEN_SEPARATOR = "\n---\n"


class Booking(Base, TimestampMixin):
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    venue_id = Column(String(36), ForeignKey("venues.id"), nullable=False)
    user_id = Column(String(36), nullable=True, index=True)

    booking_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    guest_count = Column(Integer, nullable=False, default=1)

    total_price = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default=STATUS_PENDING)
    payment_status = Column(String(20), nullable=False, default=PAYMENT_PENDING)
    payment_method = Column(String(20), nullable=False, default=METHOD_PAY_AT_VENUE)
    stripe_payment_intent_id = Column(String(255), nullable=True)

    guest_name = Column(String(100), nullable=False)
    guest_phone = Column(String(20), nullable=False)
    guest_email = Column(String(254), nullable=False)
    notes = Column(Text, nullable=True)
    admin_notes = Column(Text, nullable=True)

    venue = relationship("Venue", back_populates="bookings", lazy="raise")

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'rejected', 'cancelled')",
            name="check_booking_status",
        ),
        CheckConstraint(
            "payment_status IN ('pending', 'paid', 'refunded')",
            name="check_booking_payment_status",
        ),
        CheckConstraint(
            "payment_method IN ('pay_at_venue', 'stripe')",
            name="check_booking_payment_method",
        ),
        CheckConstraint("guest_count BETWEEN 1 AND 100", name="check_booking_guest_count"),
        CheckConstraint("total_price > 0", name="check_booking_price_positive"),
        CheckConstraint("end_time > start_time", name="check_booking_time_range"),
        Index("ix_bookings_venue_date_status", "venue_id", "booking_date", "status"),
        UniqueConstraint("stripe_payment_intent_id", name="uq_bookings_payment_intent"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def lookup_token(self) -> Optional[str]:
        """Guest lookup token carried on the last line of notes, if any."""
        if not self.notes:
            return None
        last_line = self.notes.rsplit("\n", 1)[-1]
        if last_line.startswith(LOOKUP_TOKEN_PREFIX):
            return last_line[len(LOOKUP_TOKEN_PREFIX):].strip() or None
        return None

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, venue={self.venue_id}, date={self.booking_date}, "
            f"{self.start_time}-{self.end_time}, status={self.status})>"
        )
