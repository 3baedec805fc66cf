"""
Venue model: the bookable place and the partner who owns it.

Listing details (address, hours, images, ratings) belong to the catalogue
side of the product; only what booking decisions need is mapped here.
"""

import uuid

from sqlalchemy import Boolean, Column, String
from sqlalchemy.orm import relationship

from tapn.db.base import Base, TimestampMixin


class Venue(Base, TimestampMixin):
    __tablename__ = "venues"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(255), nullable=False)
    # Partner account that manages this venue's booking requests
    owner_id = Column(String(36), nullable=True, index=True)
    is_active = Column(Boolean, nullable=False, default=True)

    bookings = relationship("Booking", back_populates="venue", lazy="raise")

    def __repr__(self) -> str:
        return f"<Venue(id={self.id}, name={self.name}, owner={self.owner_id})>"
