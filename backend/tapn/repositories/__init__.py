from .booking_repository import SqlAlchemyBookingRepository

__all__ = ['SqlAlchemyBookingRepository']
