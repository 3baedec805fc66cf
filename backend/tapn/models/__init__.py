from tapn.models.venue import Venue
from tapn.models.user_role import UserRole
from tapn.models.booking import Booking

__all__ = ["Venue", "UserRole", "Booking"]
