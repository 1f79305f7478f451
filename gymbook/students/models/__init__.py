from gymbook.core.database import Base
from .reservations import Reservation, ReservationStatus, ACTIVE_STATUSES
from .attendance import Attendance

__all__ = [
    "Base",
    "Reservation",
    "ReservationStatus",
    "ACTIVE_STATUSES",
    "Attendance",
]
