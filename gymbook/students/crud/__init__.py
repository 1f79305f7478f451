"""Student CRUD Package"""
from .bookings import (
    book_session,
    cancel_reservation,
    get_reservation_by_id,
    get_user_reservations,
    get_bookable_sessions,
)

__all__ = [
    "book_session",
    "cancel_reservation",
    "get_reservation_by_id",
    "get_user_reservations",
    "get_bookable_sessions",
]
