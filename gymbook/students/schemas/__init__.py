"""Student Schemas Package"""
from .bookings import (
    BookSessionRequest,
    BookSessionResponse,
    CancelReservationRequest,
    MyReservationsResponse,
    BookableSessionsResponse,
)

__all__ = [
    "BookSessionRequest",
    "BookSessionResponse",
    "CancelReservationRequest",
    "MyReservationsResponse",
    "BookableSessionsResponse",
]
