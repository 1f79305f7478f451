"""Booking Schemas - Request/response models for member bookings"""
from typing import List, Optional
from pydantic import BaseModel, Field

from gymbook.staff.schemas.reservations import ReservationRead
from gymbook.staff.schemas.sessions import ClassSessionRead


class BookSessionRequest(BaseModel):
    """Request to book a seat in a session"""
    session_id: int = Field(..., gt=0, description="Session to book")


class BookSessionResponse(BaseModel):
    success: bool = True
    message: str
    reservation: ReservationRead


class CancelReservationRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=255)


class MyReservationsResponse(BaseModel):
    reservations: List[ReservationRead]
    total: int


class BookableSessionsResponse(BaseModel):
    sessions: List[ClassSessionRead]
    total: int
