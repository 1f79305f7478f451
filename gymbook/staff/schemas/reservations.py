from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict

from gymbook.students.models.reservations import ReservationStatus


class ReservationRead(BaseModel):
    id: int
    user_id: int
    session_id: int
    club_id: int
    status: ReservationStatus
    booked_at: Optional[datetime]
    paid_at: Optional[datetime]
    checked_in_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    cancellation_reason: Optional[str]
    cancelled_by: Optional[int]

    model_config = ConfigDict(from_attributes=True)


class ReservationListResponse(BaseModel):
    reservations: List[ReservationRead]
    total: int


class StaffCancelReservationRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=255)


class ExpirePendingResponse(BaseModel):
    cancelled_count: int
    as_of: datetime
