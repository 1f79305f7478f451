from datetime import date, time, datetime
from typing import List, Optional
from pydantic import BaseModel, Field, model_validator, ConfigDict

from gymbook.core.exceptions import ValidationError
from gymbook.staff.models.sessions import SessionStatus


class ClassSessionCreate(BaseModel):
    """Разовое занятие вне расписания"""

    club_id: int = Field(..., gt=0)
    activity_id: int = Field(..., gt=0)
    trainer_id: Optional[int] = Field(None, gt=0)
    session_date: date
    start_time: time
    end_time: time
    capacity: Optional[int] = Field(None, gt=0, description="Defaults to activity capacity")
    notes: Optional[str] = Field(None, max_length=1000)

    @model_validator(mode="after")
    def validate_time_window(self):
        if self.end_time <= self.start_time:
            raise ValidationError("end_time must be after start_time")
        return self


class ClassSessionRead(BaseModel):
    id: int
    schedule_id: Optional[int]
    club_id: int
    activity_id: Optional[int]
    trainer_id: Optional[int]
    session_date: date
    start_time: time
    end_time: time
    capacity: int
    booked_count: int
    available_spots: int
    status: SessionStatus
    notes: Optional[str]
    cancellation_reason: Optional[str]

    model_config = ConfigDict(from_attributes=True)


class ClassSessionListResponse(BaseModel):
    sessions: List[ClassSessionRead]
    total: int


class CancelSessionRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=255)


class CancelSessionResponse(BaseModel):
    session: ClassSessionRead
    cancelled_reservations: int


class CompletePastSessionsResponse(BaseModel):
    sessions_completed: int
    reservations_completed: int
    reservations_no_show: int
    reservations_cancelled: int
    as_of: datetime
