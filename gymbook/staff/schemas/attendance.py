from datetime import date, datetime
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict


class CheckInRequest(BaseModel):
    user_id: int = Field(..., gt=0)
    membership_id: int = Field(..., gt=0)
    club_id: int = Field(..., gt=0)
    session_id: Optional[int] = Field(None, gt=0)
    notes: Optional[str] = Field(None, max_length=500)


class AttendanceRead(BaseModel):
    id: int
    user_id: int
    membership_id: int
    club_id: int
    session_id: Optional[int]
    check_in_date: date
    check_in_time: datetime
    recorded_by_user_id: Optional[int]
    notes: Optional[str]

    model_config = ConfigDict(from_attributes=True)


class AttendanceListResponse(BaseModel):
    attendance: List[AttendanceRead]
    total: int


class MembershipAttendanceCount(BaseModel):
    membership_id: int
    visits: int
