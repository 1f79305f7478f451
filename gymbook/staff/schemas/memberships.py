from datetime import date, datetime
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict

from gymbook.staff.models.memberships import MembershipStatus


class MembershipRequest(BaseModel):
    """Заявка на абонемент (статус PENDING до оплаты)"""

    plan_id: int = Field(..., gt=0)
    club_id: int = Field(..., gt=0)
    start_date: Optional[date] = None


class MembershipApprove(BaseModel):
    payment_reference: Optional[str] = Field(None, max_length=100)


class MembershipReject(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class MembershipRead(BaseModel):
    id: int
    user_id: int
    plan_id: int
    club_id: int
    start_date: date
    end_date: Optional[date]
    status: MembershipStatus
    remaining_sessions: Optional[int]
    payment_reference: Optional[str]
    notes: Optional[str]
    version: int
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class MembershipListResponse(BaseModel):
    memberships: List[MembershipRead]
    total: int


class ValidateMembershipResponse(BaseModel):
    """Результат проверки абонемента для check-in и UI"""

    valid: bool
    message: str
    membership_id: Optional[int] = None
    plan_id: Optional[int] = None
    end_date: Optional[date] = None
    remaining_sessions: Optional[int] = None


class ExpireMembershipsResponse(BaseModel):
    expired_count: int
    as_of: date
