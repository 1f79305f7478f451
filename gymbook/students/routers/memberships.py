"""Student Membership Router - Membership requests and validity checks"""
from fastapi import APIRouter, Depends, Query, status, Request
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Any, Dict, List, Optional

from gymbook.core.database import get_session
from gymbook.core.limits import limiter
from gymbook.core.dependencies import get_current_user
from gymbook.staff.crud.memberships import (
    get_user_memberships,
    request_membership,
    validate_membership,
)
from gymbook.staff.schemas.memberships import (
    MembershipRead,
    MembershipRequest,
    ValidateMembershipResponse,
)

router = APIRouter(prefix="/students/memberships", tags=["Student Memberships"])


@router.post("", response_model=MembershipRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
async def request_new_membership(
    request: Request,
    payload: MembershipRequest,
    current_user: Dict[str, Any] = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Request a plan; it becomes active once staff confirm the payment"""
    return await request_membership(db, current_user["id"], payload)


@router.get("", response_model=List[MembershipRead])
@limiter.limit("60/minute")
async def list_my_memberships(
    request: Request,
    club_id: Optional[int] = Query(None),
    current_user: Dict[str, Any] = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    return await get_user_memberships(db, current_user["id"], club_id)


@router.get("/validate", response_model=ValidateMembershipResponse)
@limiter.limit("60/minute")
async def validate_my_membership(
    request: Request,
    club_id: int = Query(..., gt=0),
    current_user: Dict[str, Any] = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    return await validate_membership(db, current_user["id"], club_id)
