from datetime import date
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Any, Dict, Optional

from gymbook.core.database import get_session
from gymbook.core.limits import limiter
from gymbook.core.dependencies import get_current_staff_user
from gymbook.staff.crud.memberships import (
    approve_membership,
    cancel_membership,
    expire_memberships,
    get_club_memberships,
    get_membership_by_id,
    reject_membership,
    resume_membership,
    suspend_membership,
    validate_membership,
)
from gymbook.staff.models.memberships import MembershipStatus
from gymbook.staff.schemas.memberships import (
    ExpireMembershipsResponse,
    MembershipApprove,
    MembershipListResponse,
    MembershipRead,
    MembershipReject,
    ValidateMembershipResponse,
)

router = APIRouter(prefix="/staff/memberships", tags=["Memberships"])


@router.get("/clubs/{club_id}", response_model=MembershipListResponse)
@limiter.limit("60/minute")
async def list_club_memberships(
    request: Request,
    club_id: int,
    membership_status: Optional[MembershipStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    size: int = Query(50, ge=1, le=200),
    current_user: Dict[str, Any] = Depends(get_current_staff_user),
    db: AsyncSession = Depends(get_session),
):
    memberships, total = await get_club_memberships(
        db, club_id, membership_status, (page - 1) * size, size
    )
    return MembershipListResponse(memberships=memberships, total=total)


@router.get("/validate", response_model=ValidateMembershipResponse)
@limiter.limit("120/minute")
async def validate_user_membership(
    request: Request,
    user_id: int = Query(..., gt=0),
    club_id: int = Query(..., gt=0),
    current_user: Dict[str, Any] = Depends(get_current_staff_user),
    db: AsyncSession = Depends(get_session),
):
    """Check a user's membership before check-in"""
    return await validate_membership(db, user_id, club_id)


@router.post("/expire", response_model=ExpireMembershipsResponse)
@limiter.limit("5/minute")
async def expire_outdated_memberships(
    request: Request,
    as_of: Optional[date] = Query(None),
    current_user: Dict[str, Any] = Depends(get_current_staff_user),
    db: AsyncSession = Depends(get_session),
):
    return await expire_memberships(db, as_of)


@router.get("/{membership_id}", response_model=MembershipRead)
@limiter.limit("60/minute")
async def get_membership(
    request: Request,
    membership_id: int,
    current_user: Dict[str, Any] = Depends(get_current_staff_user),
    db: AsyncSession = Depends(get_session),
):
    return await get_membership_by_id(db, membership_id)


@router.post("/{membership_id}/approve", response_model=MembershipRead)
@limiter.limit("30/minute")
async def approve(
    request: Request,
    membership_id: int,
    payload: Optional[MembershipApprove] = None,
    current_user: Dict[str, Any] = Depends(get_current_staff_user),
    db: AsyncSession = Depends(get_session),
):
    """Confirm payment: PENDING -> ACTIVE"""
    payment_reference = payload.payment_reference if payload else None
    return await approve_membership(
        db, membership_id, payment_reference, current_user["id"]
    )


@router.post("/{membership_id}/reject", response_model=MembershipRead)
@limiter.limit("30/minute")
async def reject(
    request: Request,
    membership_id: int,
    payload: MembershipReject,
    current_user: Dict[str, Any] = Depends(get_current_staff_user),
    db: AsyncSession = Depends(get_session),
):
    return await reject_membership(db, membership_id, payload.reason, current_user["id"])


@router.post("/{membership_id}/suspend", response_model=MembershipRead)
@limiter.limit("30/minute")
async def suspend(
    request: Request,
    membership_id: int,
    current_user: Dict[str, Any] = Depends(get_current_staff_user),
    db: AsyncSession = Depends(get_session),
):
    return await suspend_membership(db, membership_id, current_user["id"])


@router.post("/{membership_id}/resume", response_model=MembershipRead)
@limiter.limit("30/minute")
async def resume(
    request: Request,
    membership_id: int,
    current_user: Dict[str, Any] = Depends(get_current_staff_user),
    db: AsyncSession = Depends(get_session),
):
    """SUSPENDED -> ACTIVE, the visit counter is left as is"""
    return await resume_membership(db, membership_id, current_user["id"])


@router.post("/{membership_id}/cancel", response_model=MembershipRead)
@limiter.limit("30/minute")
async def cancel(
    request: Request,
    membership_id: int,
    current_user: Dict[str, Any] = Depends(get_current_staff_user),
    db: AsyncSession = Depends(get_session),
):
    return await cancel_membership(db, membership_id, current_user["id"])
