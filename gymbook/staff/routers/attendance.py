from datetime import date
from fastapi import APIRouter, Depends, Query, status, Request
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Any, Dict, Optional

from gymbook.core.database import get_session
from gymbook.core.limits import limiter
from gymbook.core.dependencies import get_current_staff_user
from gymbook.staff.crud.attendance import (
    check_in,
    get_attendance_by_date_range,
    get_club_attendance,
    get_membership_attendance_count,
    get_user_attendance,
)
from gymbook.staff.schemas.attendance import (
    AttendanceListResponse,
    AttendanceRead,
    CheckInRequest,
    MembershipAttendanceCount,
)

router = APIRouter(prefix="/staff/attendance", tags=["Attendance"])


@router.post("/check-in", response_model=AttendanceRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("120/minute")
async def check_in_member(
    request: Request,
    payload: CheckInRequest,
    current_user: Dict[str, Any] = Depends(get_current_staff_user),
    db: AsyncSession = Depends(get_session),
):
    """
    Record a check-in against a membership.

    The membership is validated first. Visit-based plans are charged
    one visit.
    """
    return await check_in(
        db,
        user_id=payload.user_id,
        membership_id=payload.membership_id,
        club_id=payload.club_id,
        session_id=payload.session_id,
        recorded_by=current_user["id"],
        notes=payload.notes,
    )


@router.get("/clubs/{club_id}/today", response_model=AttendanceListResponse)
@limiter.limit("60/minute")
async def list_today_attendance(
    request: Request,
    club_id: int,
    day: Optional[date] = Query(None, description="Defaults to today"),
    current_user: Dict[str, Any] = Depends(get_current_staff_user),
    db: AsyncSession = Depends(get_session),
):
    attendance = await get_club_attendance(db, club_id, day)
    return AttendanceListResponse(attendance=attendance, total=len(attendance))


@router.get("/users/{user_id}", response_model=AttendanceListResponse)
@limiter.limit("60/minute")
async def list_user_attendance(
    request: Request,
    user_id: int,
    club_id: Optional[int] = Query(None),
    current_user: Dict[str, Any] = Depends(get_current_staff_user),
    db: AsyncSession = Depends(get_session),
):
    attendance = await get_user_attendance(db, user_id, club_id)
    return AttendanceListResponse(attendance=attendance, total=len(attendance))


@router.get("/clubs/{club_id}", response_model=AttendanceListResponse)
@limiter.limit("30/minute")
async def list_attendance_in_range(
    request: Request,
    club_id: int,
    start_date: date = Query(...),
    end_date: date = Query(...),
    current_user: Dict[str, Any] = Depends(get_current_staff_user),
    db: AsyncSession = Depends(get_session),
):
    """Club check-ins between two dates, both inclusive"""
    attendance = await get_attendance_by_date_range(db, club_id, start_date, end_date)
    return AttendanceListResponse(attendance=attendance, total=len(attendance))


@router.get("/memberships/{membership_id}/count", response_model=MembershipAttendanceCount)
@limiter.limit("60/minute")
async def count_membership_attendance(
    request: Request,
    membership_id: int,
    current_user: Dict[str, Any] = Depends(get_current_staff_user),
    db: AsyncSession = Depends(get_session),
):
    visits = await get_membership_attendance_count(db, membership_id)
    return MembershipAttendanceCount(membership_id=membership_id, visits=visits)
