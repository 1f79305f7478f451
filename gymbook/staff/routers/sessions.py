from datetime import date
from fastapi import APIRouter, Depends, Query, status, Request
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Any, Dict, Optional

from gymbook.core.database import get_session
from gymbook.core.limits import limiter
from gymbook.core.dependencies import get_current_staff_user
from gymbook.staff.crud.sessions import (
    cancel_session,
    create_session,
    get_session_by_id,
    get_sessions_paginated,
)
from gymbook.staff.crud.reservations import (
    complete_past_sessions,
    get_session_reservations,
)
from gymbook.staff.crud.attendance import get_session_attendance
from gymbook.staff.models.sessions import SessionStatus
from gymbook.staff.schemas.attendance import AttendanceListResponse
from gymbook.staff.schemas.reservations import ReservationListResponse
from gymbook.staff.schemas.sessions import (
    CancelSessionRequest,
    CancelSessionResponse,
    ClassSessionCreate,
    ClassSessionListResponse,
    ClassSessionRead,
    CompletePastSessionsResponse,
)

router = APIRouter(prefix="/staff/sessions", tags=["Sessions"])


@router.post("/", response_model=ClassSessionRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
async def create_ad_hoc_session(
    request: Request,
    class_session: ClassSessionCreate,
    current_user: Dict[str, Any] = Depends(get_current_staff_user),
    db: AsyncSession = Depends(get_session),
):
    """Create a one-off session outside any schedule"""
    return await create_session(db, class_session, current_user["id"])


@router.get("/clubs/{club_id}", response_model=ClassSessionListResponse)
@limiter.limit("60/minute")
async def list_club_sessions(
    request: Request,
    club_id: int,
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    session_status: Optional[SessionStatus] = Query(None, alias="status"),
    schedule_id: Optional[int] = Query(None),
    page: int = Query(1, ge=1),
    size: int = Query(100, ge=1, le=500),
    current_user: Dict[str, Any] = Depends(get_current_staff_user),
    db: AsyncSession = Depends(get_session),
):
    sessions, total = await get_sessions_paginated(
        db,
        club_id,
        start_date=start_date,
        end_date=end_date,
        status=session_status,
        schedule_id=schedule_id,
        skip=(page - 1) * size,
        limit=size,
    )
    return ClassSessionListResponse(sessions=sessions, total=total)


@router.post("/complete-past", response_model=CompletePastSessionsResponse)
@limiter.limit("5/minute")
async def complete_ended_sessions(
    request: Request,
    current_user: Dict[str, Any] = Depends(get_current_staff_user),
    db: AsyncSession = Depends(get_session),
):
    """Close past sessions: COMPLETED or NO_SHOW, unpaid ones cancelled"""
    return await complete_past_sessions(db)


@router.get("/{session_id}", response_model=ClassSessionRead)
@limiter.limit("60/minute")
async def get_class_session(
    request: Request,
    session_id: int,
    current_user: Dict[str, Any] = Depends(get_current_staff_user),
    db: AsyncSession = Depends(get_session),
):
    return await get_session_by_id(db, session_id)


@router.post("/{session_id}/cancel", response_model=CancelSessionResponse)
@limiter.limit("10/minute")
async def cancel_class_session(
    request: Request,
    session_id: int,
    payload: Optional[CancelSessionRequest] = None,
    current_user: Dict[str, Any] = Depends(get_current_staff_user),
    db: AsyncSession = Depends(get_session),
):
    """Cancel a session along with its active reservations"""
    reason = payload.reason if payload else None
    class_session, cancelled = await cancel_session(
        db, session_id, reason, current_user["id"]
    )
    return CancelSessionResponse(
        session=ClassSessionRead.model_validate(class_session),
        cancelled_reservations=cancelled,
    )


@router.get("/{session_id}/reservations", response_model=ReservationListResponse)
@limiter.limit("60/minute")
async def list_session_reservations(
    request: Request,
    session_id: int,
    active_only: bool = Query(False),
    current_user: Dict[str, Any] = Depends(get_current_staff_user),
    db: AsyncSession = Depends(get_session),
):
    reservations = await get_session_reservations(db, session_id, active_only)
    return ReservationListResponse(reservations=reservations, total=len(reservations))


@router.get("/{session_id}/attendance", response_model=AttendanceListResponse)
@limiter.limit("60/minute")
async def list_session_attendance(
    request: Request,
    session_id: int,
    current_user: Dict[str, Any] = Depends(get_current_staff_user),
    db: AsyncSession = Depends(get_session),
):
    attendance = await get_session_attendance(db, session_id)
    return AttendanceListResponse(attendance=attendance, total=len(attendance))
