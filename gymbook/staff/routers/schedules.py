from fastapi import APIRouter, Depends, Query, status, Request
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Any, Dict

from gymbook.core.database import get_session
from gymbook.core.limits import limiter
from gymbook.core.dependencies import get_current_staff_user
from gymbook.staff.crud.schedules import (
    create_schedule,
    expand_schedules,
    get_schedule_by_id,
    get_schedules_by_club,
    set_schedule_active,
    update_schedule,
)
from gymbook.staff.schemas.schedules import (
    ExpandSchedulesRequest,
    ExpandSchedulesResponse,
    ScheduleCreate,
    ScheduleListResponse,
    ScheduleRead,
    ScheduleUpdate,
)

router = APIRouter(prefix="/staff/schedules", tags=["Schedules"])


@router.post(
    "/clubs/{club_id}", response_model=ScheduleRead, status_code=status.HTTP_201_CREATED
)
@limiter.limit("20/minute")
async def create_club_schedule(
    request: Request,
    club_id: int,
    schedule: ScheduleCreate,
    current_user: Dict[str, Any] = Depends(get_current_staff_user),
    db: AsyncSession = Depends(get_session),
):
    """Create a weekly schedule for a club"""
    return await create_schedule(db, club_id, schedule, current_user["id"])


@router.get("/clubs/{club_id}", response_model=ScheduleListResponse)
@limiter.limit("60/minute")
async def list_club_schedules(
    request: Request,
    club_id: int,
    active_only: bool = Query(True),
    page: int = Query(1, ge=1),
    size: int = Query(50, ge=1, le=200),
    current_user: Dict[str, Any] = Depends(get_current_staff_user),
    db: AsyncSession = Depends(get_session),
):
    schedules, total = await get_schedules_by_club(
        db, club_id, active_only, (page - 1) * size, size
    )
    return ScheduleListResponse(schedules=schedules, total=total)


@router.post("/clubs/{club_id}/expand", response_model=ExpandSchedulesResponse)
@limiter.limit("10/minute")
async def expand_club_schedules(
    request: Request,
    club_id: int,
    period: ExpandSchedulesRequest,
    current_user: Dict[str, Any] = Depends(get_current_staff_user),
    db: AsyncSession = Depends(get_session),
):
    """
    Generate sessions from the club's active schedules for a period.

    Safe to call again: existing sessions are not duplicated. Schedules
    whose activity or coach is gone or inactive are skipped and listed
    in warnings.
    """
    return await expand_schedules(db, club_id, period.start_date, period.end_date)


@router.get("/{schedule_id}", response_model=ScheduleRead)
@limiter.limit("60/minute")
async def get_schedule(
    request: Request,
    schedule_id: int,
    current_user: Dict[str, Any] = Depends(get_current_staff_user),
    db: AsyncSession = Depends(get_session),
):
    return await get_schedule_by_id(db, schedule_id)


@router.put("/{schedule_id}", response_model=ScheduleRead)
@limiter.limit("20/minute")
async def update_club_schedule(
    request: Request,
    schedule_id: int,
    schedule: ScheduleUpdate,
    current_user: Dict[str, Any] = Depends(get_current_staff_user),
    db: AsyncSession = Depends(get_session),
):
    """Update a schedule. Sessions already generated are left untouched."""
    return await update_schedule(db, schedule_id, schedule, current_user["id"])


@router.post("/{schedule_id}/toggle-active", response_model=ScheduleRead)
@limiter.limit("20/minute")
async def toggle_schedule(
    request: Request,
    schedule_id: int,
    current_user: Dict[str, Any] = Depends(get_current_staff_user),
    db: AsyncSession = Depends(get_session),
):
    schedule = await get_schedule_by_id(db, schedule_id)
    return await set_schedule_active(
        db, schedule_id, not schedule.is_active, current_user["id"]
    )


@router.delete("/{schedule_id}", response_model=ScheduleRead)
@limiter.limit("20/minute")
async def deactivate_schedule(
    request: Request,
    schedule_id: int,
    current_user: Dict[str, Any] = Depends(get_current_staff_user),
    db: AsyncSession = Depends(get_session),
):
    """Soft delete: the schedule is deactivated, its sessions stay"""
    return await set_schedule_active(db, schedule_id, False, current_user["id"])
