from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Any, Dict, Optional

from gymbook.core.database import get_session
from gymbook.core.limits import limiter
from gymbook.core.dependencies import get_current_staff_user
from gymbook.staff.crud.reservations import (
    check_in_reservation,
    expire_pending_reservations,
    get_pending_payments,
    record_payment,
)
from gymbook.staff.schemas.reservations import (
    ExpirePendingResponse,
    ReservationListResponse,
    ReservationRead,
    StaffCancelReservationRequest,
)
from gymbook.students.crud.bookings import cancel_reservation, get_reservation_by_id

router = APIRouter(prefix="/staff/reservations", tags=["Reservations"])


@router.get("/clubs/{club_id}/pending-payments", response_model=ReservationListResponse)
@limiter.limit("60/minute")
async def list_pending_payments(
    request: Request,
    club_id: int,
    page: int = Query(1, ge=1),
    size: int = Query(50, ge=1, le=200),
    current_user: Dict[str, Any] = Depends(get_current_staff_user),
    db: AsyncSession = Depends(get_session),
):
    """Club reservations awaiting payment, oldest first"""
    reservations, total = await get_pending_payments(db, club_id, (page - 1) * size, size)
    return ReservationListResponse(reservations=reservations, total=total)


@router.post("/expire-pending", response_model=ExpirePendingResponse)
@limiter.limit("5/minute")
async def expire_unpaid_reservations(
    request: Request,
    current_user: Dict[str, Any] = Depends(get_current_staff_user),
    db: AsyncSession = Depends(get_session),
):
    """Cancel reservations not paid in time and free their seats"""
    return await expire_pending_reservations(db)


@router.get("/{reservation_id}", response_model=ReservationRead)
@limiter.limit("60/minute")
async def get_reservation(
    request: Request,
    reservation_id: int,
    current_user: Dict[str, Any] = Depends(get_current_staff_user),
    db: AsyncSession = Depends(get_session),
):
    return await get_reservation_by_id(db, reservation_id)


@router.post("/{reservation_id}/payment", response_model=ReservationRead)
@limiter.limit("30/minute")
async def mark_reservation_paid(
    request: Request,
    reservation_id: int,
    current_user: Dict[str, Any] = Depends(get_current_staff_user),
    db: AsyncSession = Depends(get_session),
):
    """PENDING_PAYMENT -> PAID"""
    return await record_payment(db, reservation_id, current_user["id"])


@router.post("/{reservation_id}/check-in", response_model=ReservationRead)
@limiter.limit("60/minute")
async def check_in_booked_member(
    request: Request,
    reservation_id: int,
    current_user: Dict[str, Any] = Depends(get_current_staff_user),
    db: AsyncSession = Depends(get_session),
):
    return await check_in_reservation(db, reservation_id, current_user["id"])


@router.post("/{reservation_id}/cancel", response_model=ReservationRead)
@limiter.limit("30/minute")
async def cancel_member_reservation(
    request: Request,
    reservation_id: int,
    payload: Optional[StaffCancelReservationRequest] = None,
    current_user: Dict[str, Any] = Depends(get_current_staff_user),
    db: AsyncSession = Depends(get_session),
):
    reason = payload.reason if payload else None
    return await cancel_reservation(db, reservation_id, current_user, reason)
