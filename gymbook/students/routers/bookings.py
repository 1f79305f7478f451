"""Student Booking Router - Endpoints for booking and cancelling class sessions"""
from datetime import date
from fastapi import APIRouter, Depends, Query, status, Request
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Any, Dict, Optional

from gymbook.core.database import get_session
from gymbook.core.limits import limiter
from gymbook.core.dependencies import get_current_user
from gymbook.staff.schemas.reservations import ReservationRead
from gymbook.students.crud.bookings import (
    book_session,
    cancel_reservation,
    get_bookable_sessions,
    get_user_reservations,
)
from gymbook.students.schemas.bookings import (
    BookSessionRequest,
    BookSessionResponse,
    BookableSessionsResponse,
    CancelReservationRequest,
    MyReservationsResponse,
)

router = APIRouter(prefix="/students/bookings", tags=["Student Bookings"])


@router.post("", response_model=BookSessionResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
async def book_class_session(
    request: Request,
    payload: BookSessionRequest,
    current_user: Dict[str, Any] = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """
    Book a seat in a session.

    The reservation starts as PENDING_PAYMENT. Full, cancelled or started
    sessions and repeated bookings are rejected with 409.
    """
    reservation = await book_session(db, current_user["id"], payload.session_id)
    return BookSessionResponse(
        message="Seat reserved, awaiting payment",
        reservation=ReservationRead.model_validate(reservation),
    )


@router.get("", response_model=MyReservationsResponse)
@limiter.limit("60/minute")
async def list_my_reservations(
    request: Request,
    active_only: bool = Query(False, description="Only pending/paid reservations"),
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    current_user: Dict[str, Any] = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    reservations, total = await get_user_reservations(
        db, current_user["id"], active_only, (page - 1) * size, size
    )
    return MyReservationsResponse(reservations=reservations, total=total)


@router.get("/sessions/clubs/{club_id}", response_model=BookableSessionsResponse)
@limiter.limit("60/minute")
async def list_bookable_sessions(
    request: Request,
    club_id: int,
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    current_user: Dict[str, Any] = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Upcoming sessions of a club that still have free seats"""
    sessions = await get_bookable_sessions(db, club_id, date_from, date_to)
    return BookableSessionsResponse(sessions=sessions, total=len(sessions))


@router.post("/{reservation_id}/cancel", response_model=ReservationRead)
@limiter.limit("20/minute")
async def cancel_my_reservation(
    request: Request,
    reservation_id: int,
    payload: Optional[CancelReservationRequest] = None,
    current_user: Dict[str, Any] = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    reason = payload.reason if payload else None
    return await cancel_reservation(db, reservation_id, current_user, reason)
