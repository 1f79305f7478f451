"""Booking CRUD - member reservations against session capacity"""
import logging
from typing import Any, Dict, List, Optional, Tuple
from datetime import date, datetime
from sqlalchemy import and_, or_, func
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
    before_sleep_log,
)

from gymbook.core.config import BOOKING_RETRY_ATTEMPTS, BOOKING_LOCK_TIMEOUT_MS
from gymbook.core.database import db_operation, with_db_transaction, set_lock_timeout
from gymbook.core.exceptions import (
    AuthorizationError,
    ConcurrencyConflictError,
    NotFoundError,
    ValidationError,
)
from gymbook.core.logging_utils import log_business_event
from gymbook.staff.models.sessions import ClassSession, SessionStatus
from gymbook.students.models.reservations import (
    ACTIVE_STATUSES,
    Reservation,
)
from gymbook.students.services.capacity_ledger import CapacityLedger

logger = logging.getLogger(__name__)


@retry(
    stop=stop_after_attempt(BOOKING_RETRY_ATTEMPTS),
    wait=wait_fixed(0.1),
    retry=retry_if_exception_type(ConcurrencyConflictError),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
async def _reserve_in_transaction(
    session: AsyncSession, user_id: int, session_id: int
) -> Reservation:
    """One booking attempt: counter increment and reservation row commit together"""

    async def _reserve_operation(session: AsyncSession):
        return await CapacityLedger(session).try_reserve(user_id, session_id)

    return await with_db_transaction(session, _reserve_operation)


@db_operation
async def book_session(
    session: AsyncSession,
    user_id: int,
    session_id: int,
) -> Reservation:
    """
    Book a seat for a member.

    Lock contention is retried once; a second failure surfaces as a
    retryable ConcurrencyConflictError ("try again").
    """
    if session_id <= 0:
        raise ValidationError("Session ID must be positive")

    reservation = await _reserve_in_transaction(session, user_id, session_id)

    log_business_event(
        "reservation_created",
        "reservation",
        reservation.id,
        {"user_id": user_id, "session_id": session_id, "status": reservation.status.value},
    )
    return reservation


@db_operation
async def get_reservation_by_id(session: AsyncSession, reservation_id: int) -> Reservation:
    if reservation_id <= 0:
        raise ValidationError("Reservation ID must be positive")

    result = await session.execute(
        select(Reservation)
        .where(Reservation.id == reservation_id)
        .execution_options(populate_existing=True)
    )
    reservation = result.scalar_one_or_none()

    if not reservation:
        raise NotFoundError("Reservation", str(reservation_id))

    return reservation


async def cancel_reservation(
    session: AsyncSession,
    reservation_id: int,
    actor: Dict[str, Any],
    reason: Optional[str] = None,
) -> Reservation:
    """
    Cancel a reservation on behalf of its owner or a staff member.

    The seat is released exactly once; a second cancel gets AlreadyCancelled.
    """
    now = datetime.now()

    async def _cancel_operation(session: AsyncSession):
        await set_lock_timeout(session, BOOKING_LOCK_TIMEOUT_MS)
        reservation = await get_reservation_by_id(session, reservation_id)

        if reservation.user_id != actor["id"] and not actor.get("is_staff"):
            raise AuthorizationError("You can only cancel your own reservations")

        cancel_reason = reason
        if cancel_reason is None:
            by_owner = reservation.user_id == actor["id"]
            cancel_reason = "cancelled by member" if by_owner else "cancelled by staff"

        return await CapacityLedger(session).cancel(
            reservation,
            reason=cancel_reason,
            cancelled_by=actor["id"],
            now=now,
        )

    reservation = await with_db_transaction(session, _cancel_operation)

    log_business_event(
        "reservation_cancelled",
        "reservation",
        reservation.id,
        {
            "session_id": reservation.session_id,
            "cancelled_by": actor["id"],
            "reason": reservation.cancellation_reason,
        },
    )
    return reservation


@db_operation
async def get_user_reservations(
    session: AsyncSession,
    user_id: int,
    active_only: bool = False,
    skip: int = 0,
    limit: int = 50,
) -> Tuple[List[Reservation], int]:
    """Get a member's reservations, newest first"""
    if skip < 0:
        raise ValidationError("Skip parameter must be >= 0")

    if limit <= 0 or limit > 100:
        raise ValidationError("Limit must be between 1 and 100")

    conditions = [Reservation.user_id == user_id]
    if active_only:
        conditions.append(Reservation.status.in_(ACTIVE_STATUSES))

    total_result = await session.execute(
        select(func.count(Reservation.id)).where(and_(*conditions))
    )
    total = total_result.scalar()

    result = await session.execute(
        select(Reservation)
        .where(and_(*conditions))
        .order_by(Reservation.booked_at.desc(), Reservation.id.desc())
        .offset(skip)
        .limit(limit)
    )
    return result.scalars().all(), total


@db_operation
async def get_bookable_sessions(
    session: AsyncSession,
    club_id: int,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    now: Optional[datetime] = None,
) -> List[ClassSession]:
    """Scheduled sessions of a club that have not started and still have seats"""
    now = now or datetime.now()
    start_date = max(start_date or now.date(), now.date())

    conditions = [
        ClassSession.club_id == club_id,
        ClassSession.status == SessionStatus.scheduled,
        ClassSession.booked_count < ClassSession.capacity,
        or_(
            ClassSession.session_date > now.date(),
            and_(
                ClassSession.session_date == now.date(),
                ClassSession.start_time > now.time(),
            ),
        ),
        ClassSession.session_date >= start_date,
    ]
    if end_date:
        if end_date < start_date:
            raise ValidationError("end_date must not be before start_date")
        conditions.append(ClassSession.session_date <= end_date)

    result = await session.execute(
        select(ClassSession)
        .where(and_(*conditions))
        .order_by(ClassSession.session_date, ClassSession.start_time)
        .limit(500)
    )
    return result.scalars().all()
