from typing import Optional, List, Tuple
from datetime import datetime
from sqlalchemy import and_, func, update
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession

from gymbook.core.config import BOOKING_LOCK_TIMEOUT_MS
from gymbook.core.database import db_operation, with_db_transaction, set_lock_timeout
from gymbook.core.exceptions import ConcurrencyConflictError, ValidationError
from gymbook.core.logging_utils import log_business_event
from gymbook.staff.crud.sessions import get_session_by_id
from gymbook.staff.schemas.reservations import ExpirePendingResponse
from gymbook.staff.schemas.sessions import CompletePastSessionsResponse
from gymbook.staff.services.session_lifecycle import SessionLifecycle
from gymbook.students.crud.bookings import get_reservation_by_id
from gymbook.students.models.reservations import ACTIVE_STATUSES, Reservation, ReservationStatus
from gymbook.students.services.capacity_ledger import CapacityLedger
from gymbook.students.services.reservation_states import ensure_can_check_in


async def record_payment(
    session: AsyncSession, reservation_id: int, recorded_by: Optional[int] = None
) -> Reservation:
    """
    Mark a reservation as paid (PENDING_PAYMENT -> PAID).

    Amounts and payment records live in the payment system; here only the
    reservation status changes.
    """

    async def _payment_operation(session: AsyncSession):
        reservation = await get_reservation_by_id(session, reservation_id)
        return await CapacityLedger(session).finalize(reservation)

    reservation = await with_db_transaction(session, _payment_operation)

    log_business_event(
        "reservation_paid",
        "reservation",
        reservation.id,
        {"session_id": reservation.session_id, "recorded_by": recorded_by},
    )
    return reservation


async def check_in_reservation(
    session: AsyncSession, reservation_id: int, recorded_by: Optional[int] = None
) -> Reservation:
    """Mark a PAID reservation as checked in; it resolves to COMPLETED after the session"""
    now = datetime.now()

    async def _check_in_operation(session: AsyncSession):
        await set_lock_timeout(session, BOOKING_LOCK_TIMEOUT_MS)
        reservation = await get_reservation_by_id(session, reservation_id)
        class_session = await get_session_by_id(session, reservation.session_id)
        ensure_can_check_in(reservation, class_session)

        result = await session.execute(
            update(Reservation)
            .where(
                Reservation.id == reservation_id,
                Reservation.status == ReservationStatus.paid,
                Reservation.checked_in_at.is_(None),
            )
            .values(checked_in_at=now)
            .execution_options(synchronize_session=False)
        )
        await session.refresh(reservation)

        if result.rowcount != 1:
            # Someone got there first: report the precise reason
            ensure_can_check_in(reservation, class_session)
            raise ConcurrencyConflictError("reservation")

        return reservation

    reservation = await with_db_transaction(session, _check_in_operation)

    log_business_event(
        "reservation_checked_in",
        "reservation",
        reservation.id,
        {"session_id": reservation.session_id, "recorded_by": recorded_by},
    )
    return reservation


@db_operation
async def get_session_reservations(
    session: AsyncSession, session_id: int, active_only: bool = False
) -> List[Reservation]:
    await get_session_by_id(session, session_id)

    query = select(Reservation).where(Reservation.session_id == session_id)
    if active_only:
        query = query.where(
            Reservation.status.in_(ACTIVE_STATUSES)
        )

    result = await session.execute(query.order_by(Reservation.booked_at, Reservation.id))
    return result.scalars().all()


@db_operation
async def get_pending_payments(
    session: AsyncSession, club_id: int, skip: int = 0, limit: int = 100
) -> Tuple[List[Reservation], int]:
    """Reservations of a club still waiting for payment, oldest first"""
    if club_id <= 0:
        raise ValidationError("Club ID must be positive")

    if skip < 0:
        raise ValidationError("Skip parameter must be >= 0")

    if limit <= 0 or limit > 200:
        raise ValidationError("Limit must be between 1 and 200")

    condition = and_(
        Reservation.club_id == club_id,
        Reservation.status == ReservationStatus.pending_payment,
    )

    total_result = await session.execute(select(func.count(Reservation.id)).where(condition))
    total = total_result.scalar()

    result = await session.execute(
        select(Reservation)
        .where(condition)
        .order_by(Reservation.booked_at, Reservation.id)
        .offset(skip)
        .limit(limit)
    )
    return result.scalars().all(), total


async def complete_past_sessions(
    session: AsyncSession, now: Optional[datetime] = None
) -> CompletePastSessionsResponse:
    try:
        return await SessionLifecycle(session).complete_past_sessions(now)
    except Exception:
        await session.rollback()
        raise


async def expire_pending_reservations(
    session: AsyncSession, now: Optional[datetime] = None
) -> ExpirePendingResponse:
    try:
        return await SessionLifecycle(session).expire_pending_reservations(now)
    except Exception:
        await session.rollback()
        raise
