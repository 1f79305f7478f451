import logging
from typing import Optional, List, Tuple
from datetime import date, datetime
from sqlalchemy import and_, func, update
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession

from gymbook.core.config import BOOKING_LOCK_TIMEOUT_MS
from gymbook.core.database import (
    db_operation,
    with_db_transaction,
    set_lock_timeout,
)
from gymbook.core.exceptions import (
    NotFoundError,
    SessionNotCancellableError,
    ValidationError,
)
from gymbook.core.logging_utils import log_business_event, log_invariant_violation
from gymbook.staff.crud.schedules import ensure_activity, ensure_club, ensure_trainer
from gymbook.staff.models.sessions import ClassSession, SessionStatus
from gymbook.staff.schemas.sessions import ClassSessionCreate
from gymbook.students.models.reservations import ACTIVE_STATUSES, Reservation
from gymbook.students.services.capacity_ledger import CapacityLedger

logger = logging.getLogger(__name__)

SESSION_CANCELLED = "session cancelled"


@db_operation
async def get_session_by_id(session: AsyncSession, session_id: int) -> ClassSession:
    if session_id <= 0:
        raise ValidationError("Session ID must be positive")

    result = await session.execute(
        select(ClassSession)
        .where(ClassSession.id == session_id)
        .execution_options(populate_existing=True)
    )
    class_session = result.scalar_one_or_none()

    if not class_session:
        raise NotFoundError("Session", str(session_id))

    return class_session


@db_operation
async def get_sessions_paginated(
    session: AsyncSession,
    club_id: int,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    status: Optional[SessionStatus] = None,
    schedule_id: Optional[int] = None,
    skip: int = 0,
    limit: int = 100,
) -> Tuple[List[ClassSession], int]:
    """Get sessions of a club ordered by date and time"""
    if club_id <= 0:
        raise ValidationError("Club ID must be positive")

    if skip < 0:
        raise ValidationError("Skip parameter must be >= 0")

    if limit <= 0 or limit > 500:
        raise ValidationError("Limit must be between 1 and 500")

    if start_date and end_date and end_date < start_date:
        raise ValidationError("end_date must not be before start_date")

    conditions = [ClassSession.club_id == club_id]
    if start_date:
        conditions.append(ClassSession.session_date >= start_date)
    if end_date:
        conditions.append(ClassSession.session_date <= end_date)
    if status:
        conditions.append(ClassSession.status == status)
    if schedule_id:
        conditions.append(ClassSession.schedule_id == schedule_id)

    filter_condition = and_(*conditions)

    total_result = await session.execute(
        select(func.count(ClassSession.id)).where(filter_condition)
    )
    total = total_result.scalar()

    result = await session.execute(
        select(ClassSession)
        .where(filter_condition)
        .order_by(ClassSession.session_date, ClassSession.start_time, ClassSession.id)
        .offset(skip)
        .limit(limit)
    )
    return result.scalars().all(), total


async def create_session(
    session: AsyncSession, data: ClassSessionCreate, user_id: int
) -> ClassSession:
    """Create an ad hoc session (no schedule behind it)"""

    async def _create_session_operation(session: AsyncSession):
        await ensure_club(session, data.club_id)
        activity = await ensure_activity(session, data.activity_id, data.club_id)
        if data.trainer_id:
            await ensure_trainer(session, data.trainer_id, data.club_id)

        class_session = ClassSession(
            schedule_id=None,
            club_id=data.club_id,
            activity_id=data.activity_id,
            trainer_id=data.trainer_id,
            session_date=data.session_date,
            start_time=data.start_time,
            end_time=data.end_time,
            capacity=data.capacity or activity.default_capacity,
            booked_count=0,
            status=SessionStatus.scheduled,
            notes=data.notes,
        )
        session.add(class_session)
        await session.flush()
        return class_session

    class_session = await with_db_transaction(session, _create_session_operation)

    log_business_event(
        "session_created",
        "session",
        class_session.id,
        {"club_id": data.club_id, "created_by": user_id, "ad_hoc": True},
    )
    return class_session


async def cancel_session(
    session: AsyncSession,
    session_id: int,
    reason: Optional[str] = None,
    cancelled_by: Optional[int] = None,
) -> Tuple[ClassSession, int]:
    """
    Cancel a SCHEDULED session and every active reservation on it.

    Each reservation releases its own seat, so booked_count ends at 0 while
    the capacity field keeps its historical value.

    Returns:
        (session, number of cancelled reservations)
    """
    now = datetime.now()

    async def _cancel_session_operation(session: AsyncSession):
        await set_lock_timeout(session, BOOKING_LOCK_TIMEOUT_MS)
        ledger = CapacityLedger(session)

        result = await session.execute(
            update(ClassSession)
            .where(
                ClassSession.id == session_id,
                ClassSession.status == SessionStatus.scheduled,
            )
            .values(
                status=SessionStatus.cancelled,
                cancellation_reason=reason or SESSION_CANCELLED,
            )
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            class_session = await get_session_by_id(session, session_id)
            raise SessionNotCancellableError(
                session_id, SessionStatus(class_session.status).value
            )

        reservations_result = await session.execute(
            select(Reservation)
            .where(
                Reservation.session_id == session_id,
                Reservation.status.in_(ACTIVE_STATUSES),
            )
            .order_by(Reservation.id)
            .execution_options(populate_existing=True)
        )
        reservations = reservations_result.scalars().all()

        for reservation in reservations:
            await ledger.cancel(
                reservation,
                reason=SESSION_CANCELLED,
                cancelled_by=cancelled_by,
                now=now,
            )

        class_session_result = await session.execute(
            select(ClassSession)
            .where(ClassSession.id == session_id)
            .execution_options(populate_existing=True)
        )
        class_session = class_session_result.scalar_one()

        if class_session.booked_count != 0:
            # Counter drifted from the reservations: log it and reset
            log_invariant_violation(
                "booked_count == 0 after session cancel",
                {"session_id": session_id, "booked_count": class_session.booked_count},
            )
            class_session.booked_count = 0
            await session.flush()

        return class_session, len(reservations)

    class_session, cancelled = await with_db_transaction(
        session, _cancel_session_operation
    )

    log_business_event(
        "session_cancelled",
        "session",
        session_id,
        {
            "reason": reason or SESSION_CANCELLED,
            "cancelled_reservations": cancelled,
            "cancelled_by": cancelled_by,
        },
    )
    return class_session, cancelled
