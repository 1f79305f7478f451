from typing import Optional, List
from datetime import date, datetime
from sqlalchemy import and_, func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession

from gymbook.core.database import db_operation, with_db_transaction
from gymbook.core.exceptions import (
    AlreadyCheckedInError,
    MembershipInvalidError,
    ValidationError,
)
from gymbook.core.logging_utils import log_business_event
from gymbook.staff.crud.memberships import get_membership_by_id
from gymbook.staff.crud.sessions import get_session_by_id
from gymbook.staff.models.memberships import Membership, MembershipStatus
from gymbook.staff.services.membership_validator import evaluate_membership
from gymbook.students.models.attendance import Attendance


async def _charge_session(session: AsyncSession, membership: Membership):
    """Charge one visit; the membership expires when none are left"""
    result = await session.execute(
        update(Membership)
        .where(
            Membership.id == membership.id,
            Membership.status == MembershipStatus.active,
            Membership.remaining_sessions > 0,
        )
        .values(
            remaining_sessions=Membership.remaining_sessions - 1,
            version=Membership.version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise MembershipInvalidError("No sessions left on membership", membership.id)

    await session.refresh(membership)

    if membership.remaining_sessions == 0:
        await session.execute(
            update(Membership)
            .where(
                Membership.id == membership.id,
                Membership.status == MembershipStatus.active,
            )
            .values(status=MembershipStatus.expired, version=Membership.version + 1)
            .execution_options(synchronize_session=False)
        )
        await session.refresh(membership)


async def check_in(
    session: AsyncSession,
    user_id: int,
    membership_id: int,
    club_id: int,
    session_id: Optional[int] = None,
    recorded_by: Optional[int] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Attendance:
    """
    Record a visit charged to a membership.

    A class check-in is allowed once per (user, session); a walk-in once per
    user, club and day. Session-based memberships lose one session.
    """
    now = now or datetime.now()
    today = now.date()

    async def _check_in_operation(session: AsyncSession):
        membership = await get_membership_by_id(session, membership_id)

        if membership.user_id != user_id or membership.club_id != club_id:
            raise MembershipInvalidError(
                "Membership does not belong to this user and club", membership.id
            )

        valid, message = evaluate_membership(membership, today)
        if not valid:
            raise MembershipInvalidError(message, membership.id)

        if session_id:
            class_session = await get_session_by_id(session, session_id)
            if class_session.club_id != club_id:
                raise ValidationError(f"Session {session_id} does not belong to club {club_id}")
            duplicate_condition = and_(
                Attendance.user_id == user_id,
                Attendance.session_id == session_id,
            )
            duplicate_details = {"session_id": session_id}
        else:
            duplicate_condition = and_(
                Attendance.user_id == user_id,
                Attendance.club_id == club_id,
                Attendance.session_id.is_(None),
                Attendance.check_in_date == today,
            )
            duplicate_details = {"club_id": club_id, "date": today.isoformat()}

        existing = await session.execute(select(Attendance.id).where(duplicate_condition))
        if existing.first() is not None:
            raise AlreadyCheckedInError(user_id, duplicate_details)

        attendance = Attendance(
            user_id=user_id,
            membership_id=membership.id,
            club_id=club_id,
            session_id=session_id,
            check_in_date=today,
            check_in_time=now,
            recorded_by_user_id=recorded_by,
            notes=notes,
        )
        session.add(attendance)
        try:
            await session.flush()
        except IntegrityError as e:
            raise AlreadyCheckedInError(user_id, duplicate_details) from e

        if membership.remaining_sessions is not None:
            await _charge_session(session, membership)

        return attendance, membership

    attendance, membership = await with_db_transaction(session, _check_in_operation)

    log_business_event(
        "attendance_checked_in",
        "attendance",
        attendance.id,
        {
            "user_id": user_id,
            "membership_id": membership.id,
            "session_id": session_id,
            "remaining_sessions": membership.remaining_sessions,
            "recorded_by": recorded_by,
        },
    )
    return attendance


@db_operation
async def get_club_attendance(
    session: AsyncSession, club_id: int, day: Optional[date] = None
) -> List[Attendance]:
    """Check-ins of a club on a day (today by default)"""
    if club_id <= 0:
        raise ValidationError("Club ID must be positive")

    day = day or date.today()
    result = await session.execute(
        select(Attendance)
        .where(Attendance.club_id == club_id, Attendance.check_in_date == day)
        .order_by(Attendance.check_in_time.desc(), Attendance.id.desc())
    )
    return result.scalars().all()


@db_operation
async def get_session_attendance(session: AsyncSession, session_id: int) -> List[Attendance]:
    await get_session_by_id(session, session_id)

    result = await session.execute(
        select(Attendance)
        .where(Attendance.session_id == session_id)
        .order_by(Attendance.check_in_time, Attendance.id)
    )
    return result.scalars().all()


@db_operation
async def get_user_attendance(
    session: AsyncSession, user_id: int, club_id: Optional[int] = None, limit: int = 100
) -> List[Attendance]:
    if limit <= 0 or limit > 500:
        raise ValidationError("Limit must be between 1 and 500")

    query = select(Attendance).where(Attendance.user_id == user_id)
    if club_id:
        query = query.where(Attendance.club_id == club_id)

    result = await session.execute(
        query.order_by(Attendance.check_in_time.desc(), Attendance.id.desc()).limit(limit)
    )
    return result.scalars().all()


@db_operation
async def get_attendance_by_date_range(
    session: AsyncSession, club_id: int, start_date: date, end_date: date
) -> List[Attendance]:
    """Check-ins of a club between two dates, both inclusive, oldest first"""
    if club_id <= 0:
        raise ValidationError("Club ID must be positive")

    if start_date > end_date:
        raise ValidationError("start_date must not be after end_date")

    result = await session.execute(
        select(Attendance)
        .where(
            Attendance.club_id == club_id,
            Attendance.check_in_date >= start_date,
            Attendance.check_in_date <= end_date,
        )
        .order_by(Attendance.check_in_time, Attendance.id)
    )
    return result.scalars().all()


@db_operation
async def get_membership_attendance_count(session: AsyncSession, membership_id: int) -> int:
    """Number of visits charged to a membership"""
    await get_membership_by_id(session, membership_id)

    result = await session.execute(
        select(func.count(Attendance.id)).where(Attendance.membership_id == membership_id)
    )
    return result.scalar()
