from typing import Optional, List, Tuple
from datetime import date
from sqlalchemy import and_, func
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from gymbook.core.database import db_operation, with_db_transaction
from gymbook.core.exceptions import (
    ConcurrencyConflictError,
    NotFoundError,
    ValidationError,
)
from gymbook.core.logging_utils import log_business_event
from gymbook.staff.models.activities import Activity
from gymbook.staff.models.clubs import Club
from gymbook.staff.models.schedules import Schedule
from gymbook.staff.models.trainers import Trainer
from gymbook.staff.schemas.schedules import (
    ScheduleCreate,
    ScheduleUpdate,
    ExpandSchedulesResponse,
)
from gymbook.staff.services.schedule_expander import ScheduleExpander


async def ensure_club(session: AsyncSession, club_id: int) -> Club:
    result = await session.execute(select(Club).where(Club.id == club_id))
    club = result.scalar_one_or_none()
    if not club:
        raise NotFoundError("Club", str(club_id))
    return club


async def ensure_activity(session: AsyncSession, activity_id: int, club_id: int) -> Activity:
    result = await session.execute(select(Activity).where(Activity.id == activity_id))
    activity = result.scalar_one_or_none()
    if not activity:
        raise NotFoundError("Activity", str(activity_id))
    if activity.club_id != club_id:
        raise ValidationError(f"Activity {activity_id} does not belong to club {club_id}")
    if not activity.is_active:
        raise ValidationError(f"Activity {activity_id} is inactive")
    return activity


async def ensure_trainer(session: AsyncSession, trainer_id: int, club_id: int) -> Trainer:
    result = await session.execute(select(Trainer).where(Trainer.id == trainer_id))
    trainer = result.scalar_one_or_none()
    if not trainer:
        raise NotFoundError("Trainer", str(trainer_id))
    if trainer.club_id != club_id:
        raise ValidationError(f"Trainer {trainer_id} does not belong to club {club_id}")
    if not trainer.is_active:
        raise ValidationError(f"Trainer {trainer_id} is inactive")
    return trainer


@db_operation
async def get_schedule_by_id(session: AsyncSession, schedule_id: int) -> Schedule:
    if schedule_id <= 0:
        raise ValidationError("Schedule ID must be positive")

    result = await session.execute(select(Schedule).where(Schedule.id == schedule_id))
    schedule = result.scalar_one_or_none()

    if not schedule:
        raise NotFoundError("Schedule", str(schedule_id))

    return schedule


@db_operation
async def get_schedules_by_club(
    session: AsyncSession,
    club_id: int,
    active_only: bool = True,
    skip: int = 0,
    limit: int = 100,
) -> Tuple[List[Schedule], int]:
    """Get schedules of a club, newest first"""
    if club_id <= 0:
        raise ValidationError("Club ID must be positive")

    if skip < 0:
        raise ValidationError("Skip parameter must be >= 0")

    if limit <= 0 or limit > 200:
        raise ValidationError("Limit must be between 1 and 200")

    conditions = [Schedule.club_id == club_id]
    if active_only:
        conditions.append(Schedule.is_active.is_(True))

    total_result = await session.execute(
        select(func.count(Schedule.id)).where(and_(*conditions))
    )
    total = total_result.scalar()

    result = await session.execute(
        select(Schedule)
        .where(and_(*conditions))
        .order_by(Schedule.created_at.desc(), Schedule.id.desc())
        .offset(skip)
        .limit(limit)
    )
    return result.scalars().all(), total


async def create_schedule(
    session: AsyncSession, club_id: int, data: ScheduleCreate, user_id: int
) -> Schedule:
    """Create a weekly schedule for a club"""

    async def _create_schedule_operation(session: AsyncSession):
        await ensure_club(session, club_id)
        await ensure_activity(session, data.activity_id, club_id)
        if data.trainer_id:
            await ensure_trainer(session, data.trainer_id, club_id)

        schedule = Schedule(
            club_id=club_id,
            activity_id=data.activity_id,
            trainer_id=data.trainer_id,
            start_time=data.start_time,
            end_time=data.end_time,
            days_of_week=[day.value for day in data.days_of_week],
            valid_from=data.valid_from,
            valid_until=data.valid_until,
            capacity=data.capacity,
            notes=data.notes,
            is_active=True,
        )
        session.add(schedule)
        await session.flush()
        return schedule

    schedule = await with_db_transaction(session, _create_schedule_operation)

    log_business_event(
        "schedule_created", "schedule", schedule.id, {"club_id": club_id, "created_by": user_id}
    )
    return schedule


async def update_schedule(
    session: AsyncSession, schedule_id: int, data: ScheduleUpdate, user_id: int
) -> Schedule:
    """
    Update a schedule with an optimistic version check.

    Already generated sessions are not touched; changes apply to future
    expansions only.
    """

    async def _update_schedule_operation(session: AsyncSession):
        schedule = await get_schedule_by_id(session, schedule_id)

        if data.version is not None and data.version != schedule.version:
            raise ConcurrencyConflictError(
                "schedule", "Schedule was modified by someone else. Reload and retry."
            )

        update_data = data.model_dump(exclude_unset=True, exclude={"version"})

        if "activity_id" in update_data and update_data["activity_id"] is not None:
            await ensure_activity(session, update_data["activity_id"], schedule.club_id)
        if update_data.get("trainer_id"):
            await ensure_trainer(session, update_data["trainer_id"], schedule.club_id)
        if "days_of_week" in update_data:
            update_data["days_of_week"] = [day.value for day in data.days_of_week]

        start_time = update_data.get("start_time", schedule.start_time)
        end_time = update_data.get("end_time", schedule.end_time)
        if end_time <= start_time:
            raise ValidationError("end_time must be after start_time")

        valid_from = update_data.get("valid_from", schedule.valid_from)
        valid_until = update_data.get("valid_until", schedule.valid_until)
        if valid_until is not None and valid_until < valid_from:
            raise ValidationError("valid_until must be on or after valid_from")

        for field, value in update_data.items():
            setattr(schedule, field, value)

        try:
            await session.flush()
        except StaleDataError as e:
            raise ConcurrencyConflictError("schedule") from e
        return schedule

    schedule = await with_db_transaction(session, _update_schedule_operation)

    log_business_event(
        "schedule_updated",
        "schedule",
        schedule.id,
        {"updated_by": user_id, "version": schedule.version},
    )
    return schedule


async def set_schedule_active(
    session: AsyncSession, schedule_id: int, is_active: bool, user_id: int
) -> Schedule:
    """Activate or deactivate (soft delete) a schedule; generated sessions stay"""

    async def _toggle_operation(session: AsyncSession):
        schedule = await get_schedule_by_id(session, schedule_id)
        schedule.is_active = is_active
        try:
            await session.flush()
        except StaleDataError as e:
            raise ConcurrencyConflictError("schedule") from e
        return schedule

    schedule = await with_db_transaction(session, _toggle_operation)

    log_business_event(
        "schedule_activated" if is_active else "schedule_deactivated",
        "schedule",
        schedule.id,
        {"updated_by": user_id},
    )
    return schedule


async def expand_schedules(
    session: AsyncSession, club_id: int, start_date: date, end_date: date
) -> ExpandSchedulesResponse:
    """Materialize sessions for all active schedules of the club"""
    expander = ScheduleExpander(session)
    try:
        return await expander.expand_schedules(club_id, start_date, end_date)
    except Exception:
        await session.rollback()
        raise
