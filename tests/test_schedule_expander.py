from datetime import date, time, timedelta

import pytest
from sqlalchemy import func
from sqlalchemy.future import select

from gymbook.core.exceptions import NotFoundError, ValidationError
from gymbook.staff.crud.schedules import expand_schedules
from gymbook.staff.models import Activity, ClassSession, Schedule, SessionStatus, Trainer
from gymbook.staff.services.schedule_expander import ScheduleExpander
from tests.conftest import make_schedule


async def _session_dates(db, schedule_id):
    result = await db.execute(
        select(ClassSession.session_date)
        .where(ClassSession.schedule_id == schedule_id)
        .order_by(ClassSession.session_date)
    )
    return [row[0] for row in result.fetchall()]


class TestScheduleExpansion:
    """Генерация занятий из еженедельного расписания"""

    @pytest.mark.asyncio
    async def test_monday_wednesday_over_two_weeks(self, db, club_setup):
        schedule = await make_schedule(db, club_setup)

        result = await ScheduleExpander(db).expand_schedules(
            club_setup["club"].id, date(2024, 1, 1), date(2024, 1, 14)
        )

        assert result.sessions_created == 4
        assert result.warnings == []
        assert await _session_dates(db, schedule.id) == [
            date(2024, 1, 1),
            date(2024, 1, 3),
            date(2024, 1, 8),
            date(2024, 1, 10),
        ]

        sessions = (
            await db.execute(select(ClassSession).where(ClassSession.schedule_id == schedule.id))
        ).scalars().all()
        for class_session in sessions:
            assert class_session.capacity == 10
            assert class_session.booked_count == 0
            assert class_session.status == SessionStatus.scheduled
            assert class_session.start_time == time(8, 0)
            assert class_session.end_time == time(9, 0)
            assert class_session.trainer_id == club_setup["trainer"].id

    @pytest.mark.asyncio
    async def test_overlapping_runs_do_not_duplicate(self, db, club_setup):
        schedule = await make_schedule(db, club_setup)
        expander = ScheduleExpander(db)
        club_id = club_setup["club"].id

        first = await expander.expand_schedules(club_id, date(2024, 1, 1), date(2024, 1, 14))
        second = await expander.expand_schedules(club_id, date(2024, 1, 8), date(2024, 1, 21))
        repeat = await expander.expand_schedules(club_id, date(2024, 1, 1), date(2024, 1, 21))

        assert first.sessions_created == 4
        assert second.sessions_created == 2
        assert repeat.sessions_created == 0

        dates = await _session_dates(db, schedule.id)
        assert len(dates) == 6
        assert len(set(dates)) == 6

    @pytest.mark.asyncio
    async def test_respects_validity_window(self, db, club_setup):
        schedule = await make_schedule(
            db, club_setup, valid_from=date(2024, 1, 3), valid_until=date(2024, 1, 8)
        )

        result = await ScheduleExpander(db).expand_schedules(
            club_setup["club"].id, date(2024, 1, 1), date(2024, 1, 31)
        )

        assert result.sessions_created == 2
        assert await _session_dates(db, schedule.id) == [date(2024, 1, 3), date(2024, 1, 8)]

    @pytest.mark.asyncio
    async def test_capacity_falls_back_to_activity_default(self, db, club_setup):
        schedule = await make_schedule(db, club_setup, capacity=None, days_of_week=["friday"])

        await ScheduleExpander(db).expand_schedules(
            club_setup["club"].id, date(2024, 1, 1), date(2024, 1, 7)
        )

        class_session = (
            await db.execute(select(ClassSession).where(ClassSession.schedule_id == schedule.id))
        ).scalar_one()
        assert class_session.session_date == date(2024, 1, 5)
        assert class_session.capacity == club_setup["activity"].default_capacity

    @pytest.mark.asyncio
    async def test_inactive_schedule_is_ignored(self, db, club_setup):
        await make_schedule(db, club_setup, is_active=False)

        result = await ScheduleExpander(db).expand_schedules(
            club_setup["club"].id, date(2024, 1, 1), date(2024, 1, 14)
        )

        assert result.sessions_created == 0
        assert result.warnings == []

    @pytest.mark.asyncio
    async def test_single_day_range(self, db, club_setup):
        await make_schedule(db, club_setup)

        monday = await ScheduleExpander(db).expand_schedules(
            club_setup["club"].id, date(2024, 1, 1), date(2024, 1, 1)
        )
        tuesday = await ScheduleExpander(db).expand_schedules(
            club_setup["club"].id, date(2024, 1, 2), date(2024, 1, 2)
        )

        assert monday.sessions_created == 1
        assert tuesday.sessions_created == 0


class TestExpansionWarnings:
    """Расписания с неактивной активностью или тренером пропускаются"""

    @pytest.mark.asyncio
    async def test_inactive_activity_is_reported_with_dates(self, db, club_setup):
        schedule = await make_schedule(db, club_setup)
        activity = await db.get(Activity, club_setup["activity"].id)
        activity.is_active = False
        await db.commit()

        result = await ScheduleExpander(db).expand_schedules(
            club_setup["club"].id, date(2024, 1, 1), date(2024, 1, 7)
        )

        assert result.sessions_created == 0
        assert len(result.warnings) == 1
        warning = result.warnings[0]
        assert warning.schedule_id == schedule.id
        assert warning.reason == "activity inactive"
        assert warning.dates == [date(2024, 1, 1), date(2024, 1, 3)]

    @pytest.mark.asyncio
    async def test_inactive_trainer_skips_only_that_schedule(self, db, club_setup):
        other_trainer = Trainer(club_id=club_setup["club"].id, full_name="Off Duty", is_active=False)
        db.add(other_trainer)
        await db.commit()

        healthy = await make_schedule(db, club_setup)
        broken = await make_schedule(
            db, club_setup, trainer_id=other_trainer.id, days_of_week=["tuesday"]
        )

        result = await ScheduleExpander(db).expand_schedules(
            club_setup["club"].id, date(2024, 1, 1), date(2024, 1, 7)
        )

        assert result.sessions_created == 2
        assert [w.schedule_id for w in result.warnings] == [broken.id]
        assert result.warnings[0].reason == "trainer inactive"
        assert len(await _session_dates(db, healthy.id)) == 2

    @pytest.mark.asyncio
    async def test_deleted_activity(self, db, club_setup):
        schedule = await make_schedule(db, club_setup, activity_id=None)

        result = await ScheduleExpander(db).expand_schedules(
            club_setup["club"].id, date(2024, 1, 1), date(2024, 1, 7)
        )

        assert result.warnings[0].schedule_id == schedule.id
        assert result.warnings[0].reason == "activity deleted"


class TestExpansionValidation:
    @pytest.mark.asyncio
    async def test_start_after_end_is_rejected(self, db, club_setup):
        with pytest.raises(ValidationError):
            await ScheduleExpander(db).expand_schedules(
                club_setup["club"].id, date(2024, 1, 10), date(2024, 1, 1)
            )

    @pytest.mark.asyncio
    async def test_range_longer_than_limit_is_rejected(self, db, club_setup):
        await make_schedule(db, club_setup)
        start = date(2024, 1, 1)

        with pytest.raises(ValidationError):
            await expand_schedules(db, club_setup["club"].id, start, start + timedelta(days=400))

        count = (await db.execute(select(func.count(ClassSession.id)))).scalar()
        assert count == 0

    @pytest.mark.asyncio
    async def test_unknown_club(self, db, club_setup):
        with pytest.raises(NotFoundError):
            await ScheduleExpander(db).expand_schedules(999, date(2024, 1, 1), date(2024, 1, 7))


class TestScheduleModel:
    def test_occurs_on_checks_weekday_and_window(self):
        schedule = Schedule(
            days_of_week=["monday"],
            valid_from=date(2024, 1, 1),
            valid_until=date(2024, 1, 31),
        )

        assert schedule.occurs_on(date(2024, 1, 1))
        assert not schedule.occurs_on(date(2024, 1, 2))
        assert not schedule.occurs_on(date(2023, 12, 25))
        assert not schedule.occurs_on(date(2024, 2, 5))
