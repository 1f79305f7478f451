from datetime import date, datetime, time, timedelta

import pytest

from gymbook.core.exceptions import (
    AlreadyCheckedInError,
    MembershipInvalidError,
    NotFoundError,
    ValidationError,
)
from gymbook.staff.crud.attendance import (
    check_in,
    get_attendance_by_date_range,
    get_club_attendance,
    get_membership_attendance_count,
)
from gymbook.staff.models import Membership, MembershipStatus
from tests.conftest import make_membership, make_session, reload


def _at(day: date, hour: int = 10) -> datetime:
    return datetime.combine(day, time(hour, 0))


class TestWalkInCheckIn:
    """Посещение без записи на занятие"""

    @pytest.mark.asyncio
    async def test_session_membership_is_charged_until_expired(self, db, club_setup):
        club_id = club_setup["club"].id
        membership = await make_membership(
            db, club_setup, 1,
            plan_id=club_setup["session_plan"].id,
            remaining_sessions=2,
        )
        today = date.today()

        await check_in(db, 1, membership.id, club_id, recorded_by=900, now=_at(today))
        fresh = await reload(db, Membership, membership.id)
        assert fresh.remaining_sessions == 1
        assert fresh.status == MembershipStatus.active

        await check_in(db, 1, membership.id, club_id, now=_at(today + timedelta(days=1)))
        fresh = await reload(db, Membership, membership.id)
        assert fresh.remaining_sessions == 0
        assert fresh.status == MembershipStatus.expired

        with pytest.raises(MembershipInvalidError):
            await check_in(db, 1, membership.id, club_id, now=_at(today + timedelta(days=2)))

    @pytest.mark.asyncio
    async def test_one_walk_in_per_day(self, db, club_setup):
        club_id = club_setup["club"].id
        membership = await make_membership(
            db, club_setup, 1,
            plan_id=club_setup["session_plan"].id,
            remaining_sessions=5,
        )
        today = date.today()
        membership_id = membership.id

        await check_in(db, 1, membership_id, club_id, now=_at(today, 9))
        with pytest.raises(AlreadyCheckedInError):
            await check_in(db, 1, membership_id, club_id, now=_at(today, 18))

        fresh = await reload(db, Membership, membership_id)
        assert fresh.remaining_sessions == 4

    @pytest.mark.asyncio
    async def test_time_based_membership_is_not_charged(self, db, club_setup):
        membership = await make_membership(db, club_setup, 1)

        attendance = await check_in(db, 1, membership.id, club_setup["club"].id)

        assert attendance.id is not None
        assert attendance.session_id is None
        fresh = await reload(db, Membership, membership.id)
        assert fresh.remaining_sessions is None
        assert fresh.status == MembershipStatus.active

        todays = await get_club_attendance(db, club_setup["club"].id)
        assert [a.id for a in todays] == [attendance.id]


class TestClassCheckIn:
    @pytest.mark.asyncio
    async def test_one_check_in_per_session(self, db, club_setup):
        membership = await make_membership(db, club_setup, 1)
        class_session = await make_session(db, club_setup)

        attendance = await check_in(
            db, 1, membership.id, club_setup["club"].id, session_id=class_session.id
        )
        assert attendance.session_id == class_session.id

        with pytest.raises(AlreadyCheckedInError):
            await check_in(
                db, 1, membership.id, club_setup["club"].id, session_id=class_session.id
            )


class TestCheckInMembershipRules:
    @pytest.mark.asyncio
    async def test_foreign_membership_is_rejected(self, db, club_setup):
        membership = await make_membership(db, club_setup, 1)

        with pytest.raises(MembershipInvalidError):
            await check_in(db, 2, membership.id, club_setup["club"].id)

    @pytest.mark.asyncio
    async def test_expired_membership_is_rejected(self, db, club_setup):
        membership = await make_membership(
            db, club_setup, 1,
            start_date=date.today() - timedelta(days=40),
            end_date=date.today() - timedelta(days=10),
        )

        with pytest.raises(MembershipInvalidError) as exc_info:
            await check_in(db, 1, membership.id, club_setup["club"].id)

        assert "expired" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_suspended_membership_is_rejected(self, db, club_setup):
        membership = await make_membership(db, club_setup, 1, status=MembershipStatus.suspended)

        with pytest.raises(MembershipInvalidError):
            await check_in(db, 1, membership.id, club_setup["club"].id)


class TestAttendanceReports:
    @pytest.mark.asyncio
    async def test_date_range_includes_both_ends(self, db, club_setup):
        club_id = club_setup["club"].id
        membership = await make_membership(
            db, club_setup, 1, start_date=date.today() - timedelta(days=20)
        )
        membership_id = membership.id
        monday = date.today() - timedelta(days=10)

        visits = [
            await check_in(db, 1, membership_id, club_id, now=_at(monday + timedelta(days=offset)))
            for offset in (0, 2, 4, 6)
        ]
        visit_ids = [v.id for v in visits]

        in_range = await get_attendance_by_date_range(
            db, club_id, monday + timedelta(days=2), monday + timedelta(days=4)
        )

        assert [a.id for a in in_range] == visit_ids[1:3]

    @pytest.mark.asyncio
    async def test_date_range_rejects_reversed_dates(self, db, club_setup):
        today = date.today()

        with pytest.raises(ValidationError):
            await get_attendance_by_date_range(
                db, club_setup["club"].id, today, today - timedelta(days=1)
            )

    @pytest.mark.asyncio
    async def test_visits_counted_per_membership(self, db, club_setup):
        club_id = club_setup["club"].id
        mine = await make_membership(db, club_setup, 1)
        other = await make_membership(db, club_setup, 2)
        mine_id, other_id = mine.id, other.id
        today = date.today()

        await check_in(db, 1, mine_id, club_id, now=_at(today - timedelta(days=1)))
        await check_in(db, 1, mine_id, club_id, now=_at(today))
        await check_in(db, 2, other_id, club_id, now=_at(today))

        assert await get_membership_attendance_count(db, mine_id) == 2
        assert await get_membership_attendance_count(db, other_id) == 1

    @pytest.mark.asyncio
    async def test_count_for_unknown_membership(self, db, club_setup):
        with pytest.raises(NotFoundError):
            await get_membership_attendance_count(db, 4242)
