from datetime import date, timedelta

import pytest

from gymbook.core.exceptions import MembershipTransitionError, NotFoundError, ValidationError
from gymbook.staff.crud.memberships import (
    approve_membership,
    cancel_membership,
    expire_memberships,
    reject_membership,
    request_membership,
    resume_membership,
    suspend_membership,
)
from gymbook.staff.models import Club, Membership, MembershipStatus
from gymbook.staff.schemas.memberships import MembershipRequest
from gymbook.staff.services.membership_validator import (
    NO_ACTIVE_MEMBERSHIP,
    MembershipValidator,
    evaluate_membership,
)
from tests.conftest import make_membership, reload

TODAY = date(2024, 6, 15)


class TestEvaluateMembership:
    """Проверка одного абонемента на дату"""

    def _membership(self, **values):
        defaults = {
            "id": 1,
            "status": MembershipStatus.active,
            "start_date": date(2024, 6, 1),
            "end_date": date(2024, 6, 30),
            "remaining_sessions": None,
        }
        defaults.update(values)
        return Membership(**defaults)

    def test_valid(self):
        assert evaluate_membership(self._membership(), TODAY) == (True, "Membership is valid")

    def test_expired(self):
        valid, message = evaluate_membership(self._membership(end_date=date(2024, 6, 10)), TODAY)
        assert not valid
        assert message == "Membership expired on 2024-06-10"

    def test_last_day_is_still_valid(self):
        valid, _ = evaluate_membership(self._membership(end_date=TODAY), TODAY)
        assert valid

    def test_not_started(self):
        valid, message = evaluate_membership(self._membership(start_date=date(2024, 7, 1)), TODAY)
        assert not valid
        assert message == "Membership starts on 2024-07-01"

    def test_no_sessions_left(self):
        valid, message = evaluate_membership(self._membership(remaining_sessions=0), TODAY)
        assert not valid
        assert message == "No sessions left on membership"

    def test_suspended(self):
        valid, message = evaluate_membership(
            self._membership(status=MembershipStatus.suspended), TODAY
        )
        assert not valid
        assert message == "Membership is suspended"


class TestMembershipValidator:
    @pytest.mark.asyncio
    async def test_no_membership(self, db, club_setup):
        result = await MembershipValidator(db).validate(1, club_setup["club"].id, TODAY)

        assert not result.valid
        assert result.message == NO_ACTIVE_MEMBERSHIP
        assert result.membership_id is None

    @pytest.mark.asyncio
    async def test_suspended_only_counts_as_none(self, db, club_setup):
        await make_membership(
            db, club_setup, 1,
            status=MembershipStatus.suspended,
            start_date=date(2024, 6, 1),
            end_date=date(2024, 6, 30),
        )

        result = await MembershipValidator(db).validate(1, club_setup["club"].id, TODAY)

        assert not result.valid
        assert result.message == NO_ACTIVE_MEMBERSHIP

    @pytest.mark.asyncio
    async def test_expired_membership_explains_why(self, db, club_setup):
        membership = await make_membership(
            db, club_setup, 1, start_date=date(2024, 5, 1), end_date=date(2024, 5, 31)
        )

        result = await MembershipValidator(db).validate(1, club_setup["club"].id, TODAY)

        assert not result.valid
        assert result.membership_id == membership.id
        assert "expired" in result.message

    @pytest.mark.asyncio
    async def test_zero_sessions(self, db, club_setup):
        await make_membership(
            db, club_setup, 1,
            plan_id=club_setup["session_plan"].id,
            start_date=date(2024, 6, 1),
            end_date=date(2024, 8, 30),
            remaining_sessions=0,
        )

        result = await MembershipValidator(db).validate(1, club_setup["club"].id, TODAY)

        assert not result.valid
        assert result.message == "No sessions left on membership"

    @pytest.mark.asyncio
    async def test_valid_membership_wins_over_invalid(self, db, club_setup):
        await make_membership(
            db, club_setup, 1, start_date=date(2024, 5, 1), end_date=date(2024, 5, 31)
        )
        current = await make_membership(
            db, club_setup, 1, start_date=date(2024, 6, 1), end_date=date(2024, 6, 20)
        )

        result = await MembershipValidator(db).validate(1, club_setup["club"].id, TODAY)

        assert result.valid
        assert result.membership_id == current.id

    @pytest.mark.asyncio
    async def test_most_generous_of_several_valid(self, db, club_setup):
        await make_membership(
            db, club_setup, 1, start_date=date(2024, 6, 1), end_date=date(2024, 6, 20)
        )
        longest = await make_membership(
            db, club_setup, 1, start_date=date(2024, 6, 1), end_date=date(2024, 9, 1)
        )

        result = await MembershipValidator(db).validate(1, club_setup["club"].id, TODAY)

        assert result.valid
        assert result.membership_id == longest.id
        assert result.end_date == date(2024, 9, 1)

    @pytest.mark.asyncio
    async def test_other_club_is_ignored(self, db, club_setup):
        await make_membership(
            db, club_setup, 1, start_date=date(2024, 6, 1), end_date=date(2024, 6, 30)
        )

        result = await MembershipValidator(db).validate(1, 999, TODAY)

        assert not result.valid
        assert result.message == NO_ACTIVE_MEMBERSHIP


class TestMembershipLifecycle:
    """Заявка, оплата, заморозка и отмена абонемента"""

    async def _request(self, db, setup, plan_key="monthly_plan", user_id=1):
        return await request_membership(
            db,
            user_id,
            MembershipRequest(plan_id=setup[plan_key].id, club_id=setup["club"].id),
        )

    @pytest.mark.asyncio
    async def test_approve_time_based_plan(self, db, club_setup):
        membership = await self._request(db, club_setup)
        assert membership.status == MembershipStatus.pending

        approved = await approve_membership(
            db, membership.id, payment_reference="PAY-1", approved_by=900, today=TODAY
        )

        assert approved.status == MembershipStatus.active
        assert approved.start_date == TODAY
        assert approved.end_date == TODAY + timedelta(days=30)
        assert approved.remaining_sessions is None
        assert approved.payment_reference == "PAY-1"

    @pytest.mark.asyncio
    async def test_approve_session_based_plan(self, db, club_setup):
        membership = await self._request(db, club_setup, "session_plan")

        approved = await approve_membership(db, membership.id, today=TODAY)

        assert approved.remaining_sessions == 10
        assert approved.end_date == TODAY + timedelta(days=90)

    @pytest.mark.asyncio
    async def test_approve_twice_is_rejected(self, db, club_setup):
        membership = await self._request(db, club_setup)
        await approve_membership(db, membership.id, today=TODAY)

        with pytest.raises(MembershipTransitionError):
            await approve_membership(db, membership.id, today=TODAY)

    @pytest.mark.asyncio
    async def test_reject_keeps_reason(self, db, club_setup):
        membership = await self._request(db, club_setup)

        rejected = await reject_membership(db, membership.id, "payment failed", rejected_by=900)

        assert rejected.status == MembershipStatus.cancelled
        assert rejected.notes == "payment failed"

    @pytest.mark.asyncio
    async def test_suspend_and_resume_keep_counters(self, db, club_setup):
        membership = await self._request(db, club_setup, "session_plan")
        await approve_membership(db, membership.id, today=TODAY)

        suspended = await suspend_membership(db, membership.id, actor_id=900)
        assert suspended.status == MembershipStatus.suspended

        resumed = await resume_membership(db, membership.id, actor_id=900)
        assert resumed.status == MembershipStatus.active
        assert resumed.remaining_sessions == 10
        assert resumed.end_date == TODAY + timedelta(days=90)

    @pytest.mark.asyncio
    async def test_resume_requires_suspended(self, db, club_setup):
        membership = await self._request(db, club_setup)
        await approve_membership(db, membership.id, today=TODAY)

        with pytest.raises(MembershipTransitionError):
            await resume_membership(db, membership.id)

    @pytest.mark.asyncio
    async def test_cancelled_is_terminal(self, db, club_setup):
        membership = await self._request(db, club_setup)
        await cancel_membership(db, membership.id)

        with pytest.raises(MembershipTransitionError):
            await suspend_membership(db, membership.id)

    @pytest.mark.asyncio
    async def test_plan_from_another_club(self, db, club_setup):
        other_club = Club(name="Uptown Gym")
        db.add(other_club)
        await db.commit()

        with pytest.raises(ValidationError):
            await request_membership(
                db,
                1,
                MembershipRequest(plan_id=club_setup["monthly_plan"].id, club_id=other_club.id),
            )

    @pytest.mark.asyncio
    async def test_unknown_plan(self, db, club_setup):
        with pytest.raises(NotFoundError):
            await request_membership(
                db, 1, MembershipRequest(plan_id=999, club_id=club_setup["club"].id)
            )

    @pytest.mark.asyncio
    async def test_expire_memberships(self, db, club_setup):
        outdated = await make_membership(
            db, club_setup, 1, start_date=date(2024, 5, 1), end_date=date(2024, 5, 31)
        )
        used_up = await make_membership(
            db, club_setup, 2,
            plan_id=club_setup["session_plan"].id,
            start_date=date(2024, 6, 1),
            end_date=date(2024, 8, 30),
            remaining_sessions=0,
        )
        current = await make_membership(
            db, club_setup, 3, start_date=date(2024, 6, 1), end_date=date(2024, 6, 30)
        )

        result = await expire_memberships(db, today=TODAY)

        assert result.expired_count == 2
        assert (await reload(db, Membership, outdated.id)).status == MembershipStatus.expired
        assert (await reload(db, Membership, used_up.id)).status == MembershipStatus.expired
        assert (await reload(db, Membership, current.id)).status == MembershipStatus.active
