from typing import Optional, List, Tuple
from datetime import date, timedelta
from sqlalchemy import and_, or_, func, update
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError

from gymbook.core.database import db_operation, with_db_transaction
from gymbook.core.exceptions import (
    ConcurrencyConflictError,
    MembershipTransitionError,
    NotFoundError,
    ValidationError,
)
from gymbook.core.logging_utils import log_business_event
from gymbook.staff.crud.schedules import ensure_club
from gymbook.staff.models.memberships import Membership, MembershipStatus
from gymbook.staff.models.plans import MembershipPlan
from gymbook.staff.schemas.memberships import (
    ExpireMembershipsResponse,
    MembershipRequest,
    ValidateMembershipResponse,
)
from gymbook.staff.services.membership_validator import MembershipValidator

M = MembershipStatus

# Allowed membership status transitions
MEMBERSHIP_TRANSITIONS = {
    M.pending: {M.active, M.cancelled},
    M.active: {M.suspended, M.expired, M.cancelled},
    M.suspended: {M.active, M.cancelled},
    M.expired: set(),
    M.cancelled: set(),
}


def _ensure_membership_transition(membership: Membership, target: MembershipStatus):
    current = MembershipStatus(membership.status)
    if target not in MEMBERSHIP_TRANSITIONS[current]:
        raise MembershipTransitionError(membership.id, current.value, target.value)


@db_operation
async def get_membership_by_id(session: AsyncSession, membership_id: int) -> Membership:
    if membership_id <= 0:
        raise ValidationError("Membership ID must be positive")

    result = await session.execute(
        select(Membership)
        .options(selectinload(Membership.plan))
        .where(Membership.id == membership_id)
        .execution_options(populate_existing=True)
    )
    membership = result.scalar_one_or_none()

    if not membership:
        raise NotFoundError("Membership", str(membership_id))

    return membership


@db_operation
async def get_user_memberships(
    session: AsyncSession, user_id: int, club_id: Optional[int] = None
) -> List[Membership]:
    query = select(Membership).where(Membership.user_id == user_id)
    if club_id:
        query = query.where(Membership.club_id == club_id)

    result = await session.execute(query.order_by(Membership.created_at.desc(), Membership.id.desc()))
    return result.scalars().all()


@db_operation
async def get_club_memberships(
    session: AsyncSession,
    club_id: int,
    status: Optional[MembershipStatus] = None,
    skip: int = 0,
    limit: int = 100,
) -> Tuple[List[Membership], int]:
    if club_id <= 0:
        raise ValidationError("Club ID must be positive")

    if skip < 0:
        raise ValidationError("Skip parameter must be >= 0")

    if limit <= 0 or limit > 200:
        raise ValidationError("Limit must be between 1 and 200")

    conditions = [Membership.club_id == club_id]
    if status:
        conditions.append(Membership.status == status)

    total_result = await session.execute(
        select(func.count(Membership.id)).where(and_(*conditions))
    )
    total = total_result.scalar()

    result = await session.execute(
        select(Membership)
        .where(and_(*conditions))
        .order_by(Membership.created_at.desc(), Membership.id.desc())
        .offset(skip)
        .limit(limit)
    )
    return result.scalars().all(), total


async def request_membership(
    session: AsyncSession, user_id: int, data: MembershipRequest
) -> Membership:
    """Member asks for a plan; stays PENDING until staff approve the payment"""

    async def _request_operation(session: AsyncSession):
        await ensure_club(session, data.club_id)

        plan_result = await session.execute(
            select(MembershipPlan).where(MembershipPlan.id == data.plan_id)
        )
        plan = plan_result.scalar_one_or_none()
        if not plan:
            raise NotFoundError("MembershipPlan", str(data.plan_id))
        if plan.club_id != data.club_id:
            raise ValidationError(f"Plan {plan.id} does not belong to club {data.club_id}")
        if not plan.is_active:
            raise ValidationError(f"Plan {plan.id} is not available")

        membership = Membership(
            user_id=user_id,
            plan_id=plan.id,
            club_id=data.club_id,
            start_date=data.start_date or date.today(),
            status=MembershipStatus.pending,
        )
        session.add(membership)
        await session.flush()
        return membership

    membership = await with_db_transaction(session, _request_operation)

    log_business_event(
        "membership_requested",
        "membership",
        membership.id,
        {"user_id": user_id, "plan_id": data.plan_id, "club_id": data.club_id},
    )
    return membership


async def _change_membership(
    session: AsyncSession,
    membership_id: int,
    target: MembershipStatus,
    event: str,
    actor_id: Optional[int] = None,
    apply=None,
) -> Membership:
    """Status change checked against the transition table and the row version"""

    async def _change_operation(session: AsyncSession):
        membership = await get_membership_by_id(session, membership_id)
        _ensure_membership_transition(membership, target)

        membership.status = target
        if apply is not None:
            apply(membership)

        try:
            await session.flush()
        except StaleDataError as e:
            raise ConcurrencyConflictError("membership") from e
        return membership

    membership = await with_db_transaction(session, _change_operation)

    log_business_event(
        event,
        "membership",
        membership.id,
        {"status": membership.status.value, "actor_id": actor_id},
    )
    return membership


async def approve_membership(
    session: AsyncSession,
    membership_id: int,
    payment_reference: Optional[str] = None,
    approved_by: Optional[int] = None,
    today: Optional[date] = None,
) -> Membership:
    """
    PENDING -> ACTIVE after payment.

    The membership starts on the approval date; end_date and the session
    counter come from the plan.
    """
    today = today or date.today()

    membership = await get_membership_by_id(session, membership_id)
    if MembershipStatus(membership.status) != MembershipStatus.pending:
        raise MembershipTransitionError(
            membership.id, MembershipStatus(membership.status).value, "approved"
        )

    def _activate(membership: Membership):
        plan = membership.plan
        membership.start_date = today
        membership.end_date = (
            today + timedelta(days=plan.duration_days) if plan.duration_days else None
        )
        membership.remaining_sessions = plan.session_count if plan.is_session_based else None
        membership.payment_reference = payment_reference

    return await _change_membership(
        session, membership_id, MembershipStatus.active, "membership_approved", approved_by, _activate
    )


async def reject_membership(
    session: AsyncSession, membership_id: int, reason: str, rejected_by: Optional[int] = None
) -> Membership:
    membership = await get_membership_by_id(session, membership_id)
    if MembershipStatus(membership.status) != MembershipStatus.pending:
        raise MembershipTransitionError(
            membership.id, MembershipStatus(membership.status).value, "rejected"
        )

    def _set_reason(membership: Membership):
        membership.notes = reason

    return await _change_membership(
        session, membership_id, MembershipStatus.cancelled, "membership_rejected", rejected_by, _set_reason
    )


async def suspend_membership(
    session: AsyncSession, membership_id: int, actor_id: Optional[int] = None
) -> Membership:
    return await _change_membership(
        session, membership_id, MembershipStatus.suspended, "membership_suspended", actor_id
    )


async def resume_membership(
    session: AsyncSession, membership_id: int, actor_id: Optional[int] = None
) -> Membership:
    """SUSPENDED -> ACTIVE. Dates, session counter and attendance stay as they were."""
    membership = await get_membership_by_id(session, membership_id)
    if MembershipStatus(membership.status) != MembershipStatus.suspended:
        raise MembershipTransitionError(
            membership.id, MembershipStatus(membership.status).value, "resumed"
        )

    return await _change_membership(
        session, membership_id, MembershipStatus.active, "membership_resumed", actor_id
    )


async def cancel_membership(
    session: AsyncSession, membership_id: int, actor_id: Optional[int] = None
) -> Membership:
    return await _change_membership(
        session, membership_id, MembershipStatus.cancelled, "membership_cancelled", actor_id
    )


async def validate_membership(
    session: AsyncSession, user_id: int, club_id: int, today: Optional[date] = None
) -> ValidateMembershipResponse:
    return await MembershipValidator(session).validate(user_id, club_id, today)


async def expire_memberships(
    session: AsyncSession, today: Optional[date] = None
) -> ExpireMembershipsResponse:
    """ACTIVE memberships past end_date or without sessions left -> EXPIRED"""
    today = today or date.today()

    async def _expire_operation(session: AsyncSession):
        result = await session.execute(
            update(Membership)
            .where(
                Membership.status == MembershipStatus.active,
                or_(
                    Membership.end_date < today,
                    Membership.remaining_sessions <= 0,
                ),
            )
            .values(status=MembershipStatus.expired, version=Membership.version + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    expired_count = await with_db_transaction(session, _expire_operation)

    if expired_count:
        log_business_event(
            "memberships_expired", "membership", 0, {"count": expired_count, "as_of": today.isoformat()}
        )

    return ExpireMembershipsResponse(expired_count=expired_count, as_of=today)
