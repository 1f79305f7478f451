from datetime import date
from typing import List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from gymbook.staff.models.memberships import Membership, MembershipStatus
from gymbook.staff.schemas.memberships import ValidateMembershipResponse

NO_ACTIVE_MEMBERSHIP = "No active membership found"
MEMBERSHIP_VALID = "Membership is valid"


def evaluate_membership(membership: Membership, today: date) -> Tuple[bool, str]:
    """
    Проверяет один абонемент на дату.

    Returns:
        (valid, message) - message объясняет причину отказа
    """
    status = MembershipStatus(membership.status)
    if status != MembershipStatus.active:
        return False, f"Membership is {status.value}"

    if membership.start_date > today:
        return False, f"Membership starts on {membership.start_date.isoformat()}"

    if membership.end_date is not None and today > membership.end_date:
        return False, f"Membership expired on {membership.end_date.isoformat()}"

    if membership.remaining_sessions is not None and membership.remaining_sessions <= 0:
        return False, "No sessions left on membership"

    return True, MEMBERSHIP_VALID


def _generosity_key(membership: Membership):
    # Бессрочный абонемент самый "щедрый", затем больше посещений
    return (
        membership.end_date is None,
        membership.end_date or date.min,
        membership.remaining_sessions if membership.remaining_sessions is not None else -1,
        membership.id,
    )


class MembershipValidator:
    """Проверка, может ли пользователь посещать клуб"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def validate(
        self, user_id: int, club_id: int, today: Optional[date] = None
    ) -> ValidateMembershipResponse:
        today = today or date.today()
        memberships = await self._get_active_memberships(user_id, club_id)

        if not memberships:
            return ValidateMembershipResponse(valid=False, message=NO_ACTIVE_MEMBERSHIP)

        evaluated = [(m, *evaluate_membership(m, today)) for m in memberships]
        valid = [item for item in evaluated if item[1]]

        # Любого валидного достаточно; показываем самый щедрый
        candidates = valid or evaluated
        chosen, is_valid, message = max(candidates, key=lambda item: _generosity_key(item[0]))

        return ValidateMembershipResponse(
            valid=is_valid,
            message=message,
            membership_id=chosen.id,
            plan_id=chosen.plan_id,
            end_date=chosen.end_date,
            remaining_sessions=chosen.remaining_sessions,
        )

    async def _get_active_memberships(self, user_id: int, club_id: int) -> List[Membership]:
        result = await self.session.execute(
            select(Membership).where(
                Membership.user_id == user_id,
                Membership.club_id == club_id,
                Membership.status == MembershipStatus.active,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalars().all()
