from gymbook.core.database import Base
from .clubs import Club
from .activities import Activity
from .trainers import Trainer
from .plans import MembershipPlan, PlanType
from .schedules import Schedule, Weekday
from .sessions import ClassSession, SessionStatus
from .memberships import Membership, MembershipStatus

__all__ = [
    "Base",
    "Club",
    "Activity",
    "Trainer",
    "MembershipPlan",
    "PlanType",
    "Schedule",
    "Weekday",
    "ClassSession",
    "SessionStatus",
    "Membership",
    "MembershipStatus",
]
