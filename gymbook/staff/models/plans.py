from sqlalchemy import (
    Column,
    Integer,
    String,
    Boolean,
    ForeignKey,
    DateTime,
    Enum as SQLEnum,
)
from sqlalchemy.sql import func
from enum import Enum
from gymbook.core.database import Base


class PlanType(str, Enum):
    """Тип абонемента"""
    time_based = "time_based"        # Ограничен сроком действия
    session_based = "session_based"  # Ограничен количеством посещений


class MembershipPlan(Base):
    __tablename__ = "membership_plans"

    id = Column(Integer, primary_key=True)
    club_id = Column(
        Integer,
        ForeignKey("clubs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    name = Column(String(100), nullable=False)
    plan_type = Column(SQLEnum(PlanType), default=PlanType.time_based, nullable=False)

    # Срок действия (для session_based может ограничивать и срок)
    duration_days = Column(Integer, nullable=True)
    # Количество посещений для session_based
    session_count = Column(Integer, nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    @property
    def is_session_based(self) -> bool:
        return self.plan_type == PlanType.session_based

    def __repr__(self):
        return f"<MembershipPlan(id={self.id}, name='{self.name}', type={self.plan_type})>"
