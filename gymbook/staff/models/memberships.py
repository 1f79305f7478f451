from sqlalchemy import (
    Column,
    Integer,
    Date,
    Text,
    String,
    ForeignKey,
    DateTime,
    Index,
    Enum as SQLEnum,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from enum import Enum
from gymbook.core.database import Base


class MembershipStatus(str, Enum):
    pending = "pending"        # Заявка, ждет оплаты
    active = "active"
    expired = "expired"        # Истек срок или закончились посещения
    suspended = "suspended"    # Заморожен персоналом
    cancelled = "cancelled"


class Membership(Base):
    __tablename__ = "memberships"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, nullable=False, index=True)
    plan_id = Column(
        Integer, ForeignKey("membership_plans.id", ondelete="RESTRICT"), nullable=False
    )
    club_id = Column(
        Integer,
        ForeignKey("clubs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)

    status = Column(
        SQLEnum(MembershipStatus),
        default=MembershipStatus.pending,
        nullable=False,
        index=True,
    )

    # Только для абонементов на количество посещений
    remaining_sessions = Column(Integer, nullable=True)

    payment_reference = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)

    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relations
    plan = relationship("MembershipPlan")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_memberships_user_club_status", "user_id", "club_id", "status"),
    )

    def __repr__(self):
        return f"<Membership(id={self.id}, user_id={self.user_id}, club_id={self.club_id}, status={self.status})>"
