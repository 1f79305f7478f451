"""Attendance Model - Append-only log of member check-ins"""
from sqlalchemy import (
    Column,
    Integer,
    DateTime,
    ForeignKey,
    Text,
    Date,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from gymbook.core.database import Base


class Attendance(Base):
    """Records of member check-ins"""
    __tablename__ = "attendance"

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(Integer, nullable=False, index=True)

    # Membership the visit is charged to
    membership_id = Column(Integer, ForeignKey("memberships.id", ondelete="RESTRICT"), nullable=False, index=True)

    club_id = Column(Integer, ForeignKey("clubs.id", ondelete="CASCADE"), nullable=False, index=True)

    # Optional - walk-in check-ins have no session
    session_id = Column(Integer, ForeignKey("class_sessions.id", ondelete="SET NULL"), nullable=True, index=True)

    check_in_date = Column(Date, nullable=False)
    check_in_time = Column(DateTime(timezone=True), nullable=False)

    recorded_by_user_id = Column(Integer, nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    membership = relationship("Membership")

    __table_args__ = (
        UniqueConstraint("user_id", "session_id", name="uq_attendance_user_session"),
        Index("ix_attendance_user_date", "user_id", "check_in_date"),
        Index("ix_attendance_club_date", "club_id", "check_in_date"),
    )

    def __repr__(self):
        return f"<Attendance(id={self.id}, user_id={self.user_id}, date={self.check_in_date}, session_id={self.session_id})>"
