from sqlalchemy import (
    Column,
    Integer,
    Date,
    Time,
    Text,
    String,
    ForeignKey,
    DateTime,
    Index,
    UniqueConstraint,
    CheckConstraint,
    Enum as SQLEnum,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from datetime import datetime
from enum import Enum
from gymbook.core.database import Base


class SessionStatus(str, Enum):
    scheduled = "scheduled"
    cancelled = "cancelled"
    completed = "completed"


class ClassSession(Base):
    """Конкретное занятие на дату с ограниченным количеством мест"""

    __tablename__ = "class_sessions"

    id = Column(Integer, primary_key=True)

    # NULL для занятий, созданных вручную
    schedule_id = Column(
        Integer, ForeignKey("schedules.id", ondelete="SET NULL"), nullable=True
    )
    club_id = Column(
        Integer,
        ForeignKey("clubs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    activity_id = Column(
        Integer, ForeignKey("activities.id", ondelete="SET NULL"), nullable=True
    )
    trainer_id = Column(
        Integer, ForeignKey("trainers.id", ondelete="SET NULL"), nullable=True
    )

    session_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)

    capacity = Column(Integer, nullable=False)
    booked_count = Column(Integer, default=0, nullable=False)

    status = Column(
        SQLEnum(SessionStatus),
        default=SessionStatus.scheduled,
        nullable=False,
        index=True,
    )

    notes = Column(Text, nullable=True)
    cancellation_reason = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relations
    schedule = relationship("Schedule")
    activity = relationship("Activity")
    trainer = relationship("Trainer")

    __table_args__ = (
        # Повторная генерация не создает дубликатов
        UniqueConstraint(
            "schedule_id", "session_date", name="uq_class_sessions_schedule_date"
        ),
        CheckConstraint("capacity > 0", name="ck_class_sessions_capacity"),
        CheckConstraint(
            "booked_count >= 0 AND booked_count <= capacity",
            name="ck_class_sessions_booked_count",
        ),
        Index("ix_class_sessions_club_date", "club_id", "session_date"),
        Index("ix_class_sessions_status_date", "status", "session_date"),
    )

    @property
    def available_spots(self) -> int:
        return max(self.capacity - self.booked_count, 0)

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.session_date, self.start_time)

    @property
    def ends_at(self) -> datetime:
        return datetime.combine(self.session_date, self.end_time)

    def has_started(self, now: datetime = None) -> bool:
        return (now or datetime.now()) >= self.starts_at

    def __repr__(self):
        return f"<ClassSession(id={self.id}, date={self.session_date}, time={self.start_time}, booked={self.booked_count}/{self.capacity}, status={self.status})>"
