from sqlalchemy import (
    Column,
    Integer,
    Date,
    Time,
    Text,
    Boolean,
    ForeignKey,
    DateTime,
    Index,
    JSON,
    CheckConstraint,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from enum import Enum
from gymbook.core.database import Base


class Weekday(str, Enum):
    """Дни недели в порядке date.weekday()"""
    monday = "monday"
    tuesday = "tuesday"
    wednesday = "wednesday"
    thursday = "thursday"
    friday = "friday"
    saturday = "saturday"
    sunday = "sunday"

    @classmethod
    def of(cls, day) -> "Weekday":
        return list(cls)[day.weekday()]


class Schedule(Base):
    """Еженедельное правило, из которого генерируются занятия"""

    __tablename__ = "schedules"

    id = Column(Integer, primary_key=True)
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

    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)

    # ["monday", "wednesday"]
    days_of_week = Column(JSON, nullable=False)

    valid_from = Column(Date, nullable=False)
    valid_until = Column(Date, nullable=True)

    # Если не задано, берется activity.default_capacity
    capacity = Column(Integer, nullable=True)

    notes = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relations
    club = relationship("Club", back_populates="schedules")
    activity = relationship("Activity")
    trainer = relationship("Trainer")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="ck_schedules_time_window"),
        CheckConstraint(
            "valid_until IS NULL OR valid_until >= valid_from",
            name="ck_schedules_validity_window",
        ),
        CheckConstraint(
            "capacity IS NULL OR capacity > 0", name="ck_schedules_capacity"
        ),
        Index("ix_schedules_club_active", "club_id", "is_active"),
    )

    @property
    def weekdays(self) -> set:
        return {Weekday(day) for day in (self.days_of_week or [])}

    def occurs_on(self, day) -> bool:
        """Проверяет, попадает ли дата в дни недели и окно действия"""
        if day < self.valid_from:
            return False
        if self.valid_until is not None and day > self.valid_until:
            return False
        return Weekday.of(day) in self.weekdays

    def __repr__(self):
        return f"<Schedule(id={self.id}, club_id={self.club_id}, days={self.days_of_week}, time={self.start_time}-{self.end_time})>"
