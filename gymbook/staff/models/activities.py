from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Boolean,
    ForeignKey,
    DateTime,
    CheckConstraint,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from gymbook.core.database import Base


class Activity(Base):
    """Вид занятия клуба (йога, кроссфит, ...) с вместимостью по умолчанию"""

    __tablename__ = "activities"

    id = Column(Integer, primary_key=True)
    club_id = Column(
        Integer,
        ForeignKey("clubs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    duration_minutes = Column(Integer, default=60, nullable=False)
    default_capacity = Column(Integer, default=20, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relations
    club = relationship("Club", back_populates="activities")

    __table_args__ = (
        CheckConstraint("default_capacity > 0", name="ck_activities_default_capacity"),
    )

    def __repr__(self):
        return f"<Activity(id={self.id}, name='{self.name}', club_id={self.club_id})>"
