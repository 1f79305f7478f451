"""Reservation Model - A member's claim on one seat of a class session"""
from sqlalchemy import (
    Column,
    Integer,
    DateTime,
    ForeignKey,
    String,
    Index,
    Enum as SQLEnum,
    text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from enum import Enum
from gymbook.core.database import Base


class ReservationStatus(str, Enum):
    pending_payment = "pending_payment"
    paid = "paid"
    cancelled = "cancelled"
    no_show = "no_show"
    completed = "completed"


# Statuses that hold a seat in the session
ACTIVE_STATUSES = (ReservationStatus.pending_payment, ReservationStatus.paid)

_ACTIVE_PREDICATE = text("status IN ('pending_payment', 'paid')")


class Reservation(Base):
    """Bookings are never deleted; history lives in the status column"""
    __tablename__ = "reservations"

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(Integer, nullable=False, index=True)
    session_id = Column(Integer, ForeignKey("class_sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    club_id = Column(Integer, ForeignKey("clubs.id", ondelete="CASCADE"), nullable=False, index=True)

    status = Column(
        SQLEnum(ReservationStatus),
        default=ReservationStatus.pending_payment,
        nullable=False,
        index=True,
    )

    # Timestamps
    booked_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    checked_in_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    cancellation_reason = Column(String(255), nullable=True)
    cancelled_by = Column(Integer, nullable=True)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    session = relationship("ClassSession", backref="reservations", passive_deletes=True)

    __table_args__ = (
        # One active reservation per user and session
        Index(
            "uq_reservations_user_session_active",
            "user_id",
            "session_id",
            unique=True,
            postgresql_where=_ACTIVE_PREDICATE,
            sqlite_where=_ACTIVE_PREDICATE,
        ),
        Index("ix_reservations_session_status", "session_id", "status"),
        Index("ix_reservations_user_status", "user_id", "status"),
    )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def __repr__(self):
        return f"<Reservation(id={self.id}, user_id={self.user_id}, session_id={self.session_id}, status={self.status})>"
