"""Учет мест на занятиях"""
import logging
from datetime import datetime
from typing import Optional
from sqlalchemy import and_, or_, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from gymbook.core.config import BOOKING_LOCK_TIMEOUT_MS
from gymbook.core.database import raise_for_contention, set_lock_timeout
from gymbook.core.exceptions import (
    CapacityExceededError,
    ConcurrencyConflictError,
    DuplicateBookingError,
    InvariantViolationError,
    NotFoundError,
    SessionUnavailableError,
)
from gymbook.core.logging_utils import log_invariant_violation
from gymbook.staff.models.sessions import ClassSession, SessionStatus
from gymbook.students.models.reservations import (
    ACTIVE_STATUSES,
    Reservation,
    ReservationStatus,
)
from gymbook.students.services.reservation_states import apply_transition

logger = logging.getLogger(__name__)


def _is_active_reservation_conflict(exc: IntegrityError) -> bool:
    message = str(exc.orig)
    return (
        "uq_reservations_user_session_active" in message
        or "UNIQUE constraint failed: reservations." in message
    )


class CapacityLedger:
    """
    Держит ClassSession.booked_count в соответствии с активными бронями.

    Каждое изменение счетчика это один условный UPDATE строки занятия:
    параллельные брони упорядочивает блокировка строки, а счетчик никогда
    не читается и не пишется обратно из Python. Методы только делают flush,
    транзакцией владеет вызывающий и откатывает ее при ошибке.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def try_reserve(
        self, user_id: int, session_id: int, now: Optional[datetime] = None
    ) -> Reservation:
        """
        Занимает одно место и создает бронь PENDING_PAYMENT.

        Raises:
            NotFoundError, SessionUnavailableError, CapacityExceededError,
            DuplicateBookingError, ConcurrencyConflictError
        """
        now = now or datetime.now()

        try:
            await set_lock_timeout(self.session, BOOKING_LOCK_TIMEOUT_MS)

            if await self._has_active_reservation(user_id, session_id):
                raise DuplicateBookingError(user_id, session_id)

            result = await self.session.execute(
                update(ClassSession)
                .where(
                    ClassSession.id == session_id,
                    ClassSession.status == SessionStatus.scheduled,
                    ClassSession.booked_count < ClassSession.capacity,
                    or_(
                        ClassSession.session_date > now.date(),
                        and_(
                            ClassSession.session_date == now.date(),
                            ClassSession.start_time > now.time(),
                        ),
                    ),
                )
                .values(booked_count=ClassSession.booked_count + 1)
                .execution_options(synchronize_session=False)
            )

            if result.rowcount != 1:
                await self._raise_rejection(session_id, now)

            class_session = await self._load_session(session_id)
            if class_session.booked_count > class_session.capacity:
                details = {
                    "session_id": session_id,
                    "booked_count": class_session.booked_count,
                    "capacity": class_session.capacity,
                }
                log_invariant_violation("booked_count <= capacity", details)
                raise InvariantViolationError("booked_count <= capacity", details)

            reservation = Reservation(
                user_id=user_id,
                session_id=session_id,
                club_id=class_session.club_id,
                status=ReservationStatus.pending_payment,
                booked_at=now,
            )
            self.session.add(reservation)
            await self.session.flush()

        except IntegrityError as e:
            # Частичный уникальный индекс по активным (user_id, session_id)
            if _is_active_reservation_conflict(e):
                raise DuplicateBookingError(user_id, session_id) from e
            raise
        except DBAPIError as e:
            raise_for_contention("class_session", e)
            raise

        logger.debug(
            f"Seat reserved: session={session_id} user={user_id} "
            f"booked={class_session.booked_count}/{class_session.capacity}"
        )
        return reservation

    async def release(self, session_id: int) -> bool:
        """
        Возвращает одно место, ниже нуля счетчик не опускается.

        Вызывается только после условной смены статуса брони, поэтому
        повторное освобождение той же брони ничего не делает.
        """
        try:
            result = await self.session.execute(
                update(ClassSession)
                .where(ClassSession.id == session_id, ClassSession.booked_count > 0)
                .values(booked_count=ClassSession.booked_count - 1)
                .execution_options(synchronize_session=False)
            )
        except DBAPIError as e:
            raise_for_contention("class_session", e)
            raise

        if result.rowcount != 1:
            details = {"session_id": session_id}
            log_invariant_violation("release with booked_count == 0", details)
            return False
        return True

    async def finalize(
        self, reservation: Reservation, now: Optional[datetime] = None
    ) -> Reservation:
        """PENDING_PAYMENT -> PAID. Место уже учтено."""
        return await apply_transition(
            self.session,
            reservation,
            ReservationStatus.paid,
            paid_at=now or datetime.now(),
        )

    async def cancel(
        self,
        reservation: Reservation,
        reason: Optional[str] = None,
        cancelled_by: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Reservation:
        """Отменяет активную бронь и освобождает место ровно один раз"""
        await apply_transition(
            self.session,
            reservation,
            ReservationStatus.cancelled,
            cancelled_at=now or datetime.now(),
            cancellation_reason=reason,
            cancelled_by=cancelled_by,
        )
        await self.release(reservation.session_id)
        return reservation

    async def _has_active_reservation(self, user_id: int, session_id: int) -> bool:
        result = await self.session.execute(
            select(Reservation.id).where(
                Reservation.user_id == user_id,
                Reservation.session_id == session_id,
                Reservation.status.in_(ACTIVE_STATUSES),
            )
        )
        return result.first() is not None

    async def _load_session(self, session_id: int) -> Optional[ClassSession]:
        result = await self.session.execute(
            select(ClassSession)
            .where(ClassSession.id == session_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _raise_rejection(self, session_id: int, now: datetime) -> None:
        """Условный инкремент не затронул строку: выясняем причину"""
        class_session = await self._load_session(session_id)

        if class_session is None:
            raise NotFoundError("Session", str(session_id))

        status = SessionStatus(class_session.status)
        if status != SessionStatus.scheduled:
            raise SessionUnavailableError(session_id, f"session is {status.value}")

        if class_session.has_started(now):
            raise SessionUnavailableError(session_id, "session has already started")

        if class_session.booked_count >= class_session.capacity:
            raise CapacityExceededError(session_id, class_session.capacity)

        # Место освободилось между UPDATE и этим чтением
        raise ConcurrencyConflictError("class_session")
