import logging
from datetime import datetime, timedelta
from typing import List, Optional
from sqlalchemy import and_, or_, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from gymbook.core.config import PENDING_PAYMENT_TTL_HOURS
from gymbook.core.exceptions import BusinessOutcome, ConcurrencyConflictError
from gymbook.core.logging_utils import log_business_event
from gymbook.staff.models.sessions import ClassSession, SessionStatus
from gymbook.staff.schemas.reservations import ExpirePendingResponse
from gymbook.staff.schemas.sessions import CompletePastSessionsResponse
from gymbook.students.models.reservations import (
    ACTIVE_STATUSES,
    Reservation,
    ReservationStatus,
)
from gymbook.students.services.capacity_ledger import CapacityLedger
from gymbook.students.services.reservation_states import (
    apply_transition,
    outcome_after_session,
    releases_seat,
)

logger = logging.getLogger(__name__)

UNPAID_AT_SESSION_END = "unpaid at session end"
PAYMENT_TIMEOUT = "payment timeout"


class SessionLifecycle:
    """Пакетные переходы по времени: завершение занятий и просроченные оплаты"""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.ledger = CapacityLedger(session)

    async def complete_past_sessions(
        self, now: Optional[datetime] = None
    ) -> CompletePastSessionsResponse:
        """
        SCHEDULED занятия, которые уже закончились, переводятся в COMPLETED.

        Активные брони закрываются: PAID с check-in -> COMPLETED,
        PAID без check-in -> NO_SHOW (место освобождается),
        неоплаченные -> CANCELLED (место освобождается).
        """
        now = now or datetime.now()
        counts = {
            ReservationStatus.completed: 0,
            ReservationStatus.no_show: 0,
            ReservationStatus.cancelled: 0,
        }

        sessions = await self._get_ended_sessions(now)
        completed_sessions = 0

        for class_session in sessions:
            for reservation in await self._get_active_reservations(class_session.id):
                target = await self._close_reservation(reservation, now)
                if target is not None:
                    counts[target] += 1

            result = await self.session.execute(
                update(ClassSession)
                .where(
                    ClassSession.id == class_session.id,
                    ClassSession.status == SessionStatus.scheduled,
                )
                .values(status=SessionStatus.completed)
                .execution_options(synchronize_session=False)
            )
            completed_sessions += result.rowcount

        await self.session.commit()

        if completed_sessions:
            log_business_event(
                "sessions_completed",
                "session",
                0,
                {
                    "sessions": completed_sessions,
                    "completed": counts[ReservationStatus.completed],
                    "no_show": counts[ReservationStatus.no_show],
                    "cancelled": counts[ReservationStatus.cancelled],
                },
            )

        return CompletePastSessionsResponse(
            sessions_completed=completed_sessions,
            reservations_completed=counts[ReservationStatus.completed],
            reservations_no_show=counts[ReservationStatus.no_show],
            reservations_cancelled=counts[ReservationStatus.cancelled],
            as_of=now,
        )

    async def expire_pending_reservations(
        self, now: Optional[datetime] = None
    ) -> ExpirePendingResponse:
        """Отменяет брони, не оплаченные за PENDING_PAYMENT_TTL_HOURS"""
        now = now or datetime.now()
        cutoff = now - timedelta(hours=PENDING_PAYMENT_TTL_HOURS)

        cancelled_count = 0
        for reservation in await self._get_expired_pending(cutoff):
            try:
                await self.ledger.cancel(reservation, reason=PAYMENT_TIMEOUT, now=now)
                cancelled_count += 1
            except (BusinessOutcome, ConcurrencyConflictError) as e:
                # Оплачена или отменена параллельно
                logger.info(
                    f"Reservation {reservation.id} left pending state concurrently: {e.error_code}"
                )

        await self.session.commit()

        if cancelled_count:
            log_business_event(
                "pending_reservations_expired",
                "reservation",
                0,
                {"cancelled": cancelled_count, "cutoff": cutoff.isoformat()},
            )

        return ExpirePendingResponse(cancelled_count=cancelled_count, as_of=now)

    async def _close_reservation(
        self, reservation: Reservation, now: datetime
    ) -> Optional[ReservationStatus]:
        """
        Закрывает бронь после занятия. Если бронь параллельно оплатили,
        исход пересчитывается по свежему статусу (один повтор).
        """
        for attempt in (1, 2):
            target = outcome_after_session(reservation)
            current = ReservationStatus(reservation.status)
            try:
                if target == ReservationStatus.cancelled:
                    await self.ledger.cancel(
                        reservation, reason=UNPAID_AT_SESSION_END, now=now
                    )
                else:
                    await apply_transition(self.session, reservation, target)
                    if releases_seat(current, target):
                        await self.ledger.release(reservation.session_id)
                return target
            except ConcurrencyConflictError:
                # apply_transition уже перечитал бронь
                if attempt == 2:
                    break
            except BusinessOutcome as e:
                logger.info(
                    f"Reservation {reservation.id} changed concurrently: {e.error_code}"
                )
                return None

        logger.warning(f"Reservation {reservation.id} kept changing, left for next run")
        return None

    async def _get_expired_pending(self, cutoff: datetime) -> List[Reservation]:
        result = await self.session.execute(
            select(Reservation)
            .where(
                Reservation.status == ReservationStatus.pending_payment,
                Reservation.booked_at < cutoff,
            )
            .order_by(Reservation.booked_at, Reservation.id)
            .execution_options(populate_existing=True)
        )
        return result.scalars().all()

    async def _get_ended_sessions(self, now: datetime) -> List[ClassSession]:
        result = await self.session.execute(
            select(ClassSession)
            .where(
                and_(
                    ClassSession.status == SessionStatus.scheduled,
                    or_(
                        ClassSession.session_date < now.date(),
                        and_(
                            ClassSession.session_date == now.date(),
                            ClassSession.end_time <= now.time(),
                        ),
                    ),
                )
            )
            .order_by(ClassSession.session_date, ClassSession.start_time)
            .execution_options(populate_existing=True)
        )
        return result.scalars().all()

    async def _get_active_reservations(self, session_id: int) -> List[Reservation]:
        result = await self.session.execute(
            select(Reservation)
            .where(
                Reservation.session_id == session_id,
                Reservation.status.in_(ACTIVE_STATUSES),
            )
            .order_by(Reservation.id)
            .execution_options(populate_existing=True)
        )
        return result.scalars().all()
