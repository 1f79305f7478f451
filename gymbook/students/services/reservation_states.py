"""Жизненный цикл брони: статус меняется только здесь"""
from typing import Dict, FrozenSet, Optional
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from gymbook.core.exceptions import (
    AlreadyCancelledError,
    AlreadyCheckedInError,
    ConcurrencyConflictError,
    InvalidTransitionError,
    NotCancellableError,
    SessionUnavailableError,
)
from gymbook.staff.models.sessions import ClassSession, SessionStatus
from gymbook.students.models.reservations import Reservation, ReservationStatus

S = ReservationStatus

TRANSITIONS: Dict[ReservationStatus, FrozenSet[ReservationStatus]] = {
    S.pending_payment: frozenset({S.paid, S.cancelled}),
    S.paid: frozenset({S.cancelled, S.completed, S.no_show}),
    S.cancelled: frozenset(),
    S.completed: frozenset(),
    S.no_show: frozenset(),
}

TERMINAL_STATUSES = frozenset(status for status, targets in TRANSITIONS.items() if not targets)

# Переход из этих статусов в конечный освобождает место
SEAT_HOLDING_STATUSES = frozenset({S.pending_payment, S.paid})


def can_transition(current: ReservationStatus, target: ReservationStatus) -> bool:
    return ReservationStatus(target) in TRANSITIONS[ReservationStatus(current)]


def releases_seat(current: ReservationStatus, target: ReservationStatus) -> bool:
    """COMPLETED оставляет место занятым, CANCELLED и NO_SHOW его освобождают"""
    return (
        ReservationStatus(current) in SEAT_HOLDING_STATUSES
        and ReservationStatus(target) in (S.cancelled, S.no_show)
    )


def ensure_transition(
    reservation: Reservation, target: ReservationStatus, reason: Optional[str] = None
) -> None:
    """Бросает типизированную ошибку для нарушенного условия перехода"""
    current = ReservationStatus(reservation.status)
    target = ReservationStatus(target)

    if target in TRANSITIONS[current]:
        return

    if current == S.cancelled:
        raise AlreadyCancelledError("Reservation", reservation.id)
    if target == S.cancelled:
        raise NotCancellableError(reservation.id, current.value)
    raise InvalidTransitionError(reservation.id, current.value, target.value, reason)


def ensure_can_check_in(reservation: Reservation, class_session: ClassSession) -> None:
    current = ReservationStatus(reservation.status)

    if current == S.cancelled:
        raise AlreadyCancelledError("Reservation", reservation.id)
    if current != S.paid:
        raise InvalidTransitionError(
            reservation.id, current.value, "checked_in", "reservation must be paid"
        )
    if reservation.checked_in_at is not None:
        raise AlreadyCheckedInError(
            reservation.user_id, {"reservation_id": reservation.id}
        )
    if class_session.status != SessionStatus.scheduled:
        raise SessionUnavailableError(
            class_session.id, f"session is {SessionStatus(class_session.status).value}"
        )


def outcome_after_session(reservation: Reservation) -> ReservationStatus:
    """Итоговый статус активной брони после окончания занятия"""
    current = ReservationStatus(reservation.status)
    if current == S.paid:
        return S.completed if reservation.checked_in_at is not None else S.no_show
    return S.cancelled


async def apply_transition(
    db: AsyncSession,
    reservation: Reservation,
    target: ReservationStatus,
    **values,
) -> Reservation:
    """
    Переводит бронь в `target` через compare-and-set по статусу.

    Если другая транзакция успела сменить статус, условие перехода
    проверяется заново по свежей строке, и вызывающий получает точную
    ошибку (например AlreadyCancelled), а не тихий двойной переход.
    """
    ensure_transition(reservation, target)
    current = ReservationStatus(reservation.status)

    result = await db.execute(
        update(Reservation)
        .where(Reservation.id == reservation.id, Reservation.status == current)
        .values(status=target, **values)
        .execution_options(synchronize_session=False)
    )

    await db.refresh(reservation)

    if result.rowcount != 1:
        ensure_transition(reservation, target)
        raise ConcurrencyConflictError("reservation")

    return reservation
