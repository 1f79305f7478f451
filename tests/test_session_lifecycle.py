from datetime import date, datetime, time, timedelta

import pytest

from gymbook.staff.crud.reservations import (
    check_in_reservation,
    expire_pending_reservations,
    record_payment,
)
from gymbook.staff.models import ClassSession, SessionStatus
from gymbook.staff.services.session_lifecycle import (
    PAYMENT_TIMEOUT,
    UNPAID_AT_SESSION_END,
    SessionLifecycle,
)
from gymbook.students.models import Reservation, ReservationStatus
from gymbook.students.services.capacity_ledger import CapacityLedger
from tests.conftest import make_session, reload


async def _reserve_at(db, user_id, session_id, now):
    """Бронь "в прошлом": время бронирования задается явно"""
    reservation = await CapacityLedger(db).try_reserve(user_id, session_id, now=now)
    await db.commit()
    return reservation


class TestCompletePastSessions:
    @pytest.mark.asyncio
    async def test_reservations_resolve_when_session_ends(self, db, club_setup):
        yesterday = date.today() - timedelta(days=1)
        class_session = await make_session(
            db, club_setup,
            session_date=yesterday,
            start_time=time(8, 0),
            end_time=time(9, 0),
            capacity=5,
        )
        booked_at = datetime.combine(yesterday - timedelta(days=1), time(12, 0))

        attended = await _reserve_at(db, 1, class_session.id, booked_at)
        missed = await _reserve_at(db, 2, class_session.id, booked_at)
        unpaid = await _reserve_at(db, 3, class_session.id, booked_at)
        await record_payment(db, attended.id)
        await record_payment(db, missed.id)
        await check_in_reservation(db, attended.id, recorded_by=900)

        result = await SessionLifecycle(db).complete_past_sessions(now=datetime.now())

        assert result.sessions_completed == 1
        assert result.reservations_completed == 1
        assert result.reservations_no_show == 1
        assert result.reservations_cancelled == 1

        assert (await reload(db, Reservation, attended.id)).status == ReservationStatus.completed
        assert (await reload(db, Reservation, missed.id)).status == ReservationStatus.no_show
        unpaid = await reload(db, Reservation, unpaid.id)
        assert unpaid.status == ReservationStatus.cancelled
        assert unpaid.cancellation_reason == UNPAID_AT_SESSION_END

        fresh = await reload(db, ClassSession, class_session.id)
        assert fresh.status == SessionStatus.completed
        # Место держит только пришедший участник
        assert fresh.booked_count == 1

    @pytest.mark.asyncio
    async def test_future_sessions_are_untouched(self, db, club_setup):
        class_session = await make_session(db, club_setup)

        result = await SessionLifecycle(db).complete_past_sessions(now=datetime.now())

        assert result.sessions_completed == 0
        fresh = await reload(db, ClassSession, class_session.id)
        assert fresh.status == SessionStatus.scheduled

    @pytest.mark.asyncio
    async def test_session_ending_later_today_stays_scheduled(self, db, club_setup):
        today = date.today()
        class_session = await make_session(
            db, club_setup, session_date=today, start_time=time(20, 0), end_time=time(21, 0)
        )

        result = await SessionLifecycle(db).complete_past_sessions(
            now=datetime.combine(today, time(20, 30))
        )

        assert result.sessions_completed == 0
        fresh = await reload(db, ClassSession, class_session.id)
        assert fresh.status == SessionStatus.scheduled


class TestExpirePendingReservations:
    @pytest.mark.asyncio
    async def test_stale_unpaid_reservations_are_cancelled(self, db, club_setup):
        class_session = await make_session(db, club_setup, capacity=5)
        now = datetime.now()
        long_ago = now - timedelta(hours=30)

        stale = await _reserve_at(db, 1, class_session.id, long_ago)
        paid = await _reserve_at(db, 2, class_session.id, long_ago)
        await record_payment(db, paid.id)
        recent = await _reserve_at(db, 3, class_session.id, now - timedelta(hours=1))

        result = await expire_pending_reservations(db, now=now)

        assert result.cancelled_count == 1
        stale = await reload(db, Reservation, stale.id)
        assert stale.status == ReservationStatus.cancelled
        assert stale.cancellation_reason == PAYMENT_TIMEOUT
        assert (await reload(db, Reservation, paid.id)).status == ReservationStatus.paid
        assert (
            await reload(db, Reservation, recent.id)
        ).status == ReservationStatus.pending_payment

        fresh = await reload(db, ClassSession, class_session.id)
        assert fresh.booked_count == 2

    @pytest.mark.asyncio
    async def test_nothing_to_expire(self, db, club_setup):
        class_session = await make_session(db, club_setup)
        await _reserve_at(db, 1, class_session.id, datetime.now())

        result = await expire_pending_reservations(db)

        assert result.cancelled_count == 0


async def _pay_elsewhere(session_factory, reservation_id):
    """Оплата из другого соединения, пока пакет уже выбрал брони"""
    async with session_factory() as other:
        await record_payment(other, reservation_id)


class TestBatchesSurviveConcurrentPayment:
    @pytest.mark.asyncio
    async def test_expire_pending_skips_reservation_paid_meanwhile(
        self, db, session_factory, club_setup, monkeypatch
    ):
        class_session = await make_session(db, club_setup, capacity=5)
        session_id = class_session.id
        now = datetime.now()
        long_ago = now - timedelta(hours=30)

        first = await _reserve_at(db, 1, session_id, long_ago)
        paid_meanwhile = await _reserve_at(db, 2, session_id, long_ago + timedelta(minutes=1))
        last = await _reserve_at(db, 3, session_id, long_ago + timedelta(minutes=2))
        first_id, paid_id, last_id = first.id, paid_meanwhile.id, last.id

        lifecycle = SessionLifecycle(db)
        select_expired = lifecycle._get_expired_pending

        async def select_then_pay(cutoff):
            expired = await select_expired(cutoff)
            await _pay_elsewhere(session_factory, paid_id)
            return expired

        monkeypatch.setattr(lifecycle, "_get_expired_pending", select_then_pay)

        result = await lifecycle.expire_pending_reservations(now=now)

        assert result.cancelled_count == 2
        assert (await reload(db, Reservation, first_id)).status == ReservationStatus.cancelled
        assert (await reload(db, Reservation, paid_id)).status == ReservationStatus.paid
        assert (await reload(db, Reservation, last_id)).status == ReservationStatus.cancelled
        fresh = await reload(db, ClassSession, session_id)
        assert fresh.booked_count == 1

    @pytest.mark.asyncio
    async def test_complete_past_uses_fresh_status_after_payment(
        self, db, session_factory, club_setup, monkeypatch
    ):
        yesterday = date.today() - timedelta(days=1)
        class_session = await make_session(
            db, club_setup,
            session_date=yesterday,
            start_time=time(8, 0),
            end_time=time(9, 0),
        )
        session_id = class_session.id
        booked_at = datetime.combine(yesterday - timedelta(days=1), time(12, 0))

        unpaid = await _reserve_at(db, 1, session_id, booked_at)
        paid_meanwhile = await _reserve_at(db, 2, session_id, booked_at)
        unpaid_id, paid_id = unpaid.id, paid_meanwhile.id

        lifecycle = SessionLifecycle(db)
        select_active = lifecycle._get_active_reservations

        async def select_then_pay(sid):
            reservations = await select_active(sid)
            await _pay_elsewhere(session_factory, paid_id)
            return reservations

        monkeypatch.setattr(lifecycle, "_get_active_reservations", select_then_pay)

        result = await lifecycle.complete_past_sessions(now=datetime.now())

        assert result.sessions_completed == 1
        assert result.reservations_cancelled == 1
        assert result.reservations_no_show == 1
        assert (await reload(db, Reservation, unpaid_id)).status == ReservationStatus.cancelled
        assert (await reload(db, Reservation, paid_id)).status == ReservationStatus.no_show
        fresh = await reload(db, ClassSession, session_id)
        assert fresh.booked_count == 0
