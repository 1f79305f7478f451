from datetime import datetime

import pytest

from gymbook.core.exceptions import (
    AlreadyCancelledError,
    AlreadyCheckedInError,
    InvalidTransitionError,
    NotCancellableError,
    SessionUnavailableError,
)
from gymbook.staff.models import ClassSession, SessionStatus
from gymbook.students.models import Reservation, ReservationStatus
from gymbook.students.services.reservation_states import (
    TERMINAL_STATUSES,
    can_transition,
    ensure_can_check_in,
    ensure_transition,
    outcome_after_session,
    releases_seat,
)

S = ReservationStatus


class TestTransitionTable:
    @pytest.mark.parametrize(
        "current,target",
        [
            (S.pending_payment, S.paid),
            (S.pending_payment, S.cancelled),
            (S.paid, S.cancelled),
            (S.paid, S.completed),
            (S.paid, S.no_show),
        ],
    )
    def test_allowed(self, current, target):
        assert can_transition(current, target)

    @pytest.mark.parametrize(
        "current,target",
        [
            (S.pending_payment, S.completed),
            (S.pending_payment, S.no_show),
            (S.paid, S.pending_payment),
            (S.cancelled, S.paid),
            (S.completed, S.cancelled),
            (S.no_show, S.paid),
        ],
    )
    def test_forbidden(self, current, target):
        assert not can_transition(current, target)

    def test_terminal_statuses(self):
        assert TERMINAL_STATUSES == {S.cancelled, S.completed, S.no_show}

    def test_seat_release_rules(self):
        assert releases_seat(S.pending_payment, S.cancelled)
        assert releases_seat(S.paid, S.cancelled)
        assert releases_seat(S.paid, S.no_show)
        assert not releases_seat(S.paid, S.completed)
        assert not releases_seat(S.pending_payment, S.paid)


class TestTransitionGuards:
    def test_second_cancel_reports_already_cancelled(self):
        reservation = Reservation(id=1, status=S.cancelled)

        with pytest.raises(AlreadyCancelledError):
            ensure_transition(reservation, S.cancelled)

    def test_completed_reservation_is_not_cancellable(self):
        reservation = Reservation(id=2, status=S.completed)

        with pytest.raises(NotCancellableError) as exc_info:
            ensure_transition(reservation, S.cancelled)

        assert exc_info.value.details["status"] == "completed"

    def test_pending_cannot_complete(self):
        reservation = Reservation(id=3, status=S.pending_payment)

        with pytest.raises(InvalidTransitionError):
            ensure_transition(reservation, S.completed)

    def test_allowed_transition_passes(self):
        ensure_transition(Reservation(id=4, status=S.pending_payment), S.paid)


class TestCheckInGuard:
    def _session(self, status=SessionStatus.scheduled):
        return ClassSession(id=10, status=status)

    def test_paid_reservation_can_check_in(self):
        ensure_can_check_in(Reservation(id=1, status=S.paid), self._session())

    def test_unpaid_reservation_cannot_check_in(self):
        with pytest.raises(InvalidTransitionError):
            ensure_can_check_in(Reservation(id=1, status=S.pending_payment), self._session())

    def test_second_check_in(self):
        reservation = Reservation(id=1, user_id=5, status=S.paid, checked_in_at=datetime.now())

        with pytest.raises(AlreadyCheckedInError):
            ensure_can_check_in(reservation, self._session())

    def test_cancelled_session(self):
        with pytest.raises(SessionUnavailableError):
            ensure_can_check_in(
                Reservation(id=1, status=S.paid), self._session(SessionStatus.cancelled)
            )


class TestOutcomeAfterSession:
    def test_checked_in_member_completes(self):
        reservation = Reservation(status=S.paid, checked_in_at=datetime.now())
        assert outcome_after_session(reservation) == S.completed

    def test_paid_without_check_in_is_no_show(self):
        assert outcome_after_session(Reservation(status=S.paid)) == S.no_show

    def test_unpaid_is_cancelled(self):
        assert outcome_after_session(Reservation(status=S.pending_payment)) == S.cancelled
