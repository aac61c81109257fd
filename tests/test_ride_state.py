"""Unit tests for booking and ride state transitions (State Pattern)."""

import pytest

from src.domain.entities import Principal, ensure_ride_transition, ensure_transition
from src.domain.enums import (
    BookingStatus,
    RideStatus,
    SEAT_HOLDING_STATUSES,
    UserRole,
    sources_for,
)
from src.domain.errors import AlreadyTerminal, InvalidState


class TestBookingStateMachine:
    # ── Valid transitions ─────────────────────────────────────────

    def test_pending_to_accepted(self):
        ensure_transition(BookingStatus.PENDING, BookingStatus.ACCEPTED)

    def test_pending_to_declined(self):
        ensure_transition(BookingStatus.PENDING, BookingStatus.DECLINED)

    def test_pending_to_cancelled(self):
        ensure_transition(BookingStatus.PENDING, BookingStatus.CANCELLED)

    def test_accepted_to_completed(self):
        ensure_transition(BookingStatus.ACCEPTED, BookingStatus.COMPLETED)

    def test_accepted_to_cancelled(self):
        ensure_transition(BookingStatus.ACCEPTED, BookingStatus.CANCELLED)

    def test_accepts_raw_string_status(self):
        ensure_transition("pending", BookingStatus.ACCEPTED)

    # ── Invalid transitions ───────────────────────────────────────

    def test_pending_to_completed_fails(self):
        with pytest.raises(InvalidState):
            ensure_transition(BookingStatus.PENDING, BookingStatus.COMPLETED)

    def test_accepted_to_declined_fails(self):
        """Once accepted, the driver can no longer decline."""
        with pytest.raises(InvalidState):
            ensure_transition(BookingStatus.ACCEPTED, BookingStatus.DECLINED)

    @pytest.mark.parametrize(
        "terminal",
        [BookingStatus.DECLINED, BookingStatus.COMPLETED, BookingStatus.CANCELLED],
    )
    def test_terminal_states_have_no_exit(self, terminal):
        for target in BookingStatus:
            with pytest.raises(InvalidState):
                ensure_transition(terminal, target)

    # ── Table helpers ─────────────────────────────────────────────

    def test_sources_for_cancelled(self):
        assert sources_for(BookingStatus.CANCELLED) == {
            BookingStatus.PENDING,
            BookingStatus.ACCEPTED,
        }

    def test_seat_holding_states(self):
        assert SEAT_HOLDING_STATUSES == {BookingStatus.PENDING, BookingStatus.ACCEPTED}


class TestRideStateMachine:
    def test_active_can_close(self):
        ensure_ride_transition(RideStatus.ACTIVE, RideStatus.CANCELLED)
        ensure_ride_transition(RideStatus.ACTIVE, RideStatus.COMPLETED)

    def test_completed_is_terminal(self):
        with pytest.raises(AlreadyTerminal):
            ensure_ride_transition(RideStatus.COMPLETED, RideStatus.CANCELLED)

    def test_cancelled_is_terminal(self):
        with pytest.raises(AlreadyTerminal):
            ensure_ride_transition(RideStatus.CANCELLED, RideStatus.CANCELLED)


class TestPrincipal:
    def test_is_driver_derives_from_role(self):
        assert Principal(1, UserRole.DRIVER).is_driver
        assert not Principal(2, UserRole.PASSENGER).is_driver
        assert not Principal(3, UserRole.ADMIN).is_driver

    def test_default_role_is_passenger(self):
        assert Principal(4).role == UserRole.PASSENGER
