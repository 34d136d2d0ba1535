"""Unit tests for booking entity state transitions (State Pattern)."""

import pytest

from bookingcore.domain.entities import Booking, Dispute
from bookingcore.domain.enums import (
    BOOKING_TRANSITIONS,
    TRANSITION_ACTORS,
    Actor,
    BookingStatus,
    DisputeStatus,
)
from bookingcore.domain.errors import InvalidTransition

S = BookingStatus

ALLOWED = {
    (S.PENDING, S.CONFIRMED),
    (S.PENDING, S.CANCELLED),
    (S.CONFIRMED, S.DRIVER_ASSIGNED),
    (S.CONFIRMED, S.CANCELLED),
    (S.DRIVER_ASSIGNED, S.DRIVER_EN_ROUTE),
    (S.DRIVER_ASSIGNED, S.CONFIRMED),
    (S.DRIVER_ASSIGNED, S.CANCELLED),
    (S.DRIVER_EN_ROUTE, S.IN_PROGRESS),
    (S.IN_PROGRESS, S.COMPLETED),
}


class TestBookingStateMachine:
    def test_initial_status_is_pending(self):
        assert Booking().status == S.PENDING

    def test_table_matches_allowed_edges(self):
        edges = {(a, b) for a, succ in BOOKING_TRANSITIONS.items() for b in succ}
        assert edges == ALLOWED

    @pytest.mark.parametrize("current", list(S))
    @pytest.mark.parametrize("target", list(S))
    def test_only_allowed_edges_succeed(self, current, target):
        booking = Booking(status=current)
        if (current, target) in ALLOWED:
            booking.transition_to(target)
            assert booking.status == target
        else:
            with pytest.raises(InvalidTransition) as exc_info:
                booking.transition_to(target)
            assert booking.status == current
            assert exc_info.value.details == {"from": current.value, "to": target.value}

    def test_completed_is_terminal(self):
        booking = Booking(status=S.COMPLETED)
        assert booking.is_terminal
        with pytest.raises(InvalidTransition):
            booking.transition_to(S.CANCELLED)

    def test_en_route_cancel_needs_no_show_guard(self):
        booking = Booking(status=S.DRIVER_EN_ROUTE)
        with pytest.raises(InvalidTransition):
            booking.transition_to(S.CANCELLED)
        with pytest.raises(InvalidTransition):
            booking.transition_to(S.CANCELLED, guard="something_else")
        booking.transition_to(S.CANCELLED, guard="no_show")
        assert booking.status == S.CANCELLED

    def test_guard_does_not_open_other_edges(self):
        booking = Booking(status=S.IN_PROGRESS)
        with pytest.raises(InvalidTransition):
            booking.transition_to(S.CANCELLED, guard="no_show")

    def test_every_edge_has_actors(self):
        for edge in ALLOWED:
            assert TRANSITION_ACTORS[edge]

    def test_only_driver_moves_trip_forward(self):
        assert TRANSITION_ACTORS[(S.DRIVER_ASSIGNED, S.DRIVER_EN_ROUTE)] == {Actor.DRIVER}
        assert TRANSITION_ACTORS[(S.DRIVER_EN_ROUTE, S.IN_PROGRESS)] == {Actor.DRIVER}
        assert Actor.CUSTOMER not in TRANSITION_ACTORS[(S.IN_PROGRESS, S.COMPLETED)]

    def test_driver_cannot_confirm_pending(self):
        assert Actor.DRIVER not in TRANSITION_ACTORS[(S.PENDING, S.CONFIRMED)]


class TestDisputeStates:
    def test_open_to_resolved(self):
        dispute = Dispute()
        dispute.transition_to(DisputeStatus.RESOLVED)
        assert dispute.status == DisputeStatus.RESOLVED

    def test_review_then_reject(self):
        dispute = Dispute()
        dispute.transition_to(DisputeStatus.UNDER_REVIEW)
        dispute.transition_to(DisputeStatus.REJECTED)
        assert dispute.status == DisputeStatus.REJECTED

    def test_resolved_is_final(self):
        dispute = Dispute(status=DisputeStatus.RESOLVED)
        with pytest.raises(InvalidTransition) as exc_info:
            dispute.transition_to(DisputeStatus.OPEN)
        assert exc_info.value.code == "invalid_dispute_transition"
