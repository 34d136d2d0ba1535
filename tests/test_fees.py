"""Unit tests for the fee policy engine."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from bookingcore.domain.entities import Booking, DriverSnapshot
from bookingcore.domain.enums import BookingStatus, FeeReason, FeeStatus
from bookingcore.domain.fees import (
    compute_booking_no_show,
    compute_cancellation_fee,
    compute_no_show,
    dispute_window_ends_at,
    driver_share,
    is_within_dispute_window,
)
from bookingcore.domain.policy import DEFAULT_POLICY, PolicyConfig

ASSIGNED_AT = datetime(2026, 3, 2, 3, 0, 0, tzinfo=timezone.utc)


def _assigned_booking(**kwargs) -> Booking:
    defaults = dict(
        id=1,
        customer_id=1,
        status=BookingStatus.DRIVER_ASSIGNED,
        driver=DriverSnapshot(driver_id=7, name="Prasert", phone="0812345601"),
        driver_assigned_at=ASSIGNED_AT,
        fare=Decimal("500"),
    )
    defaults.update(kwargs)
    return Booking(**defaults)


def _after(ms: int) -> datetime:
    return ASSIGNED_AT + timedelta(milliseconds=ms)


class TestCancellationFee:
    def test_no_driver_is_free(self):
        booking = Booking(status=BookingStatus.CONFIRMED)
        decision = compute_cancellation_fee(booking, DEFAULT_POLICY, _after(10_000_000))
        assert decision.fee == Decimal("0")
        assert decision.reason == FeeReason.NO_DRIVER
        assert decision.fee_status == FeeStatus.WAIVED

    def test_within_free_window(self):
        # 2.5 minutes after assignment
        decision = compute_cancellation_fee(
            _assigned_booking(), DEFAULT_POLICY, _after(150_000)
        )
        assert decision.fee == Decimal("0")
        assert decision.reason == FeeReason.FREE
        assert decision.elapsed_ms == 150_000
        assert not decision.charged

    def test_free_window_boundary_is_inclusive(self):
        decision = compute_cancellation_fee(
            _assigned_booking(), DEFAULT_POLICY, _after(180_000)
        )
        assert decision.reason == FeeReason.FREE

    def test_late_cancellation(self):
        decision = compute_cancellation_fee(
            _assigned_booking(), DEFAULT_POLICY, _after(200_000)
        )
        assert decision.fee == Decimal("50")
        assert decision.reason == FeeReason.LATE_FEE
        assert decision.driver_share == Decimal("50.00")
        assert decision.charged
        assert decision.fee_status == FeeStatus.PENDING

    def test_one_ms_past_free_window_is_charged(self):
        decision = compute_cancellation_fee(
            _assigned_booking(), DEFAULT_POLICY, _after(180_001)
        )
        assert decision.reason == FeeReason.LATE_FEE

    def test_driver_late_waiver(self):
        decision = compute_cancellation_fee(
            _assigned_booking(), DEFAULT_POLICY, _after(300_001)
        )
        assert decision.fee == Decimal("0")
        assert decision.reason == FeeReason.DRIVER_LATE_WAIVER

    def test_late_threshold_boundary_still_charged(self):
        decision = compute_cancellation_fee(
            _assigned_booking(), DEFAULT_POLICY, _after(300_000)
        )
        assert decision.reason == FeeReason.LATE_FEE

    def test_arrived_driver_is_not_late(self):
        booking = _assigned_booking(driver_arrived_at=_after(60_000))
        decision = compute_cancellation_fee(booking, DEFAULT_POLICY, _after(600_000))
        assert decision.reason == FeeReason.LATE_FEE

    def test_waiver_disabled(self):
        policy = PolicyConfig(enable_driver_late_waiver=False)
        decision = compute_cancellation_fee(
            _assigned_booking(), policy, _after(600_000)
        )
        assert decision.reason == FeeReason.LATE_FEE

    def test_fee_disabled(self):
        policy = PolicyConfig(enable_cancellation_fee=False)
        decision = compute_cancellation_fee(
            _assigned_booking(), policy, _after(200_000)
        )
        assert decision.fee == Decimal("0")
        assert decision.reason == FeeReason.FEE_DISABLED

    def test_missing_assignment_stamp_counts_as_just_assigned(self):
        booking = _assigned_booking(driver_assigned_at=None)
        decision = compute_cancellation_fee(booking, DEFAULT_POLICY, _after(999_999))
        assert decision.reason == FeeReason.FREE
        assert decision.elapsed_ms == 0

    def test_custom_fee_and_share(self):
        policy = PolicyConfig(
            late_cancellation_fee=Decimal("80"), cancellation_fee_to_driver_percent=70
        )
        decision = compute_cancellation_fee(
            _assigned_booking(), policy, _after(200_000)
        )
        assert decision.fee == Decimal("80")
        assert decision.driver_share == Decimal("56.00")


class TestDriverShare:
    @pytest.mark.parametrize(
        "fee,percent,expected",
        [
            (Decimal("50"), 100, Decimal("50.00")),
            (Decimal("50"), 0, Decimal("0.00")),
            (Decimal("33.33"), 50, Decimal("16.67")),
            (Decimal("0"), 100, Decimal("0")),
        ],
    )
    def test_share(self, fee, percent, expected):
        assert driver_share(fee, percent) == expected


class TestNoShow:
    def test_wait_not_met(self):
        decision = compute_no_show(299_999, DEFAULT_POLICY)
        assert not decision.eligible
        assert decision.remaining_ms == 1
        assert decision.required_ms == 300_000
        assert decision.reason == FeeReason.WAIT_TIME_NOT_MET
        assert decision.fee == Decimal("0")

    def test_boundary_is_inclusive(self):
        decision = compute_no_show(300_000, DEFAULT_POLICY)
        assert decision.eligible
        assert decision.remaining_ms == 0
        assert decision.fee == Decimal("50")
        assert decision.reason == FeeReason.NO_SHOW_FEE
        assert decision.driver_share == Decimal("50.00")

    def test_fee_disabled_still_eligible(self):
        decision = compute_no_show(400_000, PolicyConfig(enable_no_show_fee=False))
        assert decision.eligible
        assert decision.fee == Decimal("0")
        assert decision.reason == FeeReason.FEE_DISABLED

    def test_measured_from_arrival(self):
        booking = _assigned_booking(
            status=BookingStatus.DRIVER_EN_ROUTE, driver_arrived_at=_after(60_000)
        )
        decision = compute_booking_no_show(booking, DEFAULT_POLICY, _after(120_000))
        assert decision.waited_ms == 60_000
        assert decision.remaining_ms == 240_000


class TestDisputeWindow:
    def test_end_of_window(self):
        assert dispute_window_ends_at(ASSIGNED_AT, DEFAULT_POLICY) == ASSIGNED_AT + timedelta(hours=48)

    def test_last_instant_is_open(self):
        now = ASSIGNED_AT + timedelta(hours=48)
        assert is_within_dispute_window(ASSIGNED_AT, now, DEFAULT_POLICY)

    def test_just_after_window_is_closed(self):
        now = ASSIGNED_AT + timedelta(hours=48, milliseconds=1)
        assert not is_within_dispute_window(ASSIGNED_AT, now, DEFAULT_POLICY)
