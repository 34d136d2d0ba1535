"""
Fee Policy Engine  (Chain of Rules)
===================================

Pure, side-effect-free.  Every public function takes a booking snapshot,
a ``PolicyConfig`` and the current time, and returns a decision with a
machine-readable reason code.

Cancellation fee (first matching rule wins)
-------------------------------------------
1. no driver assigned yet                          -> 0, ``no_driver``
2. now - driver_assigned_at <= free window         -> 0, ``free``
3. waiver on and driver late (no arrival, elapsed
   since assignment > driver_late_threshold)       -> 0, ``driver_late_waiver``
4. late-cancellation fee on                        -> late_cancellation_fee, ``late_fee``
5. otherwise                                       -> 0, ``fee_disabled``

No-show
-------
eligible  iff  waited >= no_show_wait_time   (boundary inclusive)
remaining  =   max(0, no_show_wait_time - waited)

Dispute window
--------------
open  iff  now <= closed_at + dispute_window_hours   (boundary inclusive)

Driver share of any non-zero fee = fee x percent / 100, rounded half-up to
satang.  Complexity: O(1) per decision.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from .entities import Booking
from .enums import BookingStatus, FeeReason, FeeStatus
from .policy import PolicyConfig

ZERO = Decimal("0")
_CENTS = Decimal("0.01")
_ONE_MS = timedelta(milliseconds=1)


def to_ms(delta: timedelta) -> int:
    return delta // _ONE_MS


def driver_share(fee: Decimal, percent: int) -> Decimal:
    """Portion of *fee* credited to the driver; the rest stays with the platform."""
    if fee <= ZERO:
        return ZERO
    share = fee * Decimal(percent) / Decimal(100)
    return share.quantize(_CENTS, rounding=ROUND_HALF_UP)


# ── Decisions ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class FeeDecision:
    fee: Decimal
    reason: FeeReason
    driver_share: Decimal = ZERO
    elapsed_ms: Optional[int] = None

    @property
    def charged(self) -> bool:
        return self.fee > ZERO

    @property
    def fee_status(self) -> FeeStatus:
        return FeeStatus.PENDING if self.charged else FeeStatus.WAIVED


@dataclass(frozen=True)
class NoShowDecision:
    eligible: bool
    waited_ms: int
    required_ms: int
    remaining_ms: int
    fee: Decimal = ZERO
    reason: FeeReason = FeeReason.WAIT_TIME_NOT_MET
    driver_share: Decimal = ZERO


# ── Cancellation rule chain ───────────────────────────────────────────


class CancellationRule(ABC):
    @abstractmethod
    def evaluate(
        self, booking: Booking, policy: PolicyConfig, now: datetime
    ) -> Optional[FeeDecision]:
        """Return a decision if this rule settles the fee, else ``None``."""


def _elapsed_since_assignment(booking: Booking, now: datetime) -> timedelta:
    # A missing stamp counts as "just assigned"
    if booking.driver_assigned_at is None:
        return timedelta(0)
    return max(timedelta(0), now - booking.driver_assigned_at)


class NoDriverRule(CancellationRule):
    def evaluate(self, booking, policy, now):
        if booking.status in (BookingStatus.PENDING, BookingStatus.CONFIRMED) or (
            booking.driver is None
        ):
            return FeeDecision(ZERO, FeeReason.NO_DRIVER)
        return None


class FreeWindowRule(CancellationRule):
    def evaluate(self, booking, policy, now):
        elapsed = _elapsed_since_assignment(booking, now)
        if elapsed <= policy.free_cancellation_window:
            return FeeDecision(ZERO, FeeReason.FREE, elapsed_ms=to_ms(elapsed))
        return None


class DriverLateWaiverRule(CancellationRule):
    def evaluate(self, booking, policy, now):
        if not policy.enable_driver_late_waiver:
            return None
        elapsed = _elapsed_since_assignment(booking, now)
        driver_late = (
            booking.status == BookingStatus.DRIVER_ASSIGNED
            and booking.driver_arrived_at is None
            and elapsed > policy.driver_late_threshold
        )
        if driver_late:
            return FeeDecision(
                ZERO, FeeReason.DRIVER_LATE_WAIVER, elapsed_ms=to_ms(elapsed)
            )
        return None


class LateFeeRule(CancellationRule):
    def evaluate(self, booking, policy, now):
        if not policy.enable_cancellation_fee:
            return None
        fee = policy.late_cancellation_fee
        return FeeDecision(
            fee,
            FeeReason.LATE_FEE,
            driver_share=driver_share(fee, policy.cancellation_fee_to_driver_percent),
            elapsed_ms=to_ms(_elapsed_since_assignment(booking, now)),
        )


CANCELLATION_RULES: tuple[CancellationRule, ...] = (
    NoDriverRule(),
    FreeWindowRule(),
    DriverLateWaiverRule(),
    LateFeeRule(),
)


# ── Public API ────────────────────────────────────────────────────────


def compute_cancellation_fee(
    booking: Booking, policy: PolicyConfig, now: datetime
) -> FeeDecision:
    for rule in CANCELLATION_RULES:
        decision = rule.evaluate(booking, policy, now)
        if decision is not None:
            return decision
    return FeeDecision(
        ZERO,
        FeeReason.FEE_DISABLED,
        elapsed_ms=to_ms(_elapsed_since_assignment(booking, now)),
    )


def compute_no_show(waited_ms: int, policy: PolicyConfig) -> NoShowDecision:
    """Decide no-show eligibility for a driver who has waited *waited_ms*."""
    required = policy.no_show_wait_time_ms
    remaining = max(0, required - waited_ms)
    if waited_ms < required:
        return NoShowDecision(
            eligible=False,
            waited_ms=waited_ms,
            required_ms=required,
            remaining_ms=remaining,
        )
    if not policy.enable_no_show_fee:
        return NoShowDecision(
            eligible=True,
            waited_ms=waited_ms,
            required_ms=required,
            remaining_ms=0,
            reason=FeeReason.FEE_DISABLED,
        )
    fee = policy.no_show_fee
    return NoShowDecision(
        eligible=True,
        waited_ms=waited_ms,
        required_ms=required,
        remaining_ms=0,
        fee=fee,
        reason=FeeReason.NO_SHOW_FEE,
        driver_share=driver_share(fee, policy.no_show_fee_to_driver_percent),
    )


def compute_booking_no_show(
    booking: Booking, policy: PolicyConfig, now: datetime
) -> NoShowDecision:
    """``compute_no_show`` with the wait measured from the recorded arrival."""
    arrived = booking.driver_arrived_at or now
    return compute_no_show(to_ms(max(timedelta(0), now - arrived)), policy)


def dispute_window_ends_at(closed_at: datetime, policy: PolicyConfig) -> datetime:
    return closed_at + policy.dispute_window


def is_within_dispute_window(
    closed_at: datetime, now: datetime, policy: PolicyConfig
) -> bool:
    return now <= dispute_window_ends_at(closed_at, policy)
