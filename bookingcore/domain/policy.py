"""
Booking policy configuration.

A ``PolicyConfig`` is an immutable, versioned snapshot of every tunable
threshold used by the fee engine and the state machine.  It is loaded once
per transition and passed explicitly into the policy functions; nothing in
the domain reads policy from module state.

Durations are stored in milliseconds (the dispute window in hours), money
as ``Decimal`` in THB.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields, replace
from datetime import timedelta
from decimal import Decimal
from typing import Any, Mapping


@dataclass(frozen=True)
class PolicyConfig:
    version: int = 0

    # Cancellation
    free_cancellation_window_ms: int = 180_000
    late_cancellation_fee: Decimal = Decimal("50")
    enable_cancellation_fee: bool = True
    cancellation_fee_to_driver_percent: int = 100

    # No-show
    no_show_wait_time_ms: int = 300_000
    no_show_fee: Decimal = Decimal("50")
    enable_no_show_fee: bool = True
    no_show_fee_to_driver_percent: int = 100

    # Driver lateness
    driver_late_threshold_ms: int = 300_000
    enable_driver_late_waiver: bool = True

    # Customer limits
    max_active_bookings: int = 1
    enable_active_booking_limit: bool = True
    max_cancellations_per_day: int = 3
    enable_cancellation_limit: bool = True

    # Disputes
    dispute_window_hours: int = 48
    enable_dispute: bool = True

    # Driver must accept within this window or the assignment is revoked
    assignment_timeout_ms: int = 300_000

    @property
    def free_cancellation_window(self) -> timedelta:
        return timedelta(milliseconds=self.free_cancellation_window_ms)

    @property
    def no_show_wait_time(self) -> timedelta:
        return timedelta(milliseconds=self.no_show_wait_time_ms)

    @property
    def driver_late_threshold(self) -> timedelta:
        return timedelta(milliseconds=self.driver_late_threshold_ms)

    @property
    def dispute_window(self) -> timedelta:
        return timedelta(hours=self.dispute_window_hours)

    @property
    def assignment_timeout(self) -> timedelta:
        return timedelta(milliseconds=self.assignment_timeout_ms)

    # ── (de)serialisation ─────────────────────────────────────────────

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], version: int = 0) -> "PolicyConfig":
        """Build a snapshot from a stored payload, ignoring unknown keys.

        Missing keys fall back to the defaults so older payloads stay valid
        after new thresholds are introduced.
        """
        known = {f.name for f in fields(cls)} - {"version"}
        values = {k: v for k, v in data.items() if k in known}
        for key in ("late_cancellation_fee", "no_show_fee"):
            if key in values:
                values[key] = Decimal(str(values[key]))
        return cls(version=version, **values)

    def to_payload(self) -> dict[str, Any]:
        payload = asdict(self)
        payload.pop("version")
        for key in ("late_cancellation_fee", "no_show_fee"):
            payload[key] = str(payload[key])
        return payload

    def next_version(self, **changes: Any) -> "PolicyConfig":
        return replace(self, version=self.version + 1, **changes)


DEFAULT_POLICY = PolicyConfig()
