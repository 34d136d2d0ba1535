"""
Domain entities with business logic.

Patterns used
-------------
- **State Pattern** on ``Booking``: enforces valid lifecycle transitions
  (PENDING -> CONFIRMED -> DRIVER_ASSIGNED -> DRIVER_EN_ROUTE -> IN_PROGRESS
  -> COMPLETED, with CANCELLED reachable before the driver is en route).
- ``DriverSnapshot`` is a value object copied into the booking at
  assignment time, so later edits to the driver record never rewrite who
  served a past trip.
- ``StatusHistoryEntry`` is append-only; entries are never edited.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from .enums import (
    BOOKING_TRANSITIONS,
    DISPUTE_TRANSITIONS,
    GUARDED_TRANSITIONS,
    TERMINAL_STATUSES,
    Actor,
    BookingStatus,
    DisputeReason,
    DisputeStatus,
    DriverStatus,
    FeeStatus,
    PaymentMethod,
    PaymentStatus,
)
from .errors import InvalidTransition


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class DriverSnapshot:
    driver_id: int
    name: str
    phone: str
    vehicle_plate: str = ""
    vehicle_model: str = ""
    vehicle_color: str = ""


@dataclass(frozen=True)
class StatusHistoryEntry:
    sequence: int
    status: BookingStatus
    timestamp: datetime
    actor: Actor
    note: str = ""


@dataclass(frozen=True)
class RatingRecord:
    stars: int
    rated_at: datetime
    tip: Decimal = Decimal("0")
    reasons: tuple[str, ...] = ()
    comment: str = ""


# ── Entities ──────────────────────────────────────────────────────────


@dataclass
class Booking:
    id: Optional[int] = None
    customer_id: int = 0
    pickup_location: str = ""
    dropoff_location: str = ""
    pickup: Optional[Location] = None
    dropoff: Optional[Location] = None
    pickup_at: Optional[datetime] = None
    vehicle_name: str = ""
    fare: Decimal = Decimal("0")
    payment_method: PaymentMethod = PaymentMethod.CASH
    payment_status: PaymentStatus = PaymentStatus.PENDING
    status: BookingStatus = BookingStatus.PENDING
    version: int = 0

    driver: Optional[DriverSnapshot] = None
    driver_assigned_at: Optional[datetime] = None
    driver_en_route_at: Optional[datetime] = None
    driver_arrived_at: Optional[datetime] = None
    trip_started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    rejected_driver_ids: list[int] = field(default_factory=list)

    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[Actor] = None
    cancellation_reason: Optional[str] = None
    cancellation_fee: Decimal = Decimal("0")
    cancellation_fee_reason: Optional[str] = None
    cancellation_fee_status: Optional[FeeStatus] = None

    is_no_show: bool = False
    no_show_fee: Decimal = Decimal("0")
    no_show_reported_at: Optional[datetime] = None

    dispute_id: Optional[int] = None
    customer_rating: Optional[RatingRecord] = None
    driver_rating: Optional[RatingRecord] = None

    status_history: list[StatusHistoryEntry] = field(default_factory=list)
    created_at: Optional[datetime] = None

    def check_transition(
        self, new_status: BookingStatus, guard: Optional[str] = None
    ) -> None:
        """Raise ``InvalidTransition`` unless *new_status* may follow the current one.

        Guarded edges are only open when the caller names the matching guard.
        """
        if new_status in BOOKING_TRANSITIONS.get(self.status, set()):
            return
        required = GUARDED_TRANSITIONS.get((self.status, new_status))
        if required is not None and required == guard:
            return
        raise InvalidTransition(
            f"Cannot transition from {self.status.value} to {new_status.value}",
            details={"from": self.status.value, "to": new_status.value},
        )

    def transition_to(
        self, new_status: BookingStatus, guard: Optional[str] = None
    ) -> None:
        """Move to *new_status* if the transition is legal, else raise."""
        self.check_transition(new_status, guard)
        self.status = new_status

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def has_dispute(self) -> bool:
        return self.dispute_id is not None

    @property
    def last_transition_at(self) -> Optional[datetime]:
        if not self.status_history:
            return None
        return self.status_history[-1].timestamp


@dataclass
class Driver:
    id: Optional[int] = None
    name: str = ""
    phone: str = ""
    vehicle_plate: str = ""
    vehicle_model: str = ""
    vehicle_color: str = ""
    status: DriverStatus = DriverStatus.OFFLINE
    customer_id: Optional[int] = None
    current_booking_id: Optional[int] = None
    claimed_at: Optional[datetime] = None
    rating: float = 4.0
    rating_count: int = 0
    total_trips: int = 0
    total_earnings: Decimal = Decimal("0")
    total_tips: Decimal = Decimal("0")

    def snapshot(self) -> DriverSnapshot:
        return DriverSnapshot(
            driver_id=self.id or 0,
            name=self.name,
            phone=self.phone,
            vehicle_plate=self.vehicle_plate,
            vehicle_model=self.vehicle_model,
            vehicle_color=self.vehicle_color,
        )


@dataclass
class Customer:
    id: Optional[int] = None
    name: str = ""
    email: str = ""
    rating: float = 4.0
    rating_count: int = 0


@dataclass
class Dispute:
    id: Optional[int] = None
    booking_id: int = 0
    customer_id: int = 0
    driver_id: Optional[int] = None
    raised_by: Actor = Actor.CUSTOMER
    reason: DisputeReason = DisputeReason.OTHER
    description: str = ""
    evidence: list[str] = field(default_factory=list)
    status: DisputeStatus = DisputeStatus.OPEN
    resolution: Optional[str] = None
    resolved_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def transition_to(self, new_status: DisputeStatus) -> None:
        allowed = DISPUTE_TRANSITIONS.get(self.status, set())
        if new_status not in allowed:
            raise InvalidTransition(
                f"Cannot move dispute from {self.status.value} to {new_status.value}",
                code="invalid_dispute_transition",
                details={"from": self.status.value, "to": new_status.value},
            )
        self.status = new_status
