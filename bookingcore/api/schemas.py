"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from bookingcore.domain.enums import (
    Actor,
    BookingStatus,
    CancellationReason,
    DisputeReason,
    DisputeStatus,
    DriverStatus,
    FeeReason,
    FeeStatus,
    PaymentMethod,
    PaymentStatus,
    RatingReason,
    RatingType,
)


# ── Requests ──────────────────────────────────────────────────────────


class BookingCreateRequest(BaseModel):
    customer_id: int
    pickup_location: str = Field(..., min_length=1, max_length=255)
    dropoff_location: str = Field(..., min_length=1, max_length=255)
    pickup_lat: Optional[float] = Field(None, ge=-90, le=90)
    pickup_lng: Optional[float] = Field(None, ge=-180, le=180)
    dropoff_lat: Optional[float] = Field(None, ge=-90, le=90)
    dropoff_lng: Optional[float] = Field(None, ge=-180, le=180)
    pickup_at: datetime
    fare: float = Field(..., gt=0)
    vehicle_name: str = Field("", max_length=120)
    payment_method: PaymentMethod = PaymentMethod.CASH


class TransitionRequest(BaseModel):
    actor: Actor = Actor.ADMIN
    actor_id: Optional[int] = Field(
        None, description="Customer or driver id of the caller, when acting as one."
    )
    expected_version: Optional[int] = Field(
        None,
        ge=1,
        description="Version the client last saw; a mismatch is rejected as stale.",
    )
    note: str = Field("", max_length=500)


class AssignDriverRequest(TransitionRequest):
    driver_id: int


class DriverActionRequest(BaseModel):
    driver_id: int
    expected_version: Optional[int] = Field(None, ge=1)
    note: str = Field("", max_length=500)


class ExpireAssignmentRequest(TransitionRequest):
    actor: Actor = Actor.SYSTEM


class CompleteTripRequest(TransitionRequest):
    actor: Actor = Actor.DRIVER


class CancelRequest(TransitionRequest):
    actor: Actor = Actor.CUSTOMER
    reason: Optional[CancellationReason] = None


class RatingRequest(BaseModel):
    rating_type: RatingType = RatingType.CUSTOMER_TO_DRIVER
    actor_id: Optional[int] = None
    stars: int = Field(..., ge=1, le=5)
    tip: float = Field(0, ge=0, le=10000)
    reasons: list[RatingReason] = Field(default_factory=list)
    comment: str = Field("", max_length=5000)
    expected_version: Optional[int] = Field(None, ge=1)


class DisputeCreateRequest(BaseModel):
    actor: Actor = Actor.CUSTOMER
    actor_id: Optional[int] = None
    reason: DisputeReason
    description: str = Field(..., max_length=5000)
    evidence: list[str] = Field(default_factory=list)


class DisputeResolveRequest(BaseModel):
    status: DisputeStatus
    resolution: Optional[str] = Field(None, max_length=5000)
    resolved_by: Optional[str] = Field(None, max_length=120)


class AvailabilityRequest(BaseModel):
    available: bool


class PolicyUpdateRequest(BaseModel):
    """Only the fields that are sent change; the rest carry over."""

    free_cancellation_window_ms: Optional[int] = Field(None, ge=0)
    late_cancellation_fee: Optional[float] = Field(None, ge=0)
    enable_cancellation_fee: Optional[bool] = None
    cancellation_fee_to_driver_percent: Optional[int] = Field(None, ge=0, le=100)
    no_show_wait_time_ms: Optional[int] = Field(None, ge=0)
    no_show_fee: Optional[float] = Field(None, ge=0)
    enable_no_show_fee: Optional[bool] = None
    no_show_fee_to_driver_percent: Optional[int] = Field(None, ge=0, le=100)
    driver_late_threshold_ms: Optional[int] = Field(None, ge=0)
    enable_driver_late_waiver: Optional[bool] = None
    max_active_bookings: Optional[int] = Field(None, ge=1)
    enable_active_booking_limit: Optional[bool] = None
    max_cancellations_per_day: Optional[int] = Field(None, ge=0)
    enable_cancellation_limit: Optional[bool] = None
    dispute_window_hours: Optional[int] = Field(None, ge=0)
    enable_dispute: Optional[bool] = None
    assignment_timeout_ms: Optional[int] = Field(None, ge=0)
    updated_by: Optional[str] = Field(None, max_length=120)


# ── Responses ─────────────────────────────────────────────────────────


class DriverSnapshotResponse(BaseModel):
    driver_id: int
    name: str
    phone: str
    vehicle_plate: str = ""
    vehicle_model: str = ""
    vehicle_color: str = ""

    model_config = {"from_attributes": True}


class StatusHistoryResponse(BaseModel):
    sequence: int
    status: BookingStatus
    timestamp: datetime
    actor: Actor
    note: str = ""

    model_config = {"from_attributes": True}


class RatingResponse(BaseModel):
    stars: int
    rated_at: datetime
    tip: float = 0
    reasons: list[str] = []
    comment: str = ""

    model_config = {"from_attributes": True}


class BookingResponse(BaseModel):
    id: int
    customer_id: int
    version: int
    pickup_location: str
    dropoff_location: str
    pickup_at: datetime
    vehicle_name: str
    fare: float
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    status: BookingStatus
    driver: Optional[DriverSnapshotResponse] = None
    driver_assigned_at: Optional[datetime] = None
    driver_en_route_at: Optional[datetime] = None
    driver_arrived_at: Optional[datetime] = None
    trip_started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    rejected_driver_ids: list[int] = []
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[Actor] = None
    cancellation_reason: Optional[str] = None
    cancellation_fee: float = 0
    cancellation_fee_reason: Optional[str] = None
    cancellation_fee_status: Optional[FeeStatus] = None
    is_no_show: bool = False
    no_show_fee: float = 0
    dispute_id: Optional[int] = None
    customer_rating: Optional[RatingResponse] = None
    driver_rating: Optional[RatingResponse] = None
    status_history: list[StatusHistoryResponse] = []
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class FeeResponse(BaseModel):
    fee: float
    reason: FeeReason
    driver_share: float = 0
    elapsed_ms: Optional[int] = None
    charged: bool
    fee_status: FeeStatus

    model_config = {"from_attributes": True}


class NoShowResponse(BaseModel):
    eligible: bool
    waited_ms: int
    required_ms: int
    remaining_ms: int
    fee: float = 0
    reason: FeeReason
    driver_share: float = 0

    model_config = {"from_attributes": True}


class TransitionResponse(BaseModel):
    booking: BookingResponse
    previous_status: BookingStatus
    policy_version: int
    fee: Optional[FeeResponse] = None
    no_show: Optional[NoShowResponse] = None

    model_config = {"from_attributes": True}


class DriverResponse(BaseModel):
    id: int
    name: str
    phone: str
    vehicle_plate: str
    vehicle_model: str
    vehicle_color: str
    status: DriverStatus
    current_booking_id: Optional[int] = None
    rating: float
    rating_count: int
    total_trips: int
    total_earnings: float
    total_tips: float

    model_config = {"from_attributes": True}


class DisputeResponse(BaseModel):
    id: int
    booking_id: int
    customer_id: int
    driver_id: Optional[int] = None
    raised_by: Actor
    reason: DisputeReason
    description: str
    evidence: list[str] = []
    status: DisputeStatus
    resolution: Optional[str] = None
    resolved_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class PolicyResponse(BaseModel):
    version: int
    free_cancellation_window_ms: int
    late_cancellation_fee: float
    enable_cancellation_fee: bool
    cancellation_fee_to_driver_percent: int
    no_show_wait_time_ms: int
    no_show_fee: float
    enable_no_show_fee: bool
    no_show_fee_to_driver_percent: int
    driver_late_threshold_ms: int
    enable_driver_late_waiver: bool
    max_active_bookings: int
    enable_active_booking_limit: bool
    max_cancellations_per_day: int
    enable_cancellation_limit: bool
    dispute_window_hours: int
    enable_dispute: bool
    assignment_timeout_ms: int

    model_config = {"from_attributes": True}


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    detail: str
    code: str
    details: dict = {}
