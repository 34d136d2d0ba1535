"""
SQLAlchemy ORM models  (maps to PostgreSQL).

Tables
------
* ``customers``               -- registered passengers
* ``drivers``                 -- service providers; ``status`` is the claim target
* ``bookings``                -- aggregate root; ``version`` guards every write
* ``booking_status_history``  -- append-only audit trail, one row per transition
* ``disputes``                -- raised against closed bookings
* ``policy_configs``          -- versioned policy snapshots, never updated in place

Indexes
-------
* **B-Tree** on ``bookings.status``, ``customer_id``, ``driver_id`` for the
  sweeper, the per-customer limits and the driver look-ups.
* **Unique** ``(booking_id, sequence)`` on the history so two writers can
  never both append the same step.
"""

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    func,
)

from .database import Base
from bookingcore.domain.enums import (
    Actor,
    BookingStatus,
    DisputeReason,
    DisputeStatus,
    DriverStatus,
    FeeStatus,
    PaymentMethod,
    PaymentStatus,
)


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime that always round-trips as UTC.

    SQLite drops the offset on storage; values read back naive are
    re-attached to UTC so domain arithmetic never mixes naive and aware.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def _enum(enum_cls: type[enum.Enum], name: str) -> Enum:
    # Persist the lowercase values, not the member names
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
    )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CustomerModel(Base):
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    rating = Column(Float, default=4.0, nullable=False)
    rating_count = Column(Integer, default=0, nullable=False)
    created_at = Column(UTCDateTime, default=_utcnow, server_default=func.now())


class DriverModel(Base):
    __tablename__ = "drivers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False)
    phone = Column(String(32), nullable=False)
    vehicle_plate = Column(String(32), default="", nullable=False)
    vehicle_model = Column(String(64), default="", nullable=False)
    vehicle_color = Column(String(32), default="", nullable=False)
    status = Column(
        _enum(DriverStatus, "driver_status"),
        default=DriverStatus.OFFLINE,
        nullable=False,
    )
    # Linked passenger account, used to refuse self-assignment
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=True)

    # Claim marker: set together with status=busy, cleared on release
    current_booking_id = Column(Integer, nullable=True)
    claimed_at = Column(UTCDateTime, nullable=True)

    rating = Column(Float, default=4.0, nullable=False)
    rating_count = Column(Integer, default=0, nullable=False)
    total_trips = Column(Integer, default=0, nullable=False)
    total_earnings = Column(Numeric(12, 2), default=0, nullable=False)
    total_tips = Column(Numeric(12, 2), default=0, nullable=False)

    created_at = Column(UTCDateTime, default=_utcnow, server_default=func.now())
    updated_at = Column(
        UTCDateTime, default=_utcnow, server_default=func.now(), onupdate=_utcnow
    )

    __table_args__ = (Index("idx_drivers_status", "status"),)


class BookingModel(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False)
    version = Column(Integer, default=1, nullable=False)

    pickup_location = Column(String(255), nullable=False)
    dropoff_location = Column(String(255), nullable=False)
    pickup_lat = Column(Float, nullable=True)
    pickup_lng = Column(Float, nullable=True)
    dropoff_lat = Column(Float, nullable=True)
    dropoff_lng = Column(Float, nullable=True)
    pickup_at = Column(UTCDateTime, nullable=False)
    vehicle_name = Column(String(120), default="", nullable=False)
    fare = Column(Numeric(12, 2), nullable=False)

    payment_method = Column(
        _enum(PaymentMethod, "payment_method"),
        default=PaymentMethod.CASH,
        nullable=False,
    )
    payment_status = Column(
        _enum(PaymentStatus, "payment_status"),
        default=PaymentStatus.PENDING,
        nullable=False,
    )
    status = Column(
        _enum(BookingStatus, "booking_status"),
        default=BookingStatus.PENDING,
        nullable=False,
    )

    # Driver snapshot, copied at assignment time
    driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=True)
    driver_name = Column(String(120), nullable=True)
    driver_phone = Column(String(32), nullable=True)
    driver_vehicle_plate = Column(String(32), nullable=True)
    driver_vehicle_model = Column(String(64), nullable=True)
    driver_vehicle_color = Column(String(32), nullable=True)

    driver_assigned_at = Column(UTCDateTime, nullable=True)
    driver_en_route_at = Column(UTCDateTime, nullable=True)
    driver_arrived_at = Column(UTCDateTime, nullable=True)
    trip_started_at = Column(UTCDateTime, nullable=True)
    completed_at = Column(UTCDateTime, nullable=True)
    rejected_driver_ids = Column(JSON, default=list, nullable=False)

    cancelled_at = Column(UTCDateTime, nullable=True)
    cancelled_by = Column(_enum(Actor, "actor"), nullable=True)
    cancellation_reason = Column(String(64), nullable=True)
    cancellation_fee = Column(Numeric(12, 2), default=0, nullable=False)
    cancellation_fee_reason = Column(String(32), nullable=True)
    cancellation_fee_status = Column(_enum(FeeStatus, "fee_status"), nullable=True)

    is_no_show = Column(Boolean, default=False, nullable=False)
    no_show_fee = Column(Numeric(12, 2), default=0, nullable=False)
    no_show_reported_at = Column(UTCDateTime, nullable=True)

    dispute_id = Column(Integer, nullable=True)
    customer_rating = Column(JSON(none_as_null=True), nullable=True)
    driver_rating = Column(JSON(none_as_null=True), nullable=True)

    created_at = Column(UTCDateTime, default=_utcnow, server_default=func.now())
    updated_at = Column(
        UTCDateTime, default=_utcnow, server_default=func.now(), onupdate=_utcnow
    )

    __table_args__ = (
        Index("idx_bookings_status", "status"),
        Index("idx_bookings_customer", "customer_id"),
        Index("idx_bookings_driver", "driver_id"),
    )


class StatusHistoryModel(Base):
    __tablename__ = "booking_status_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False)
    sequence = Column(Integer, nullable=False)
    status = Column(_enum(BookingStatus, "booking_status"), nullable=False)
    actor = Column(_enum(Actor, "actor"), nullable=False)
    note = Column(Text, default="", nullable=False)
    timestamp = Column(UTCDateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint("booking_id", "sequence", name="uq_history_booking_sequence"),
        Index("idx_history_booking", "booking_id"),
    )


class DisputeModel(Base):
    __tablename__ = "disputes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), unique=True, nullable=False)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False)
    driver_id = Column(Integer, nullable=True)
    raised_by = Column(_enum(Actor, "actor"), nullable=False)
    reason = Column(_enum(DisputeReason, "dispute_reason"), nullable=False)
    description = Column(Text, nullable=False)
    evidence = Column(JSON, default=list, nullable=False)
    status = Column(
        _enum(DisputeStatus, "dispute_status"),
        default=DisputeStatus.OPEN,
        nullable=False,
    )
    resolution = Column(Text, nullable=True)
    resolved_by = Column(String(120), nullable=True)

    created_at = Column(UTCDateTime, default=_utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (Index("idx_disputes_status", "status"),)


class PolicyConfigModel(Base):
    __tablename__ = "policy_configs"

    version = Column(Integer, primary_key=True, autoincrement=False)
    payload = Column(JSON, nullable=False)
    created_by = Column(String(120), nullable=True)
    created_at = Column(UTCDateTime, default=_utcnow, nullable=False)
