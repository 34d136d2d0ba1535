"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work), exposes
domain-relevant queries only and hands back domain entities, never ORM rows.

Every write that other requests may race on is a single conditional
``UPDATE ... WHERE <expected state>``; the caller inspects the returned
flag instead of reading first and writing later.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    BookingModel,
    CustomerModel,
    DisputeModel,
    DriverModel,
    PolicyConfigModel,
    StatusHistoryModel,
)
from bookingcore.domain.entities import (
    Booking,
    Customer,
    Dispute,
    Driver,
    DriverSnapshot,
    Location,
    RatingRecord,
    StatusHistoryEntry,
)
from bookingcore.domain.enums import (
    TERMINAL_STATUSES,
    Actor,
    BookingStatus,
    DriverStatus,
)
from bookingcore.domain.policy import DEFAULT_POLICY, PolicyConfig


# ── Mapping helpers ───────────────────────────────────────────────────


def _rating_to_json(record: Optional[RatingRecord]) -> Optional[dict[str, Any]]:
    if record is None:
        return None
    return {
        "stars": record.stars,
        "rated_at": record.rated_at.isoformat(),
        "tip": str(record.tip),
        "reasons": list(record.reasons),
        "comment": record.comment,
    }


def _rating_from_json(data: Optional[dict[str, Any]]) -> Optional[RatingRecord]:
    if not data:
        return None
    return RatingRecord(
        stars=int(data["stars"]),
        rated_at=datetime.fromisoformat(data["rated_at"]),
        tip=Decimal(data.get("tip", "0")),
        reasons=tuple(data.get("reasons", ())),
        comment=data.get("comment", ""),
    )


def _location(lat: Optional[float], lng: Optional[float]) -> Optional[Location]:
    if lat is None or lng is None:
        return None
    return Location(lat, lng)


def _booking_from_model(
    m: BookingModel, history: list[StatusHistoryEntry]
) -> Booking:
    driver = None
    if m.driver_id is not None:
        driver = DriverSnapshot(
            driver_id=m.driver_id,
            name=m.driver_name or "",
            phone=m.driver_phone or "",
            vehicle_plate=m.driver_vehicle_plate or "",
            vehicle_model=m.driver_vehicle_model or "",
            vehicle_color=m.driver_vehicle_color or "",
        )
    return Booking(
        id=m.id,
        customer_id=m.customer_id,
        pickup_location=m.pickup_location,
        dropoff_location=m.dropoff_location,
        pickup=_location(m.pickup_lat, m.pickup_lng),
        dropoff=_location(m.dropoff_lat, m.dropoff_lng),
        pickup_at=m.pickup_at,
        vehicle_name=m.vehicle_name,
        fare=Decimal(m.fare),
        payment_method=m.payment_method,
        payment_status=m.payment_status,
        status=m.status,
        version=m.version,
        driver=driver,
        driver_assigned_at=m.driver_assigned_at,
        driver_en_route_at=m.driver_en_route_at,
        driver_arrived_at=m.driver_arrived_at,
        trip_started_at=m.trip_started_at,
        completed_at=m.completed_at,
        rejected_driver_ids=list(m.rejected_driver_ids or []),
        cancelled_at=m.cancelled_at,
        cancelled_by=m.cancelled_by,
        cancellation_reason=m.cancellation_reason,
        cancellation_fee=Decimal(m.cancellation_fee or 0),
        cancellation_fee_reason=m.cancellation_fee_reason,
        cancellation_fee_status=m.cancellation_fee_status,
        is_no_show=m.is_no_show,
        no_show_fee=Decimal(m.no_show_fee or 0),
        no_show_reported_at=m.no_show_reported_at,
        dispute_id=m.dispute_id,
        customer_rating=_rating_from_json(m.customer_rating),
        driver_rating=_rating_from_json(m.driver_rating),
        status_history=history,
        created_at=m.created_at,
    )


def _booking_columns(b: Booking) -> dict[str, Any]:
    """Every mutable column of ``bookings``, taken from the entity."""
    d = b.driver
    return {
        "status": b.status,
        "payment_status": b.payment_status,
        "driver_id": d.driver_id if d else None,
        "driver_name": d.name if d else None,
        "driver_phone": d.phone if d else None,
        "driver_vehicle_plate": d.vehicle_plate if d else None,
        "driver_vehicle_model": d.vehicle_model if d else None,
        "driver_vehicle_color": d.vehicle_color if d else None,
        "driver_assigned_at": b.driver_assigned_at,
        "driver_en_route_at": b.driver_en_route_at,
        "driver_arrived_at": b.driver_arrived_at,
        "trip_started_at": b.trip_started_at,
        "completed_at": b.completed_at,
        "rejected_driver_ids": list(b.rejected_driver_ids),
        "cancelled_at": b.cancelled_at,
        "cancelled_by": b.cancelled_by,
        "cancellation_reason": b.cancellation_reason,
        "cancellation_fee": b.cancellation_fee,
        "cancellation_fee_reason": b.cancellation_fee_reason,
        "cancellation_fee_status": b.cancellation_fee_status,
        "is_no_show": b.is_no_show,
        "no_show_fee": b.no_show_fee,
        "no_show_reported_at": b.no_show_reported_at,
        "dispute_id": b.dispute_id,
        "customer_rating": _rating_to_json(b.customer_rating),
        "driver_rating": _rating_to_json(b.driver_rating),
    }


def _driver_from_model(m: DriverModel) -> Driver:
    return Driver(
        id=m.id,
        name=m.name,
        phone=m.phone,
        vehicle_plate=m.vehicle_plate,
        vehicle_model=m.vehicle_model,
        vehicle_color=m.vehicle_color,
        status=m.status,
        customer_id=m.customer_id,
        current_booking_id=m.current_booking_id,
        claimed_at=m.claimed_at,
        rating=m.rating,
        rating_count=m.rating_count,
        total_trips=m.total_trips,
        total_earnings=Decimal(m.total_earnings or 0),
        total_tips=Decimal(m.total_tips or 0),
    )


def _customer_from_model(m: CustomerModel) -> Customer:
    return Customer(
        id=m.id,
        name=m.name,
        email=m.email,
        rating=m.rating,
        rating_count=m.rating_count,
    )


def _dispute_from_model(m: DisputeModel) -> Dispute:
    return Dispute(
        id=m.id,
        booking_id=m.booking_id,
        customer_id=m.customer_id,
        driver_id=m.driver_id,
        raised_by=m.raised_by,
        reason=m.reason,
        description=m.description,
        evidence=list(m.evidence or []),
        status=m.status,
        resolution=m.resolution,
        resolved_by=m.resolved_by,
        created_at=m.created_at,
        updated_at=m.updated_at,
    )


# ── Repositories ──────────────────────────────────────────────────────


class BookingRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, booking: Booking) -> Booking:
        """Insert *booking* at version 1; its first history entry is the caller's."""
        row = BookingModel(
            customer_id=booking.customer_id,
            version=1,
            pickup_location=booking.pickup_location,
            dropoff_location=booking.dropoff_location,
            pickup_lat=booking.pickup.latitude if booking.pickup else None,
            pickup_lng=booking.pickup.longitude if booking.pickup else None,
            dropoff_lat=booking.dropoff.latitude if booking.dropoff else None,
            dropoff_lng=booking.dropoff.longitude if booking.dropoff else None,
            pickup_at=booking.pickup_at,
            vehicle_name=booking.vehicle_name,
            fare=booking.fare,
            payment_method=booking.payment_method,
            payment_status=booking.payment_status,
            status=booking.status,
            rejected_driver_ids=[],
            created_at=booking.created_at,
        )
        self.session.add(row)
        await self.session.flush()
        booking.id = row.id
        booking.version = row.version
        return booking

    async def get(self, booking_id: int) -> Optional[Booking]:
        row = await self.session.get(
            BookingModel, booking_id, populate_existing=True
        )
        if row is None:
            return None
        return _booking_from_model(row, await self.get_history(booking_id))

    async def get_history(self, booking_id: int) -> list[StatusHistoryEntry]:
        result = await self.session.execute(
            select(StatusHistoryModel)
            .where(StatusHistoryModel.booking_id == booking_id)
            .order_by(StatusHistoryModel.sequence)
        )
        return [
            StatusHistoryEntry(
                sequence=h.sequence,
                status=h.status,
                timestamp=h.timestamp,
                actor=h.actor,
                note=h.note,
            )
            for h in result.scalars().all()
        ]

    async def save(self, booking: Booking, expected_version: int) -> bool:
        """Write *booking* only if the stored version still equals *expected_version*.

        Returns ``False`` (and writes nothing) when another transaction got
        there first.  On success the entity's ``version`` is bumped.
        """
        values = _booking_columns(booking)
        values["version"] = expected_version + 1
        result = await self.session.execute(
            update(BookingModel)
            .where(
                BookingModel.id == booking.id,
                BookingModel.version == expected_version,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        booking.version = expected_version + 1
        return True

    async def append_history(self, booking_id: int, entry: StatusHistoryEntry) -> None:
        await self.session.execute(
            insert(StatusHistoryModel).values(
                booking_id=booking_id,
                sequence=entry.sequence,
                status=entry.status,
                actor=entry.actor,
                note=entry.note,
                timestamp=entry.timestamp,
            )
        )

    async def count_active_for_customer(self, customer_id: int) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(BookingModel)
            .where(
                BookingModel.customer_id == customer_id,
                BookingModel.status.not_in(list(TERMINAL_STATUSES)),
            )
        )
        return result.scalar() or 0

    async def count_customer_cancellations_since(
        self, customer_id: int, since: datetime
    ) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(BookingModel)
            .where(
                BookingModel.customer_id == customer_id,
                BookingModel.status == BookingStatus.CANCELLED,
                BookingModel.cancelled_by == Actor.CUSTOMER,
                BookingModel.cancelled_at >= since,
            )
        )
        return result.scalar() or 0

    async def list_stale_assignments(self, assigned_before: datetime) -> list[int]:
        """Ids of bookings still waiting on driver acceptance since before the cutoff."""
        result = await self.session.execute(
            select(BookingModel.id)
            .where(
                BookingModel.status == BookingStatus.DRIVER_ASSIGNED,
                BookingModel.driver_assigned_at <= assigned_before,
            )
            .order_by(BookingModel.driver_assigned_at)
        )
        return list(result.scalars().all())


class DriverRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, driver: Driver) -> Driver:
        row = DriverModel(
            name=driver.name,
            phone=driver.phone,
            vehicle_plate=driver.vehicle_plate,
            vehicle_model=driver.vehicle_model,
            vehicle_color=driver.vehicle_color,
            status=driver.status,
            customer_id=driver.customer_id,
            rating=driver.rating,
            rating_count=driver.rating_count,
            total_trips=driver.total_trips,
            total_earnings=driver.total_earnings,
            total_tips=driver.total_tips,
        )
        self.session.add(row)
        await self.session.flush()
        driver.id = row.id
        return driver

    async def get(self, driver_id: int) -> Optional[Driver]:
        row = await self.session.get(DriverModel, driver_id, populate_existing=True)
        return _driver_from_model(row) if row is not None else None

    async def claim(self, driver_id: int, booking_id: int, now: datetime) -> bool:
        """available -> busy in one statement; ``False`` if the driver was not available."""
        result = await self.session.execute(
            update(DriverModel)
            .where(
                DriverModel.id == driver_id,
                DriverModel.status == DriverStatus.AVAILABLE,
            )
            .values(
                status=DriverStatus.BUSY,
                current_booking_id=booking_id,
                claimed_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def release(self, driver_id: int) -> None:
        await self.session.execute(
            update(DriverModel)
            .where(DriverModel.id == driver_id)
            .values(
                status=DriverStatus.AVAILABLE,
                current_booking_id=None,
                claimed_at=None,
            )
            .execution_options(synchronize_session=False)
        )

    async def change_status(
        self, driver_id: int, expected: DriverStatus, new: DriverStatus
    ) -> bool:
        result = await self.session.execute(
            update(DriverModel)
            .where(DriverModel.id == driver_id, DriverModel.status == expected)
            .values(status=new)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def record_trip(self, driver_id: int, fare: Decimal) -> None:
        await self.session.execute(
            update(DriverModel)
            .where(DriverModel.id == driver_id)
            .values(
                total_trips=DriverModel.total_trips + 1,
                total_earnings=DriverModel.total_earnings + fare,
            )
            .execution_options(synchronize_session=False)
        )

    async def add_earnings(self, driver_id: int, amount: Decimal) -> None:
        await self.session.execute(
            update(DriverModel)
            .where(DriverModel.id == driver_id)
            .values(total_earnings=DriverModel.total_earnings + amount)
            .execution_options(synchronize_session=False)
        )

    async def add_tip(self, driver_id: int, tip: Decimal) -> None:
        await self.session.execute(
            update(DriverModel)
            .where(DriverModel.id == driver_id)
            .values(
                total_tips=DriverModel.total_tips + tip,
                total_earnings=DriverModel.total_earnings + tip,
            )
            .execution_options(synchronize_session=False)
        )

    async def update_rating(
        self, driver_id: int, expected_count: int, rating: float, rating_count: int
    ) -> bool:
        result = await self.session.execute(
            update(DriverModel)
            .where(
                DriverModel.id == driver_id,
                DriverModel.rating_count == expected_count,
            )
            .values(rating=rating, rating_count=rating_count)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class CustomerRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, customer: Customer) -> Customer:
        row = CustomerModel(
            name=customer.name,
            email=customer.email,
            rating=customer.rating,
            rating_count=customer.rating_count,
        )
        self.session.add(row)
        await self.session.flush()
        customer.id = row.id
        return customer

    async def get(self, customer_id: int) -> Optional[Customer]:
        row = await self.session.get(
            CustomerModel, customer_id, populate_existing=True
        )
        return _customer_from_model(row) if row is not None else None

    async def lock(self, customer_id: int) -> None:
        """Hold the customer row until commit so per-customer checks serialize."""
        await self.session.execute(
            select(CustomerModel.id)
            .where(CustomerModel.id == customer_id)
            .with_for_update()
        )

    async def update_rating(
        self, customer_id: int, expected_count: int, rating: float, rating_count: int
    ) -> bool:
        result = await self.session.execute(
            update(CustomerModel)
            .where(
                CustomerModel.id == customer_id,
                CustomerModel.rating_count == expected_count,
            )
            .values(rating=rating, rating_count=rating_count)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class DisputeRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, dispute: Dispute) -> Dispute:
        row = DisputeModel(
            booking_id=dispute.booking_id,
            customer_id=dispute.customer_id,
            driver_id=dispute.driver_id,
            raised_by=dispute.raised_by,
            reason=dispute.reason,
            description=dispute.description,
            evidence=list(dispute.evidence),
            status=dispute.status,
            created_at=dispute.created_at,
            updated_at=dispute.updated_at,
        )
        self.session.add(row)
        await self.session.flush()
        dispute.id = row.id
        return dispute

    async def get(self, dispute_id: int) -> Optional[Dispute]:
        row = await self.session.get(DisputeModel, dispute_id, populate_existing=True)
        return _dispute_from_model(row) if row is not None else None

    async def get_by_booking(self, booking_id: int) -> Optional[Dispute]:
        result = await self.session.execute(
            select(DisputeModel).where(DisputeModel.booking_id == booking_id)
        )
        row = result.scalar_one_or_none()
        return _dispute_from_model(row) if row is not None else None

    async def update_status(self, dispute: Dispute, expected) -> bool:
        """Persist a status change only if the stored status is still *expected*."""
        result = await self.session.execute(
            update(DisputeModel)
            .where(DisputeModel.id == dispute.id, DisputeModel.status == expected)
            .values(
                status=dispute.status,
                resolution=dispute.resolution,
                resolved_by=dispute.resolved_by,
                updated_at=dispute.updated_at,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class PolicyConfigRepository:
    """Append-only store of policy versions; the highest version is current."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_current(self) -> PolicyConfig:
        result = await self.session.execute(
            select(PolicyConfigModel)
            .order_by(PolicyConfigModel.version.desc())
            .limit(1)
        )
        row = result.scalar_one_or_none()
        if row is None:
            return DEFAULT_POLICY
        return PolicyConfig.from_mapping(row.payload, version=row.version)

    async def publish(
        self, policy: PolicyConfig, created_by: Optional[str] = None
    ) -> PolicyConfig:
        """Insert *policy* as a new version; a duplicate version fails on the PK."""
        self.session.add(
            PolicyConfigModel(
                version=policy.version,
                payload=policy.to_payload(),
                created_by=created_by,
            )
        )
        await self.session.flush()
        return policy
