"""
Shared test fixtures.

Each test gets its own SQLite file (via aiosqlite) with the production
models, so tests run without Docker / PostgreSQL / Redis.  Transactions
open with ``BEGIN IMMEDIATE``: concurrent sessions then queue on the
database write lock the way PostgreSQL writers queue on row locks, which
is what the race tests rely on.

Time is a ``FakeClock`` injected into the state machine; tests move it
with ``clock.advance(...)`` instead of sleeping.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from bookingcore.domain.entities import Customer, Driver
from bookingcore.domain.enums import BookingStatus, DriverStatus
from bookingcore.infrastructure.database import Base
from bookingcore.infrastructure.repositories import (
    CustomerRepository,
    DriverRepository,
)
from bookingcore.services.booking_state_machine import BookingStateMachine

# 10:00 in Bangkok
T0 = datetime(2026, 3, 2, 3, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


# ── Database ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _autocommit_driver(dbapi_connection, connection_record):
        # Let SQLAlchemy emit BEGIN itself
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def machine(session, clock) -> BookingStateMachine:
    return BookingStateMachine(session, clock=clock, business_timezone="Asia/Bangkok")


# ── Parties ───────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def customer(session) -> Customer:
    return await CustomerRepository(session).create(
        Customer(name="Somchai Wongsa", email="somchai@example.com")
    )


@pytest_asyncio.fixture
async def other_customer(session) -> Customer:
    return await CustomerRepository(session).create(
        Customer(name="Nattaya Chaiyo", email="nattaya@example.com")
    )


@pytest_asyncio.fixture
async def driver(session) -> Driver:
    return await DriverRepository(session).create(
        Driver(
            name="Prasert Kaewmanee",
            phone="0812345601",
            vehicle_plate="1กข 1234",
            vehicle_model="Toyota Camry",
            vehicle_color="Silver",
            status=DriverStatus.AVAILABLE,
        )
    )


@pytest_asyncio.fixture
async def second_driver(session) -> Driver:
    return await DriverRepository(session).create(
        Driver(
            name="Wichai Saelim",
            phone="0812345602",
            vehicle_plate="2คง 5678",
            vehicle_model="Honda Accord",
            status=DriverStatus.AVAILABLE,
        )
    )


# ── Bookings ──────────────────────────────────────────────────────────

_PATH = [
    BookingStatus.PENDING,
    BookingStatus.CONFIRMED,
    BookingStatus.DRIVER_ASSIGNED,
    BookingStatus.DRIVER_EN_ROUTE,
    BookingStatus.IN_PROGRESS,
    BookingStatus.COMPLETED,
]


@pytest.fixture
def booking_in(machine, customer, driver):
    """Factory: create a booking and walk it forward to *status*.

    Bookings default to ``customer`` and ``driver``; pass other ids to avoid
    the one-active-booking limit or to race two bookings.
    """

    async def _make(status: BookingStatus, customer_id=None, driver_id=None):
        customer_id = customer_id or customer.id
        driver_id = driver_id or driver.id
        booking = await machine.create_booking(
            customer_id=customer_id,
            pickup_location="Suvarnabhumi Airport, Gate 4",
            dropoff_location="Siam Paragon",
            pickup_at=machine.clock() + timedelta(hours=2),
            fare=Decimal("500"),
            vehicle_name="Sedan",
        )
        target = _PATH.index(status)
        if target >= 1:
            await machine.confirm(booking.id)
        if target >= 2:
            await machine.assign_driver(booking.id, driver_id)
        if target >= 3:
            await machine.accept_assignment(booking.id, driver_id)
        if target >= 4:
            await machine.start_trip(booking.id, driver_id)
        if target >= 5:
            await machine.complete_trip(booking.id, driver_id=driver_id)
        return await machine.get_booking(booking.id)

    return _make
