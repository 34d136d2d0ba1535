"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 6 sample customers
  - 5 sample drivers (4 available, 1 offline; one linked to a customer account)
  - policy version 1 with the default thresholds
  - 3 sample bookings (pending, confirmed, completed)
"""

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import text

from bookingcore.domain.entities import Customer, Driver, Location
from bookingcore.domain.enums import Actor, DriverStatus, PaymentMethod
from bookingcore.domain.policy import DEFAULT_POLICY
from bookingcore.infrastructure.database import async_session_factory, engine
from bookingcore.infrastructure.repositories import (
    CustomerRepository,
    DriverRepository,
    PolicyConfigRepository,
)
from bookingcore.services.booking_state_machine import BookingStateMachine

# Suvarnabhumi Airport (approx)
AIRPORT = Location(13.6900, 100.7501)

CUSTOMERS = [
    {"name": "Somchai Wongsa", "email": "somchai@example.com"},
    {"name": "Nattaya Chaiyo", "email": "nattaya@example.com"},
    {"name": "Kittipong Srisuk", "email": "kittipong@example.com"},
    {"name": "Ploy Rattana", "email": "ploy@example.com"},
    {"name": "Anan Boonmee", "email": "anan@example.com"},
    {"name": "Malee Thongdee", "email": "malee@example.com"},
]

DRIVERS = [
    {"name": "Prasert Kaewmanee", "phone": "0812345601", "plate": "1กข 1234", "model": "Toyota Camry", "color": "Silver"},
    {"name": "Wichai Saelim", "phone": "0812345602", "plate": "2คง 5678", "model": "Honda Accord", "color": "Black"},
    {"name": "Sunee Phanit", "phone": "0812345603", "plate": "3จฉ 9012", "model": "Toyota Fortuner", "color": "White"},
    {"name": "Boonchai Jaidee", "phone": "0812345604", "plate": "4ชซ 3456", "model": "Hyundai H1", "color": "Grey"},
    {"name": "Rattana Moonsri", "phone": "0812345605", "plate": "5ญฎ 7890", "model": "Toyota Commuter", "color": "White", "offline": True},
]


async def seed():
    async with async_session_factory() as session:
        result = await session.execute(text("SELECT count(*) FROM customers"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        # ── Customers ─────────────────────────────────────────────────
        customers = CustomerRepository(session)
        created = [
            await customers.create(Customer(name=c["name"], email=c["email"]))
            for c in CUSTOMERS
        ]
        print(f"  Created {len(created)} customers")

        # ── Drivers ───────────────────────────────────────────────────
        drivers = DriverRepository(session)
        driver_rows = []
        for i, d in enumerate(DRIVERS):
            driver_rows.append(
                await drivers.create(
                    Driver(
                        name=d["name"],
                        phone=d["phone"],
                        vehicle_plate=d["plate"],
                        vehicle_model=d["model"],
                        vehicle_color=d["color"],
                        status=(
                            DriverStatus.OFFLINE
                            if d.get("offline")
                            else DriverStatus.AVAILABLE
                        ),
                        # First driver also rides as the last customer
                        customer_id=created[-1].id if i == 0 else None,
                    )
                )
            )
        print(f"  Created {len(driver_rows)} drivers")

        # ── Policy ────────────────────────────────────────────────────
        await PolicyConfigRepository(session).publish(
            DEFAULT_POLICY.next_version(), created_by="seed"
        )
        print("  Published policy version 1")

        # ── Bookings ──────────────────────────────────────────────────
        now = datetime.now(timezone.utc)
        machine = BookingStateMachine(session)

        pending = await machine.create_booking(
            customer_id=created[0].id,
            pickup_location="Suvarnabhumi Airport, Gate 4",
            dropoff_location="Siam Paragon",
            pickup=AIRPORT,
            dropoff=Location(13.7462, 100.5347),
            pickup_at=now + timedelta(hours=3),
            fare=Decimal("650"),
            vehicle_name="Sedan",
        )

        confirmed = await machine.create_booking(
            customer_id=created[1].id,
            pickup_location="Suvarnabhumi Airport, Gate 7",
            dropoff_location="Pattaya Beach Road",
            pickup=AIRPORT,
            dropoff=Location(12.9276, 100.8771),
            pickup_at=now + timedelta(hours=5),
            fare=Decimal("1800"),
            vehicle_name="SUV",
            payment_method=PaymentMethod.PROMPTPAY,
        )
        await machine.confirm(confirmed.id, Actor.ADMIN)

        done = await machine.create_booking(
            customer_id=created[2].id,
            pickup_location="Don Mueang Airport",
            dropoff_location="Chatuchak Market",
            pickup=Location(13.9126, 100.6068),
            dropoff=Location(13.7999, 100.5502),
            pickup_at=now - timedelta(hours=2),
            fare=Decimal("420"),
            vehicle_name="Sedan",
            now=now - timedelta(hours=3),
        )
        driver_id = driver_rows[1].id
        await machine.confirm(done.id, Actor.ADMIN)
        await machine.assign_driver(done.id, driver_id, Actor.ADMIN)
        await machine.accept_assignment(done.id, driver_id)
        await machine.start_trip(done.id, driver_id)
        await machine.complete_trip(done.id, Actor.DRIVER, driver_id)
        print(f"  Created bookings {pending.id} (pending), {confirmed.id} (confirmed), {done.id} (completed)")

        await session.commit()
        print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
