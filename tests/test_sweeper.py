"""Tests for the assignment-timeout sweeper (mocked Redis, SQLite database)."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from bookingcore.domain.enums import Actor, BookingStatus, DriverStatus
from bookingcore.workers.assignment_sweeper import run_sweep_cycle

S = BookingStatus


def _redis(lock_free: bool = True) -> AsyncMock:
    redis = AsyncMock()
    redis.set = AsyncMock(return_value=lock_free)
    redis.eval = AsyncMock(return_value=1)
    return redis


class TestSweepCycle:
    @pytest.mark.asyncio
    async def test_reverts_timed_out_assignment(
        self, session, session_factory, clock, booking_in, machine, driver
    ):
        booking = await booking_in(S.DRIVER_ASSIGNED)
        await session.commit()
        clock.advance(minutes=5, seconds=1)

        redis = _redis()
        reverted = await run_sweep_cycle(session_factory, redis=redis, clock=clock)

        assert reverted == 1
        expired = await machine.get_booking(booking.id)
        assert expired.status == S.CONFIRMED
        assert expired.driver is None
        assert expired.rejected_driver_ids == [driver.id]
        assert expired.status_history[-1].actor == Actor.SYSTEM
        assert (await machine.get_driver(driver.id)).status == DriverStatus.AVAILABLE
        redis.eval.assert_called_once()

    @pytest.mark.asyncio
    async def test_leaves_fresh_assignment(
        self, session, session_factory, clock, booking_in, machine
    ):
        booking = await booking_in(S.DRIVER_ASSIGNED)
        await session.commit()
        clock.advance(minutes=4)

        assert await run_sweep_cycle(session_factory, redis=_redis(), clock=clock) == 0
        assert (await machine.get_booking(booking.id)).status == S.DRIVER_ASSIGNED

    @pytest.mark.asyncio
    async def test_skips_accepted_booking(
        self, session, session_factory, clock, booking_in, machine
    ):
        booking = await booking_in(S.DRIVER_EN_ROUTE)
        await session.commit()
        clock.advance(minutes=30)

        assert await run_sweep_cycle(session_factory, redis=_redis(), clock=clock) == 0
        assert (await machine.get_booking(booking.id)).status == S.DRIVER_EN_ROUTE

    @pytest.mark.asyncio
    async def test_several_bookings(
        self,
        session,
        session_factory,
        clock,
        booking_in,
        machine,
        other_customer,
        second_driver,
    ):
        first = await booking_in(S.DRIVER_ASSIGNED)
        second = await booking_in(
            S.DRIVER_ASSIGNED,
            customer_id=other_customer.id,
            driver_id=second_driver.id,
        )
        await session.commit()
        clock.advance(minutes=10)

        assert await run_sweep_cycle(session_factory, redis=_redis(), clock=clock) == 2
        for booking_id in (first.id, second.id):
            assert (await machine.get_booking(booking_id)).status == S.CONFIRMED

    @pytest.mark.asyncio
    async def test_lock_held_elsewhere(
        self, session, session_factory, clock, booking_in, machine
    ):
        booking = await booking_in(S.DRIVER_ASSIGNED)
        await session.commit()
        clock.advance(minutes=10)

        redis = _redis(lock_free=False)
        assert await run_sweep_cycle(session_factory, redis=redis, clock=clock) == 0
        assert (await machine.get_booking(booking.id)).status == S.DRIVER_ASSIGNED
        redis.eval.assert_not_called()
