"""
Concurrency safety tests.

Demonstrates:
1. Two bookings racing for one driver: exactly one claim wins.
2. A driver accepting while the sweeper expires the same assignment:
   exactly one of the two writes lands.
3. The version guard refuses a write based on a stale read.
4. Distributed lock prevents simultaneous acquire.

The racing requests each get their own session; the test's own session is
committed first and left idle until the race is over.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from bookingcore.domain.enums import Actor, BookingStatus, DriverStatus
from bookingcore.domain.errors import BookingError, DriverUnavailable
from bookingcore.infrastructure.locks import DistributedLock, LockNotAcquired
from bookingcore.infrastructure.repositories import BookingRepository, DriverRepository
from bookingcore.services.booking_state_machine import (
    BookingStateMachine,
    TransitionContext,
)

S = BookingStatus


def _machine(session, clock):
    return BookingStateMachine(session, clock=clock, business_timezone="Asia/Bangkok")


class TestDriverClaimRace:
    @pytest.mark.asyncio
    async def test_one_driver_two_bookings(
        self, session, session_factory, clock, booking_in, driver, other_customer
    ):
        first = await booking_in(S.CONFIRMED)
        second = await booking_in(S.CONFIRMED, customer_id=other_customer.id)
        await session.commit()

        async def assign(booking_id: int) -> str:
            async with session_factory() as s:
                try:
                    await _machine(s, clock).assign_driver(booking_id, driver.id)
                    await s.commit()
                    return "assigned"
                except DriverUnavailable:
                    await s.rollback()
                    return "unavailable"

        outcomes = await asyncio.gather(assign(first.id), assign(second.id))
        assert sorted(outcomes) == ["assigned", "unavailable"]

        machine = _machine(session, clock)
        bookings = [await machine.get_booking(first.id), await machine.get_booking(second.id)]
        winners = [b for b in bookings if b.status == S.DRIVER_ASSIGNED]
        losers = [b for b in bookings if b.status == S.CONFIRMED]
        assert len(winners) == 1 and len(losers) == 1
        assert losers[0].driver is None

        claimed = await machine.get_driver(driver.id)
        assert claimed.status == DriverStatus.BUSY
        assert claimed.current_booking_id == winners[0].id

    @pytest.mark.asyncio
    async def test_claim_is_conditional(self, session, driver, clock):
        drivers = DriverRepository(session)
        assert await drivers.claim(driver.id, 1, clock()) is True
        assert await drivers.claim(driver.id, 2, clock()) is False

        held = await drivers.get(driver.id)
        assert held.current_booking_id == 1

        await drivers.release(driver.id)
        await drivers.release(driver.id)
        assert (await drivers.get(driver.id)).status == DriverStatus.AVAILABLE


class TestAcceptVersusExpiry:
    @pytest.mark.asyncio
    async def test_exactly_one_write_lands(
        self, session, session_factory, clock, booking_in, driver
    ):
        booking = await booking_in(S.DRIVER_ASSIGNED)
        await session.commit()
        clock.advance(minutes=6)

        async def act(operation) -> str:
            async with session_factory() as s:
                try:
                    await operation(_machine(s, clock))
                    await s.commit()
                    return "ok"
                except BookingError as exc:
                    await s.rollback()
                    return exc.code

        outcomes = await asyncio.gather(
            act(lambda m: m.accept_assignment(booking.id, driver.id)),
            act(lambda m: m.expire_assignment(booking.id, Actor.SYSTEM)),
        )
        assert outcomes.count("ok") == 1

        machine = _machine(session, clock)
        final = await machine.get_booking(booking.id)
        served_by = await machine.get_driver(driver.id)
        if final.status == S.DRIVER_EN_ROUTE:
            assert served_by.status == DriverStatus.BUSY
        else:
            assert final.status == S.CONFIRMED
            assert served_by.status == DriverStatus.AVAILABLE
            assert final.rejected_driver_ids == [driver.id]

    @pytest.mark.asyncio
    async def test_double_cancel(
        self, session, session_factory, clock, booking_in, customer
    ):
        booking = await booking_in(S.CONFIRMED)
        await session.commit()

        async def cancel() -> bool:
            async with session_factory() as s:
                try:
                    await _machine(s, clock).cancel(
                        booking.id, Actor.CUSTOMER, customer_id=customer.id
                    )
                    await s.commit()
                    return True
                except BookingError:
                    await s.rollback()
                    return False

        outcomes = await asyncio.gather(cancel(), cancel())
        assert sorted(outcomes) == [False, True]

        history = await BookingRepository(session).get_history(booking.id)
        assert [h.status for h in history].count(S.CANCELLED) == 1

    @pytest.mark.asyncio
    async def test_daily_cap_holds_under_parallel_cancels(
        self, session, session_factory, clock, machine, booking_in, customer
    ):
        await machine.publish_policy(
            {"max_active_bookings": 2, "max_cancellations_per_day": 1}
        )
        first = await booking_in(S.CONFIRMED)
        second = await booking_in(S.CONFIRMED)
        await session.commit()

        async def cancel(booking_id: int) -> str:
            async with session_factory() as s:
                try:
                    await _machine(s, clock).cancel(
                        booking_id, Actor.CUSTOMER, customer_id=customer.id
                    )
                    await s.commit()
                    return "cancelled"
                except BookingError as exc:
                    await s.rollback()
                    return exc.code

        outcomes = await asyncio.gather(cancel(first.id), cancel(second.id))
        assert sorted(outcomes) == ["cancellation_limit_reached", "cancelled"]


class TestVersionGuard:
    @pytest.mark.asyncio
    async def test_stale_save_writes_nothing(self, session, booking_in):
        booking = await booking_in(S.PENDING)
        repo = BookingRepository(session)

        stale = await repo.get(booking.id)
        fresh = await repo.get(booking.id)

        fresh.transition_to(S.CONFIRMED)
        assert await repo.save(fresh, fresh.version) is True

        stale.transition_to(S.CANCELLED)
        assert await repo.save(stale, stale.version) is False

        stored = await repo.get(booking.id)
        assert stored.status == S.CONFIRMED
        assert stored.version == booking.version + 1

    @pytest.mark.asyncio
    async def test_client_version_mismatch(self, machine, booking_in):
        booking = await booking_in(S.CONFIRMED)
        with pytest.raises(BookingError) as exc_info:
            await machine.cancel(
                booking.id,
                Actor.ADMIN,
                context=TransitionContext(expected_version=booking.version - 1),
            )
        assert exc_info.value.code == "stale_state"
        assert exc_info.value.details["current_version"] == booking.version


class TestDistributedLock:
    """Tests the Redis distributed lock logic (mocked Redis)."""

    @pytest.mark.asyncio
    async def test_acquire_succeeds(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)

        lock = DistributedLock(mock_redis, "assignment_sweeper", ttl_seconds=10)
        assert await lock.acquire() is True
        mock_redis.set.assert_called_once_with(
            "lock:assignment_sweeper", lock.token, nx=True, ex=10
        )

    @pytest.mark.asyncio
    async def test_acquire_fails_if_held(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=None)

        lock = DistributedLock(mock_redis, "assignment_sweeper", ttl_seconds=10)
        assert await lock.acquire() is False

    @pytest.mark.asyncio
    async def test_release_checks_token(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)
        mock_redis.eval = AsyncMock(return_value=1)

        lock = DistributedLock(mock_redis, "assignment_sweeper", ttl_seconds=10)
        await lock.acquire()
        assert await lock.release() is True

        args = mock_redis.eval.call_args.args
        assert args[1:] == (1, "lock:assignment_sweeper", lock.token)

    @pytest.mark.asyncio
    async def test_release_after_expiry_is_noop(self):
        mock_redis = AsyncMock()
        mock_redis.eval = AsyncMock(return_value=0)

        lock = DistributedLock(mock_redis, "assignment_sweeper")
        assert await lock.release() is False

    @pytest.mark.asyncio
    async def test_context_manager_acquire_fail_raises(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=False)

        lock = DistributedLock(mock_redis, "assignment_sweeper", ttl_seconds=10)
        with pytest.raises(LockNotAcquired, match="Could not acquire lock"):
            async with lock:
                pass
        mock_redis.eval.assert_not_called()

    @pytest.mark.asyncio
    async def test_context_manager_releases(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)
        mock_redis.eval = AsyncMock(return_value=1)

        async with DistributedLock(mock_redis, "assignment_sweeper"):
            pass
        mock_redis.eval.assert_called_once()
