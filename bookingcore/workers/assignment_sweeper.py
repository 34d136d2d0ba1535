"""
Assignment-Timeout Sweeper
==========================

Runs every ``ASSIGNMENT_SWEEP_INTERVAL_SECONDS`` (default 30 s).

A driver who neither accepts nor rejects within ``assignment_timeout_ms``
loses the booking: the system actor issues the same
``driver_assigned -> confirmed`` reversion a rejection would, which
releases the driver and records no fee.

Concurrency safety
------------------
* **Redis distributed lock** ensures only one API process sweeps at a time.
* Each stale booking is reverted in **its own transaction**.  The driver may
  accept at the same moment; whichever version-guarded write lands first
  wins and the loser gets a stale-state rejection, which the sweeper logs
  and skips rather than retrying.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bookingcore.config import settings
from bookingcore.domain.enums import Actor
from bookingcore.domain.errors import ConcurrencyConflict, InvalidTransition, PolicyViolation
from bookingcore.infrastructure.database import async_session_factory
from bookingcore.infrastructure.locks import DistributedLock
from bookingcore.infrastructure.redis_client import get_redis
from bookingcore.infrastructure.repositories import (
    BookingRepository,
    PolicyConfigRepository,
)
from bookingcore.services.booking_state_machine import (
    BookingStateMachine,
    TransitionContext,
)

logger = logging.getLogger(__name__)

LOCK_NAME = "assignment_sweeper"

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


# ── Public API ────────────────────────────────────────────────────────


async def start_sweeper_loop() -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop())
    logger.info(
        "Assignment sweeper started (interval=%ds)",
        settings.assignment_sweep_interval_seconds,
    )


async def stop_sweeper_loop() -> None:
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    logger.info("Assignment sweeper stopped")


# ── Internals ─────────────────────────────────────────────────────────


async def _loop() -> None:
    assert _stop_event is not None
    while not _stop_event.is_set():
        try:
            await run_sweep_cycle()
        except Exception:
            logger.exception("Unhandled error in assignment sweep")
        try:
            await asyncio.wait_for(
                _stop_event.wait(),
                timeout=settings.assignment_sweep_interval_seconds,
            )
            break
        except asyncio.TimeoutError:
            pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def run_sweep_cycle(
    session_factory: async_sessionmaker[AsyncSession] = async_session_factory,
    redis=None,
    clock: Callable[[], datetime] = _utcnow,
) -> int:
    """Revert every timed-out assignment.  Returns the number reverted."""
    redis = redis or await get_redis()
    lock = DistributedLock(redis, LOCK_NAME, ttl_seconds=60)

    if not await lock.acquire():
        logger.debug("Lock held by another worker – skipping sweep")
        return 0

    reverted = 0
    try:
        now = clock()
        async with session_factory() as session:
            policy = await PolicyConfigRepository(session).get_current()
            stale = await BookingRepository(session).list_stale_assignments(
                now - policy.assignment_timeout
            )
            await session.commit()

        for booking_id in stale:
            if await _expire_one(session_factory, booking_id, now):
                reverted += 1

        if reverted:
            logger.info("Assignment sweep: %d bookings returned to confirmed", reverted)
    except Exception:
        logger.exception("Error in assignment sweep")
    finally:
        await lock.release()

    return reverted


async def _expire_one(
    session_factory: async_sessionmaker[AsyncSession],
    booking_id: int,
    now: datetime,
) -> bool:
    async with session_factory() as session:
        machine = BookingStateMachine(session)
        try:
            await machine.expire_assignment(
                booking_id, Actor.SYSTEM, TransitionContext(now=now)
            )
            await session.commit()
            return True
        except (ConcurrencyConflict, InvalidTransition, PolicyViolation) as exc:
            # The driver acted first
            await session.rollback()
            logger.info("Booking %s not expired: %s", booking_id, exc.code)
            return False
