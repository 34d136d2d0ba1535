"""
Driver Assignment Coordinator
=============================

Guarantees **at most one active booking per driver**.

``claim`` is a single conditional UPDATE (``... WHERE status = 'available'``)
so two bookings racing for the same driver cannot both win: on PostgreSQL
the second statement blocks on the row lock, re-evaluates the predicate
after the first commits and matches zero rows.

``release`` is unconditional and idempotent.  It runs inside the same
transaction as the booking write that frees the driver, so a release and a
later claim on the same driver are ordered by that transaction boundary.
"""

from __future__ import annotations

import logging
from datetime import datetime

from bookingcore.domain.entities import Driver
from bookingcore.domain.errors import DriverUnavailable, NotFound
from bookingcore.infrastructure.repositories import DriverRepository

logger = logging.getLogger(__name__)


class DriverAssignmentCoordinator:
    def __init__(self, drivers: DriverRepository):
        self.drivers = drivers

    async def claim(self, driver_id: int, booking_id: int, now: datetime) -> Driver:
        """Mark *driver_id* busy on behalf of *booking_id* or raise ``DriverUnavailable``."""
        claimed = await self.drivers.claim(driver_id, booking_id, now)
        if not claimed:
            driver = await self.drivers.get(driver_id)
            if driver is None:
                raise NotFound(
                    f"Driver {driver_id} not found", details={"driver_id": driver_id}
                )
            logger.info(
                "Claim of driver %s for booking %s refused (status=%s)",
                driver_id,
                booking_id,
                driver.status.value,
            )
            raise DriverUnavailable(
                f"Driver {driver_id} is not available",
                details={"driver_id": driver_id, "status": driver.status.value},
            )

        driver = await self.drivers.get(driver_id)
        logger.debug("Driver %s claimed for booking %s", driver_id, booking_id)
        return driver

    async def release(self, driver_id: int) -> None:
        await self.drivers.release(driver_id)
        logger.debug("Driver %s released", driver_id)
