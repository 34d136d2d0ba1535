"""FastAPI dependency injection helpers."""

from datetime import datetime, timezone

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from bookingcore.infrastructure.database import async_session_factory
from bookingcore.services.booking_state_machine import BookingStateMachine


async def get_db() -> AsyncSession:  # type: ignore[misc]
    """Yield an async DB session; commit on success, rollback on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_clock():
    """Wall clock used by the state machine; overridden in tests."""
    return lambda: datetime.now(timezone.utc)


async def get_state_machine(
    db: AsyncSession = Depends(get_db),
    clock=Depends(get_clock),
) -> BookingStateMachine:
    return BookingStateMachine(db, clock=clock)
