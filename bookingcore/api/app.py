"""
FastAPI application factory.

* Registers routes for bookings, drivers, disputes and admin.
* Starts / stops the assignment-timeout sweeper via lifespan events.
* Maps booking-core errors onto HTTP status codes.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from bookingcore.api.errors import register_exception_handlers
from bookingcore.api.middleware import limiter
from bookingcore.api.routes import admin, bookings, disputes, drivers
from bookingcore.config import settings
from bookingcore.workers import assignment_sweeper as _sweeper

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the assignment sweeper on startup; stop on shutdown."""
    await _sweeper.start_sweeper_loop()
    yield
    await _sweeper.stop_sweeper_loop()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Transfer Booking Core API",
        description=(
            "Booking lifecycle state machine and settlement engine: "
            "validated status transitions, atomic driver assignment, "
            "cancellation / no-show fees, dispute windows and smoothed "
            "driver ratings."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    register_exception_handlers(app)

    # Routers
    app.include_router(bookings.router, prefix="/api/v1")
    app.include_router(drivers.router, prefix="/api/v1")
    app.include_router(disputes.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
