"""
Maps the booking-core error taxonomy onto HTTP responses.

    NotFound            -> 404
    Forbidden           -> 403
    PolicyViolation     -> 400
    InvalidTransition,
    ConcurrencyConflict,
    DriverUnavailable   -> 409

Body: ``{"detail": message, "code": code, "details": {...}}``.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from bookingcore.domain.errors import (
    BookingError,
    Forbidden,
    NotFound,
    PolicyViolation,
)

logger = logging.getLogger(__name__)

# Most specific first; Forbidden is a PolicyViolation
_STATUS_CODES: tuple[tuple[type[BookingError], int], ...] = (
    (NotFound, 404),
    (Forbidden, 403),
    (PolicyViolation, 400),
    (BookingError, 409),
)


def status_code_for(exc: BookingError) -> int:
    for cls, status_code in _STATUS_CODES:
        if isinstance(exc, cls):
            return status_code
    return 409


async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    status_code = status_code_for(exc)
    logger.debug("%s %s -> %d %s", request.method, request.url.path, status_code, exc.code)
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "code": exc.code, "details": exc.details},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BookingError, booking_error_handler)
