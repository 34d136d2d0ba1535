"""
Error taxonomy for the booking core.

Every error carries a machine-readable ``code`` so the presentation layer
can render an exact explanation.  Only ``ConcurrencyConflict`` is worth a
single retry at the call site (refetch first); everything else is terminal
for the request.
"""

from __future__ import annotations

from typing import Any, Optional


class BookingError(Exception):
    """Base class for all booking-core decisions that reject a request."""

    default_code = "booking_error"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(message)


class InvalidTransition(BookingError):
    """Requested status is not an allowed successor of the current one."""

    default_code = "invalid_transition"


class ConcurrencyConflict(BookingError):
    """Booking or driver changed between read and write."""

    default_code = "stale_state"


class DriverUnavailable(BookingError):
    """Claim failed because the driver is not ``available``."""

    default_code = "driver_unavailable"


class PolicyViolation(BookingError):
    default_code = "policy_violation"


class Forbidden(PolicyViolation):
    """The actor may not perform this operation on this booking."""

    default_code = "actor_not_permitted"


class NotFound(BookingError):
    default_code = "not_found"
