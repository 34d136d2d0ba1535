"""
Booking endpoints
=================

POST /api/v1/bookings                          -- create a booking (201)
GET  /api/v1/bookings/{id}                     -- booking with status history
POST /api/v1/bookings/{id}/confirm             -- pending -> confirmed
POST /api/v1/bookings/{id}/assign              -- confirmed -> driver_assigned
POST /api/v1/bookings/{id}/accept              -- driver accepts -> driver_en_route
POST /api/v1/bookings/{id}/reject              -- driver rejects -> confirmed
POST /api/v1/bookings/{id}/expire-assignment   -- acceptance timed out -> confirmed
POST /api/v1/bookings/{id}/arrived             -- record driver arrival at pickup
POST /api/v1/bookings/{id}/start               -- driver_en_route -> in_progress
POST /api/v1/bookings/{id}/complete            -- in_progress -> completed
POST /api/v1/bookings/{id}/cancel              -- cancel, returns fee + reason
POST /api/v1/bookings/{id}/no-show             -- report customer no-show
GET  /api/v1/bookings/{id}/cancellation-quote  -- fee a cancel would carry now
POST /api/v1/bookings/{id}/rating              -- rate the other party
POST /api/v1/bookings/{id}/disputes            -- open a dispute (201)
GET  /api/v1/bookings/{id}/dispute             -- the dispute raised on a booking

Every state change answers with the booking, the status it left, the
policy version applied and any fee / no-show decision.
"""

from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends, Request

from bookingcore.api.dependencies import get_state_machine
from bookingcore.api.middleware import limiter
from bookingcore.api.schemas import (
    AssignDriverRequest,
    BookingCreateRequest,
    BookingResponse,
    CancelRequest,
    CompleteTripRequest,
    DisputeCreateRequest,
    DisputeResponse,
    DriverActionRequest,
    ErrorResponse,
    ExpireAssignmentRequest,
    FeeResponse,
    RatingRequest,
    TransitionRequest,
    TransitionResponse,
)
from bookingcore.config import settings
from bookingcore.domain.entities import Location
from bookingcore.domain.enums import Actor, RatingType
from bookingcore.services.booking_state_machine import (
    BookingStateMachine,
    TransitionContext,
    TransitionResult,
)

router = APIRouter(prefix="/bookings", tags=["bookings"])

_ERRORS = {
    400: {"model": ErrorResponse, "description": "Policy violation"},
    403: {"model": ErrorResponse, "description": "Actor not permitted"},
    404: {"model": ErrorResponse, "description": "Booking or driver not found"},
    409: {"model": ErrorResponse, "description": "Invalid transition or stale state"},
}


def _context(body: TransitionRequest, **extra) -> TransitionContext:
    ctx = TransitionContext(expected_version=body.expected_version, note=body.note)
    if body.actor == Actor.CUSTOMER:
        ctx.customer_id = body.actor_id
    elif body.actor == Actor.DRIVER:
        ctx.driver_id = body.actor_id
    for key, value in extra.items():
        setattr(ctx, key, value)
    return ctx


def _driver_context(body: DriverActionRequest) -> TransitionContext:
    return TransitionContext(expected_version=body.expected_version, note=body.note)


def _respond(result: TransitionResult) -> TransitionResponse:
    return TransitionResponse.model_validate(result, from_attributes=True)


def _location(lat, lng):
    if lat is None or lng is None:
        return None
    return Location(lat, lng)


@router.post(
    "",
    status_code=201,
    response_model=BookingResponse,
    summary="Create a booking",
    responses={400: _ERRORS[400], 404: _ERRORS[404]},
)
@limiter.limit(settings.rate_limit)
async def create_booking(
    request: Request,
    body: BookingCreateRequest,
    machine: BookingStateMachine = Depends(get_state_machine),
):
    booking = await machine.create_booking(
        customer_id=body.customer_id,
        pickup_location=body.pickup_location,
        dropoff_location=body.dropoff_location,
        pickup=_location(body.pickup_lat, body.pickup_lng),
        dropoff=_location(body.dropoff_lat, body.dropoff_lng),
        pickup_at=body.pickup_at,
        fare=Decimal(str(body.fare)),
        vehicle_name=body.vehicle_name,
        payment_method=body.payment_method,
    )
    return BookingResponse.model_validate(booking, from_attributes=True)


@router.get(
    "/{booking_id}",
    response_model=BookingResponse,
    summary="Get a booking with its status history",
    responses={404: _ERRORS[404]},
)
@limiter.limit(settings.rate_limit)
async def get_booking(
    request: Request,
    booking_id: int,
    machine: BookingStateMachine = Depends(get_state_machine),
):
    booking = await machine.get_booking(booking_id)
    return BookingResponse.model_validate(booking, from_attributes=True)


@router.post(
    "/{booking_id}/confirm",
    response_model=TransitionResponse,
    summary="Confirm a pending booking",
    responses=_ERRORS,
)
@limiter.limit(settings.rate_limit)
async def confirm_booking(
    request: Request,
    booking_id: int,
    body: TransitionRequest,
    machine: BookingStateMachine = Depends(get_state_machine),
):
    return _respond(await machine.confirm(booking_id, body.actor, _context(body)))


@router.post(
    "/{booking_id}/assign",
    response_model=TransitionResponse,
    summary="Assign a driver",
    description=(
        "Atomically claims the driver. If the driver is not available the "
        "request fails with 409 `driver_unavailable` and the booking stays "
        "`confirmed`."
    ),
    responses=_ERRORS,
)
@limiter.limit(settings.rate_limit)
async def assign_driver(
    request: Request,
    booking_id: int,
    body: AssignDriverRequest,
    machine: BookingStateMachine = Depends(get_state_machine),
):
    ctx = _context(body, driver_id=body.driver_id)
    return _respond(
        await machine.assign_driver(booking_id, body.driver_id, body.actor, ctx)
    )


@router.post(
    "/{booking_id}/accept",
    response_model=TransitionResponse,
    summary="Driver accepts the assignment",
    responses=_ERRORS,
)
@limiter.limit(settings.rate_limit)
async def accept_assignment(
    request: Request,
    booking_id: int,
    body: DriverActionRequest,
    machine: BookingStateMachine = Depends(get_state_machine),
):
    return _respond(
        await machine.accept_assignment(
            booking_id, body.driver_id, _driver_context(body)
        )
    )


@router.post(
    "/{booking_id}/reject",
    response_model=TransitionResponse,
    summary="Driver rejects the assignment",
    responses=_ERRORS,
)
@limiter.limit(settings.rate_limit)
async def reject_assignment(
    request: Request,
    booking_id: int,
    body: DriverActionRequest,
    machine: BookingStateMachine = Depends(get_state_machine),
):
    return _respond(
        await machine.reject_assignment(
            booking_id, body.driver_id, _driver_context(body)
        )
    )


@router.post(
    "/{booking_id}/expire-assignment",
    response_model=TransitionResponse,
    summary="Revoke an assignment the driver did not accept in time",
    responses=_ERRORS,
)
@limiter.limit(settings.rate_limit)
async def expire_assignment(
    request: Request,
    booking_id: int,
    body: ExpireAssignmentRequest,
    machine: BookingStateMachine = Depends(get_state_machine),
):
    return _respond(
        await machine.expire_assignment(booking_id, body.actor, _context(body))
    )


@router.post(
    "/{booking_id}/arrived",
    response_model=BookingResponse,
    summary="Record the driver's arrival at pickup",
    responses=_ERRORS,
)
@limiter.limit(settings.rate_limit)
async def mark_arrived(
    request: Request,
    booking_id: int,
    body: DriverActionRequest,
    machine: BookingStateMachine = Depends(get_state_machine),
):
    booking = await machine.mark_arrived(
        booking_id, body.driver_id, expected_version=body.expected_version
    )
    return BookingResponse.model_validate(booking, from_attributes=True)


@router.post(
    "/{booking_id}/start",
    response_model=TransitionResponse,
    summary="Start the trip",
    responses=_ERRORS,
)
@limiter.limit(settings.rate_limit)
async def start_trip(
    request: Request,
    booking_id: int,
    body: DriverActionRequest,
    machine: BookingStateMachine = Depends(get_state_machine),
):
    return _respond(
        await machine.start_trip(booking_id, body.driver_id, _driver_context(body))
    )


@router.post(
    "/{booking_id}/complete",
    response_model=TransitionResponse,
    summary="Complete the trip",
    responses=_ERRORS,
)
@limiter.limit(settings.rate_limit)
async def complete_trip(
    request: Request,
    booking_id: int,
    body: CompleteTripRequest,
    machine: BookingStateMachine = Depends(get_state_machine),
):
    return _respond(
        await machine.complete_trip(booking_id, body.actor, context=_context(body))
    )


@router.post(
    "/{booking_id}/cancel",
    response_model=TransitionResponse,
    summary="Cancel a booking",
    description=(
        "Allowed from `pending`, `confirmed` and `driver_assigned`. The "
        "response carries the fee and its reason code (`no_driver`, `free`, "
        "`driver_late_waiver`, `late_fee`, `fee_disabled`)."
    ),
    responses=_ERRORS,
)
@limiter.limit(settings.rate_limit)
async def cancel_booking(
    request: Request,
    booking_id: int,
    body: CancelRequest,
    machine: BookingStateMachine = Depends(get_state_machine),
):
    reason = body.reason.value if body.reason else None
    return _respond(
        await machine.cancel(
            booking_id, body.actor, reason=reason, context=_context(body)
        )
    )


@router.post(
    "/{booking_id}/no-show",
    response_model=TransitionResponse,
    summary="Report a customer no-show",
    description=(
        "Requires a recorded arrival and at least `no_show_wait_time_ms` of "
        "waiting; otherwise 400 `wait_time_not_met` with `remaining_ms`."
    ),
    responses=_ERRORS,
)
@limiter.limit(settings.rate_limit)
async def report_no_show(
    request: Request,
    booking_id: int,
    body: DriverActionRequest,
    machine: BookingStateMachine = Depends(get_state_machine),
):
    return _respond(
        await machine.report_no_show(booking_id, body.driver_id, _driver_context(body))
    )


@router.get(
    "/{booking_id}/cancellation-quote",
    response_model=FeeResponse,
    summary="Preview the fee a cancellation would carry right now",
    responses={404: _ERRORS[404], 409: _ERRORS[409]},
)
@limiter.limit(settings.rate_limit)
async def cancellation_quote(
    request: Request,
    booking_id: int,
    machine: BookingStateMachine = Depends(get_state_machine),
):
    decision = await machine.cancellation_quote(booking_id)
    return FeeResponse.model_validate(decision, from_attributes=True)


@router.post(
    "/{booking_id}/rating",
    response_model=BookingResponse,
    summary="Rate the other party of a completed booking",
    responses=_ERRORS,
)
@limiter.limit(settings.rate_limit)
async def submit_rating(
    request: Request,
    booking_id: int,
    body: RatingRequest,
    machine: BookingStateMachine = Depends(get_state_machine),
):
    actor = (
        Actor.CUSTOMER
        if body.rating_type == RatingType.CUSTOMER_TO_DRIVER
        else Actor.DRIVER
    )
    booking = await machine.submit_rating(
        booking_id,
        rating_type=body.rating_type,
        stars=body.stars,
        actor=actor,
        party_id=body.actor_id,
        tip=Decimal(str(body.tip)),
        reasons=[r.value for r in body.reasons],
        comment=body.comment,
        expected_version=body.expected_version,
    )
    return BookingResponse.model_validate(booking, from_attributes=True)


@router.post(
    "/{booking_id}/disputes",
    status_code=201,
    response_model=DisputeResponse,
    summary="Open a dispute on a completed or cancelled booking",
    responses=_ERRORS,
)
@limiter.limit(settings.rate_limit)
async def submit_dispute(
    request: Request,
    booking_id: int,
    body: DisputeCreateRequest,
    machine: BookingStateMachine = Depends(get_state_machine),
):
    dispute = await machine.submit_dispute(
        booking_id,
        actor=body.actor,
        party_id=body.actor_id,
        reason=body.reason,
        description=body.description,
        evidence=body.evidence,
    )
    return DisputeResponse.model_validate(dispute, from_attributes=True)


@router.get(
    "/{booking_id}/dispute",
    response_model=DisputeResponse,
    summary="Get the dispute raised on a booking",
    responses={404: _ERRORS[404]},
)
@limiter.limit(settings.rate_limit)
async def get_booking_dispute(
    request: Request,
    booking_id: int,
    machine: BookingStateMachine = Depends(get_state_machine),
):
    dispute = await machine.get_booking_dispute(booking_id)
    return DisputeResponse.model_validate(dispute, from_attributes=True)
