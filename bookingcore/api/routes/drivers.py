"""
Driver endpoints
================

GET  /api/v1/drivers/{driver_id}               -- status, rating and counters
POST /api/v1/drivers/{driver_id}/availability  -- go online / offline
"""

from fastapi import APIRouter, Depends, Request

from bookingcore.api.dependencies import get_state_machine
from bookingcore.api.middleware import limiter
from bookingcore.api.schemas import AvailabilityRequest, DriverResponse, ErrorResponse
from bookingcore.config import settings
from bookingcore.services.booking_state_machine import BookingStateMachine

router = APIRouter(prefix="/drivers", tags=["drivers"])


@router.get(
    "/{driver_id}",
    response_model=DriverResponse,
    summary="Get a driver",
    responses={404: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit)
async def get_driver(
    request: Request,
    driver_id: int,
    machine: BookingStateMachine = Depends(get_state_machine),
):
    driver = await machine.get_driver(driver_id)
    return DriverResponse.model_validate(driver, from_attributes=True)


@router.post(
    "/{driver_id}/availability",
    response_model=DriverResponse,
    summary="Set driver availability",
    description="A busy driver cannot go offline until the current booking ends.",
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit)
async def set_availability(
    request: Request,
    driver_id: int,
    body: AvailabilityRequest,
    machine: BookingStateMachine = Depends(get_state_machine),
):
    driver = await machine.set_driver_availability(driver_id, body.available)
    return DriverResponse.model_validate(driver, from_attributes=True)
