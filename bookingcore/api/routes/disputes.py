"""
Dispute endpoints
=================

GET /api/v1/disputes/{dispute_id} -- dispute detail

Disputes are opened through ``POST /bookings/{id}/disputes`` and resolved
through the admin router.
"""

from fastapi import APIRouter, Depends, Request

from bookingcore.api.dependencies import get_state_machine
from bookingcore.api.middleware import limiter
from bookingcore.api.schemas import DisputeResponse, ErrorResponse
from bookingcore.config import settings
from bookingcore.services.booking_state_machine import BookingStateMachine

router = APIRouter(prefix="/disputes", tags=["disputes"])


@router.get(
    "/{dispute_id}",
    response_model=DisputeResponse,
    summary="Get a dispute",
    responses={404: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit)
async def get_dispute(
    request: Request,
    dispute_id: int,
    machine: BookingStateMachine = Depends(get_state_machine),
):
    dispute = await machine.get_dispute(dispute_id)
    return DisputeResponse.model_validate(dispute, from_attributes=True)
