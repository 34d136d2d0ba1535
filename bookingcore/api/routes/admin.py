"""
Admin / observability endpoints
===============================

GET  /api/v1/admin/policy                        -- current policy snapshot
PUT  /api/v1/admin/policy                        -- publish a new policy version
POST /api/v1/admin/disputes/{dispute_id}/resolve -- move a dispute along
GET  /api/v1/admin/health                        -- simple health check
"""

from fastapi import APIRouter, Depends, Request

from bookingcore.api.dependencies import get_state_machine
from bookingcore.api.middleware import limiter
from bookingcore.api.schemas import (
    DisputeResolveRequest,
    DisputeResponse,
    ErrorResponse,
    HealthResponse,
    PolicyResponse,
    PolicyUpdateRequest,
)
from bookingcore.config import settings
from bookingcore.services.booking_state_machine import BookingStateMachine

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get(
    "/policy",
    response_model=PolicyResponse,
    summary="Current policy configuration",
)
@limiter.limit(settings.rate_limit)
async def get_policy(
    request: Request,
    machine: BookingStateMachine = Depends(get_state_machine),
):
    policy = await machine.get_policy()
    return PolicyResponse.model_validate(policy, from_attributes=True)


@router.put(
    "/policy",
    response_model=PolicyResponse,
    summary="Publish a new policy version",
    description=(
        "Fields left out keep their current value. Versions are never "
        "edited in place; every update stores version N+1."
    ),
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit)
async def update_policy(
    request: Request,
    body: PolicyUpdateRequest,
    machine: BookingStateMachine = Depends(get_state_machine),
):
    changes = body.model_dump(
        exclude_unset=True, exclude_none=True, exclude={"updated_by"}
    )
    policy = await machine.publish_policy(changes, created_by=body.updated_by)
    return PolicyResponse.model_validate(policy, from_attributes=True)


@router.post(
    "/disputes/{dispute_id}/resolve",
    response_model=DisputeResponse,
    summary="Review, resolve or reject a dispute",
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit)
async def resolve_dispute(
    request: Request,
    dispute_id: int,
    body: DisputeResolveRequest,
    machine: BookingStateMachine = Depends(get_state_machine),
):
    dispute = await machine.resolve_dispute(
        dispute_id,
        body.status,
        resolution=body.resolution,
        resolved_by=body.resolved_by,
    )
    return DisputeResponse.model_validate(dispute, from_attributes=True)


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()
