"""
Driver endpoints
================

GET   /api/v1/drivers/me                           -- profile and status
PATCH /api/v1/drivers/me/availability              -- go online / offline
POST  /api/v1/drivers/me/offers/claim              -- claim the next eligible ride
POST  /api/v1/drivers/me/offers/{ride_id}/accept   -- accept the held offer
POST  /api/v1/drivers/me/offers/{ride_id}/reject   -- release it for good
POST  /api/v1/drivers/me/offers/{ride_id}/counter  -- propose a different fare
PATCH /api/v1/drivers/me/rides/{ride_id}/status    -- arrived / in-progress / completed
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from rideoffer.api.dependencies import Actor, get_driver, get_protocol
from rideoffer.api.errors import http_error
from rideoffer.api.middleware import limiter
from rideoffer.api.schemas import (
    AvailabilityRequest,
    CounterOfferRequest,
    DriverResponse,
    ErrorResponse,
    RideResponse,
    StatusUpdateRequest,
)
from rideoffer.config import settings
from rideoffer.domain.errors import RideOfferError
from rideoffer.services.ride_protocol import RideProtocol

router = APIRouter(prefix="/drivers/me", tags=["drivers"])

_OFFER_CONFLICT = {
    409: {
        "model": ErrorResponse,
        "description": "The offer is no longer held by this driver.",
    }
}


@router.get("", response_model=DriverResponse, summary="Current driver")
@limiter.limit(settings.rate_limit)
async def get_me(
    request: Request,
    actor: Actor = Depends(get_driver),
    protocol: RideProtocol = Depends(get_protocol),
):
    try:
        return await protocol.get_driver(actor.id)
    except RideOfferError as exc:
        raise http_error(exc) from exc


@router.patch(
    "/availability",
    response_model=DriverResponse,
    summary="Toggle availability",
)
@limiter.limit(settings.rate_limit)
async def set_availability(
    request: Request,
    body: AvailabilityRequest,
    actor: Actor = Depends(get_driver),
    protocol: RideProtocol = Depends(get_protocol),
):
    try:
        return await protocol.set_availability(actor.id, body.available)
    except RideOfferError as exc:
        raise http_error(exc) from exc


@router.post(
    "/offers/claim",
    response_model=RideResponse,
    summary="Claim the next searching ride",
    description=(
        "Claims the first searching ride that is not held by another driver "
        "and that this driver has not rejected.  The claim is exclusive for "
        "the offer window.  Returns 204 when nothing is available."
    ),
    responses={
        204: {"description": "No eligible ride."},
        409: {"model": ErrorResponse, "description": "Driver is not available."},
    },
)
@limiter.limit(settings.rate_limit)
async def claim_offer(
    request: Request,
    actor: Actor = Depends(get_driver),
    protocol: RideProtocol = Depends(get_protocol),
):
    try:
        ride = await protocol.claim_next(actor.id)
    except RideOfferError as exc:
        raise http_error(exc) from exc
    if ride is None:
        return Response(status_code=204)
    return ride


@router.post(
    "/offers/{ride_id}/accept",
    response_model=RideResponse,
    summary="Accept the held offer",
    responses=_OFFER_CONFLICT,
)
@limiter.limit(settings.rate_limit)
async def accept_offer(
    request: Request,
    ride_id: str,
    actor: Actor = Depends(get_driver),
    protocol: RideProtocol = Depends(get_protocol),
):
    try:
        return await protocol.accept_offer(actor.id, ride_id)
    except RideOfferError as exc:
        raise http_error(exc) from exc


@router.post(
    "/offers/{ride_id}/reject",
    response_model=RideResponse,
    summary="Reject the held offer",
    responses=_OFFER_CONFLICT,
)
@limiter.limit(settings.rate_limit)
async def reject_offer(
    request: Request,
    ride_id: str,
    actor: Actor = Depends(get_driver),
    protocol: RideProtocol = Depends(get_protocol),
):
    try:
        return await protocol.reject_offer(actor.id, ride_id)
    except RideOfferError as exc:
        raise http_error(exc) from exc


@router.post(
    "/offers/{ride_id}/counter",
    response_model=RideResponse,
    summary="Counter the held offer with a new fare",
    responses=_OFFER_CONFLICT,
)
@limiter.limit(settings.rate_limit)
async def counter_offer(
    request: Request,
    ride_id: str,
    body: CounterOfferRequest,
    actor: Actor = Depends(get_driver),
    protocol: RideProtocol = Depends(get_protocol),
):
    try:
        return await protocol.counter_offer(actor.id, ride_id, body.fare)
    except RideOfferError as exc:
        raise http_error(exc) from exc


@router.patch(
    "/rides/{ride_id}/status",
    response_model=RideResponse,
    summary="Advance an assigned ride",
)
@limiter.limit(settings.rate_limit)
async def update_status(
    request: Request,
    ride_id: str,
    body: StatusUpdateRequest,
    actor: Actor = Depends(get_driver),
    protocol: RideProtocol = Depends(get_protocol),
):
    try:
        return await protocol.advance_status(actor.id, ride_id, body.status)
    except RideOfferError as exc:
        raise http_error(exc) from exc
