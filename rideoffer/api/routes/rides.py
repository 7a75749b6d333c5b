"""
Ride endpoints
==============

POST  /api/v1/rides                                -- request a ride (passenger)
GET   /api/v1/rides                                -- the caller's rides
GET   /api/v1/rides/{ride_id}                      -- ride status and fare
POST  /api/v1/rides/{ride_id}/counter-offer/accept -- take the driver's counter
POST  /api/v1/rides/{ride_id}/counter-offer/reject -- refuse it (cancels the ride)
PATCH /api/v1/rides/{ride_id}/cancel               -- cancel with a reason code
POST  /api/v1/rides/{ride_id}/sos                  -- raise an SOS alert
GET   /api/v1/rides/{ride_id}/messages             -- chat history
POST  /api/v1/rides/{ride_id}/messages             -- send a chat message
POST  /api/v1/rides/{ride_id}/rating               -- rate the other party

Identity comes from the ``X-Actor-Id`` / ``X-Actor-Role`` headers.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from rideoffer.api.dependencies import (
    Actor,
    get_actor,
    get_finalizer,
    get_passenger,
    get_protocol,
)
from rideoffer.api.errors import http_error
from rideoffer.api.middleware import limiter
from rideoffer.api.schemas import (
    CancelRequest,
    ChatMessageResponse,
    MessageRequest,
    RatingRequest,
    RideCreateRequest,
    RideResponse,
    SOSAlertResponse,
)
from rideoffer.config import settings
from rideoffer.domain.enums import Role
from rideoffer.domain.errors import RideNotFound, RideOfferError
from rideoffer.domain.pricing import FareBreakdown
from rideoffer.services.rating import RatingFinalizer
from rideoffer.services.ride_protocol import RideProtocol

router = APIRouter(prefix="/rides", tags=["rides"])


@router.post(
    "",
    status_code=201,
    response_model=RideResponse,
    summary="Request a ride",
    description="Creates a ride in status `searching` at the agreed fare.",
)
@limiter.limit(settings.rate_limit)
async def create_ride(
    request: Request,
    body: RideCreateRequest,
    actor: Actor = Depends(get_passenger),
    protocol: RideProtocol = Depends(get_protocol),
):
    breakdown = (
        FareBreakdown.from_dict(body.fare_breakdown.model_dump())
        if body.fare_breakdown
        else None
    )
    try:
        return await protocol.create_ride(
            actor.id,
            body.pickup,
            body.dropoff,
            body.fare,
            fare_breakdown=breakdown,
            service_type=body.service_type,
            payment_method=body.payment_method,
            coupon_code=body.coupon_code,
        )
    except RideOfferError as exc:
        raise http_error(exc) from exc


@router.get("", response_model=list[RideResponse], summary="List my rides")
@limiter.limit(settings.rate_limit)
async def list_rides(
    request: Request,
    actor: Actor = Depends(get_actor),
    protocol: RideProtocol = Depends(get_protocol),
):
    if actor.role is Role.PASSENGER:
        return await protocol.rides_for_passenger(actor.id)
    return await protocol.rides_for_driver(actor.id)


@router.get("/{ride_id}", response_model=RideResponse, summary="Get a ride")
@limiter.limit(settings.rate_limit)
async def get_ride(
    request: Request,
    ride_id: str,
    actor: Actor = Depends(get_actor),
    protocol: RideProtocol = Depends(get_protocol),
):
    try:
        ride = await protocol.get_ride(ride_id)
    except RideOfferError as exc:
        raise http_error(exc) from exc
    if actor.role is Role.PASSENGER:
        visible = ride.passenger_id == actor.id
    else:
        visible = actor.id in (ride.driver_id, ride.offered_to)
    if not visible:
        raise http_error(RideNotFound(f"Ride {ride_id} not found"))
    return ride


@router.post(
    "/{ride_id}/counter-offer/accept",
    response_model=RideResponse,
    summary="Accept the driver's counter-offer",
)
@limiter.limit(settings.rate_limit)
async def accept_counter_offer(
    request: Request,
    ride_id: str,
    actor: Actor = Depends(get_passenger),
    protocol: RideProtocol = Depends(get_protocol),
):
    try:
        return await protocol.accept_counter_offer(actor.id, ride_id)
    except RideOfferError as exc:
        raise http_error(exc) from exc


@router.post(
    "/{ride_id}/counter-offer/reject",
    response_model=RideResponse,
    summary="Reject the driver's counter-offer",
    description="Rejection cancels the ride with reason `REJECTED_COUNTER`.",
)
@limiter.limit(settings.rate_limit)
async def reject_counter_offer(
    request: Request,
    ride_id: str,
    actor: Actor = Depends(get_passenger),
    protocol: RideProtocol = Depends(get_protocol),
):
    try:
        return await protocol.reject_counter_offer(actor.id, ride_id)
    except RideOfferError as exc:
        raise http_error(exc) from exc


@router.patch(
    "/{ride_id}/cancel",
    response_model=RideResponse,
    summary="Cancel a ride",
    description=(
        "Allowed while the ride is searching, counter-offered, accepted or "
        "arrived.  The reason code must be one of the configured codes."
    ),
)
@limiter.limit(settings.rate_limit)
async def cancel_ride(
    request: Request,
    ride_id: str,
    body: CancelRequest,
    actor: Actor = Depends(get_passenger),
    protocol: RideProtocol = Depends(get_protocol),
):
    try:
        return await protocol.cancel_ride(actor.id, ride_id, body.reason_code)
    except RideOfferError as exc:
        raise http_error(exc) from exc


@router.post(
    "/{ride_id}/sos",
    status_code=201,
    response_model=SOSAlertResponse,
    summary="Raise an SOS alert",
)
@limiter.limit(settings.rate_limit)
async def trigger_sos(
    request: Request,
    ride_id: str,
    actor: Actor = Depends(get_actor),
    protocol: RideProtocol = Depends(get_protocol),
):
    try:
        return await protocol.trigger_sos(ride_id, actor.id, actor.role)
    except RideOfferError as exc:
        raise http_error(exc) from exc


@router.get(
    "/{ride_id}/messages",
    response_model=list[ChatMessageResponse],
    summary="Chat history, oldest first",
)
@limiter.limit(settings.rate_limit)
async def list_messages(
    request: Request,
    ride_id: str,
    actor: Actor = Depends(get_actor),
    protocol: RideProtocol = Depends(get_protocol),
):
    try:
        return await protocol.list_messages(ride_id, actor.id, actor.role)
    except RideOfferError as exc:
        raise http_error(exc) from exc


@router.post(
    "/{ride_id}/messages",
    status_code=201,
    response_model=ChatMessageResponse,
    summary="Send a chat message",
)
@limiter.limit(settings.rate_limit)
async def send_message(
    request: Request,
    ride_id: str,
    body: MessageRequest,
    actor: Actor = Depends(get_actor),
    protocol: RideProtocol = Depends(get_protocol),
):
    try:
        return await protocol.send_message(ride_id, actor.id, actor.role, body.text)
    except RideOfferError as exc:
        raise http_error(exc) from exc


@router.post(
    "/{ride_id}/rating",
    response_model=RideResponse,
    summary="Rate the other party of a completed ride",
)
@limiter.limit(settings.rate_limit)
async def rate_ride(
    request: Request,
    ride_id: str,
    body: RatingRequest,
    actor: Actor = Depends(get_actor),
    finalizer: RatingFinalizer = Depends(get_finalizer),
):
    try:
        return await finalizer.rate_ride(
            ride_id, actor.id, actor.role, body.rating, body.comment
        )
    except RideOfferError as exc:
        raise http_error(exc) from exc
