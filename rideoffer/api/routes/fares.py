"""
Fare endpoints
==============

POST /api/v1/fares/estimate  -- baseline fare, breakdown and proposal bounds
POST /api/v1/fares/negotiate -- one bidding round against the arbitrator
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from rideoffer.api.dependencies import get_arbitrator, get_pricing
from rideoffer.api.errors import http_error
from rideoffer.api.middleware import limiter
from rideoffer.api.schemas import (
    FareBreakdownBody,
    FareEstimateRequest,
    FareEstimateResponse,
    FareNegotiateRequest,
    FareNegotiateResponse,
)
from rideoffer.config import settings
from rideoffer.domain.enums import NegotiationDecision
from rideoffer.domain.errors import RideOfferError
from rideoffer.domain.negotiation import (
    Arbitrator,
    counterpart_envelope,
    proposal_bounds,
    validate_proposal,
)
from rideoffer.domain.pricing import Coupon, PricingEngine

router = APIRouter(prefix="/fares", tags=["fares"])


@router.post(
    "/estimate",
    response_model=FareEstimateResponse,
    summary="Estimate a fare",
)
@limiter.limit(settings.rate_limit)
async def estimate_fare(
    request: Request,
    body: FareEstimateRequest,
    pricing: PricingEngine = Depends(get_pricing),
):
    coupon = (
        Coupon(body.coupon.code, body.coupon.discount_type, body.coupon.value)
        if body.coupon
        else None
    )
    estimate = pricing.estimate(
        body.distance_km,
        body.duration_minutes,
        service_type=body.service_type.value,
        ride_date=body.ride_date,
        peak_time=body.peak_time,
        coupon=coupon,
    )
    try:
        min_fare, max_fare = proposal_bounds(
            estimate.estimated_fare, settings.negotiation_range
        )
    except RideOfferError as exc:
        raise http_error(exc) from exc
    return FareEstimateResponse(
        estimated_fare=estimate.estimated_fare,
        breakdown=FareBreakdownBody(**estimate.breakdown.to_dict()),
        min_fare=round(min_fare, 2),
        max_fare=round(max_fare, 2),
    )


@router.post(
    "/negotiate",
    response_model=FareNegotiateResponse,
    summary="Submit a fare proposal",
    description=(
        "The proposal must lie within [estimate x (1 - range), estimate]. "
        "The arbitrator accepts, counters, or rejects; there is no retry."
    ),
)
@limiter.limit(settings.rate_limit)
async def negotiate_fare(
    request: Request,
    body: FareNegotiateRequest,
    arbitrator: Arbitrator = Depends(get_arbitrator),
):
    try:
        validate_proposal(
            body.proposed_fare, body.estimated_fare, settings.negotiation_range
        )
        min_fare, max_fare = counterpart_envelope(
            body.estimated_fare,
            settings.counterpart_min_factor,
            settings.counterpart_max_factor,
        )
        result = await arbitrator.negotiate(
            body.estimated_fare, body.proposed_fare, min_fare, max_fare
        )
    except RideOfferError as exc:
        raise http_error(exc) from exc

    if result.decision is NegotiationDecision.ACCEPTED:
        return FareNegotiateResponse(
            decision=result.decision,
            reason=result.reason,
            final_fare=round(body.proposed_fare, 2),
        )
    if result.decision is NegotiationDecision.COUNTER_OFFER:
        if result.counter_fare is None or result.counter_fare <= 0:
            raise HTTPException(status_code=502, detail="Malformed counter-offer")
        return FareNegotiateResponse(
            decision=result.decision,
            reason=result.reason,
            counter_fare=round(result.counter_fare, 2),
        )
    return FareNegotiateResponse(decision=result.decision, reason=result.reason)
