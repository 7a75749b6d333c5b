"""
Admin / observability endpoints
===============================

GET  /api/v1/admin/health               -- health check with searching-ride count
GET  /api/v1/admin/cancellation-reasons -- configured cancellation codes
POST /api/v1/admin/offers/sweep         -- release expired offers now
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from rideoffer.api.dependencies import get_db, get_protocol
from rideoffer.api.middleware import limiter
from rideoffer.api.schemas import CancellationBody, HealthResponse, SweepResponse
from rideoffer.config import settings
from rideoffer.domain.enums import RideStatus
from rideoffer.infrastructure.repositories import RideRepository
from rideoffer.services.ride_protocol import RideProtocol
from rideoffer.workers import offer_sweeper

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health(db: AsyncSession = Depends(get_db)):
    searching = await RideRepository(db).count_by_status(RideStatus.SEARCHING)
    return HealthResponse(searching_rides=searching)


@router.get(
    "/cancellation-reasons",
    response_model=list[CancellationBody],
    summary="List configured cancellation reasons",
)
@limiter.limit(settings.rate_limit)
async def cancellation_reasons(
    request: Request,
    protocol: RideProtocol = Depends(get_protocol),
):
    return protocol.cancellation_reasons()


@router.post(
    "/offers/sweep",
    response_model=SweepResponse,
    summary="Release expired offers",
    description=(
        "Runs one offer-sweep cycle immediately.  Skipped (released=0) when "
        "another worker holds the sweep lock."
    ),
)
@limiter.limit(settings.rate_limit)
async def sweep_offers(
    request: Request,
    protocol: RideProtocol = Depends(get_protocol),
):
    released = await offer_sweeper.run_sweep_cycle(protocol)
    return SweepResponse(released=released)
