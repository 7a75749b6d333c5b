"""FastAPI dependency injection helpers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from rideoffer.config import settings
from rideoffer.domain.enums import Role
from rideoffer.domain.negotiation import Arbitrator
from rideoffer.domain.pricing import PricingEngine
from rideoffer.infrastructure.clients import build_arbitrator, build_sentiment_classifier
from rideoffer.infrastructure.database import async_session_factory
from rideoffer.infrastructure.feed import RideFeed
from rideoffer.infrastructure.redis_client import get_redis
from rideoffer.services.rating import RatingFinalizer
from rideoffer.services.ride_protocol import RideProtocol


async def get_db() -> AsyncSession:  # type: ignore[misc]
    """Yield an async DB session; commit on success, rollback on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_protocol() -> RideProtocol:
    """Ride protocol publishing every committed change on the Redis feed."""
    return RideProtocol(async_session_factory, RideFeed(await get_redis()))


async def get_finalizer(
    protocol: RideProtocol = Depends(get_protocol),
) -> RatingFinalizer:
    return RatingFinalizer(
        protocol.session_factory, build_sentiment_classifier(settings), protocol
    )


def get_pricing() -> PricingEngine:
    return PricingEngine.from_settings(settings)


def get_arbitrator() -> Arbitrator:
    return build_arbitrator(settings)


# ── Identity ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Actor:
    id: str
    role: Role


async def get_actor(
    x_actor_id: Optional[str] = Header(None),
    x_actor_role: Optional[str] = Header(None),
) -> Actor:
    """Resolve the caller from the identity headers set by the gateway."""
    if not x_actor_id or not x_actor_role:
        raise HTTPException(status_code=401, detail="Missing actor identity")
    try:
        role = Role(x_actor_role.strip().lower())
    except ValueError:
        raise HTTPException(status_code=401, detail="Unknown actor role") from None
    return Actor(id=x_actor_id, role=role)


async def get_passenger(actor: Actor = Depends(get_actor)) -> Actor:
    if actor.role is not Role.PASSENGER:
        raise HTTPException(status_code=403, detail="Passengers only")
    return actor


async def get_driver(actor: Actor = Depends(get_actor)) -> Actor:
    if actor.role is not Role.DRIVER:
        raise HTTPException(status_code=403, detail="Drivers only")
    return actor
