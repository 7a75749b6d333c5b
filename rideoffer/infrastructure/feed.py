"""
Ride change feed (push subscriptions over Redis pub/sub).

Every committed ride write publishes a ``RideUpdateMessage`` on the
``ride-updates`` channel.  ``RideFeed.watch`` turns that stream into the
snapshot subscription both sessions consume: it yields the result of a
query once on subscribe, then again after every matching change.

The subscription is opened before the first query so no change between
the initial snapshot and the first message is lost.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import AsyncIterator, Awaitable, Callable, Optional

import redis.asyncio as aioredis
from pydantic import BaseModel

from rideoffer.domain.entities import Ride

logger = logging.getLogger(__name__)

CHANNEL_RIDE_UPDATES = "ride-updates"


class RideUpdateMessage(BaseModel):
    """Ride state change, enough for subscribers to decide whether to re-query."""

    ride_id: str
    status: str
    passenger_id: str
    driver_id: Optional[str] = None
    offered_to: Optional[str] = None
    version: int
    timestamp: str

    @classmethod
    def from_ride(cls, ride: Ride) -> "RideUpdateMessage":
        return cls(
            ride_id=ride.id,
            status=ride.status.value,
            passenger_id=ride.passenger_id,
            driver_id=ride.driver_id,
            offered_to=ride.offered_to,
            version=ride.version,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )


RideQuery = Callable[[], Awaitable[list[Ride]]]
MessageFilter = Callable[[RideUpdateMessage], bool]


class RideFeed:
    def __init__(self, client: aioredis.Redis, channel: str = CHANNEL_RIDE_UPDATES):
        self.redis = client
        self.channel = channel

    async def publish(self, ride: Ride) -> None:
        """Announce a committed change.  The write already landed, so failures only log."""
        message = RideUpdateMessage.from_ride(ride)
        try:
            await self.redis.publish(self.channel, message.model_dump_json())
        except aioredis.RedisError:
            logger.warning("Could not publish update for ride %s", ride.id, exc_info=True)

    async def watch(
        self, query: RideQuery, only: Optional[MessageFilter] = None
    ) -> AsyncIterator[list[Ride]]:
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(self.channel)
        try:
            yield await query()
            async for raw in pubsub.listen():
                if raw.get("type") != "message":
                    continue
                message = RideUpdateMessage.model_validate_json(raw["data"])
                if only is None or only(message):
                    yield await query()
        finally:
            await pubsub.unsubscribe(self.channel)
            await pubsub.aclose()
