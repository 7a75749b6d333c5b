"""
Background Offer Sweeper
========================

Runs every ``OFFER_SWEEP_INTERVAL_SECONDS`` (default 10 s).

A driver who claims a ride and then disappears (app killed, network lost)
never runs their local countdown, so their claim would block the ride for
everyone else.  The sweeper clears claims older than the offer window and
records the silent holder in ``rejected_by``, exactly as a timeout would.

Concurrency safety
------------------
* **Redis distributed lock** ensures only one instance sweeps at a time
  across multiple API processes.
* Each release is a compare-and-swap on ``rides.version``: if the holder
  accepted, rejected or countered in the meantime, the release is skipped.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from rideoffer.config import settings
from rideoffer.infrastructure.database import async_session_factory
from rideoffer.infrastructure.feed import RideFeed
from rideoffer.infrastructure.locks import DistributedLock
from rideoffer.infrastructure.redis_client import get_redis
from rideoffer.services.ride_protocol import RideProtocol

logger = logging.getLogger(__name__)

_task: Optional[asyncio.Task] = None
_stop_event: Optional[asyncio.Event] = None


# ── Public API ────────────────────────────────────────────────────────


async def start_sweep_loop() -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop())
    logger.info(
        "Offer sweeper started (interval=%ds, window=%ds)",
        settings.offer_sweep_interval_seconds,
        settings.offer_window_seconds,
    )


async def stop_sweep_loop() -> None:
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    logger.info("Offer sweeper stopped")


# ── Internals ─────────────────────────────────────────────────────────


async def _loop() -> None:
    assert _stop_event is not None
    while not _stop_event.is_set():
        try:
            await run_sweep_cycle()
        except Exception:
            logger.exception("Unhandled error in offer sweep")
        try:
            await asyncio.wait_for(
                _stop_event.wait(), timeout=settings.offer_sweep_interval_seconds
            )
            break
        except asyncio.TimeoutError:
            pass


async def run_sweep_cycle(protocol: Optional[RideProtocol] = None) -> int:
    """Release expired offers once.  Returns the number of rides released."""
    redis = await get_redis()
    lock = DistributedLock(redis, "offer_sweep", ttl_seconds=60)

    if not await lock.acquire():
        logger.debug("Lock held by another worker – skipping sweep")
        return 0

    try:
        if protocol is None:
            protocol = RideProtocol(async_session_factory, RideFeed(redis))
        return await protocol.release_expired_offers()
    finally:
        await lock.release()
