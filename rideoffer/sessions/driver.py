"""
Driver Offer Engine
===================

One engine per signed-in driver.  It watches two snapshots:

* the ``searching`` rides, from which it claims the first eligible
  candidate while the driver is scanning;
* the driver's own rides (assigned to, or offered to, this driver), which
  tell it when a counter-offer was accepted or a held ride disappeared.

Phases::

    idle -> scanning -> holding-offer -> accepted | rejected | expired | superseded

A held offer runs a local countdown of ``offer_window_seconds``.  Reaching
zero takes the same path as an explicit rejection.  The countdown is
advisory: the server refuses accept/counter on a claim older than the
window, and the offer sweep clears such claims.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import Iterable, Optional

from rideoffer.domain.entities import Ride
from rideoffer.domain.enums import ASSIGNED_STATUSES, RideStatus, Role
from rideoffer.domain.errors import OfferUnavailable, RideOfferError
from rideoffer.domain.offers import eligible_candidates
from rideoffer.infrastructure.feed import RideFeed, RideUpdateMessage
from rideoffer.services.rating import RatingFinalizer
from rideoffer.services.ride_protocol import RideProtocol
from rideoffer.sessions.common import SessionResult

logger = logging.getLogger(__name__)


class DriverPhase(str, enum.Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    HOLDING_OFFER = "holding-offer"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"
    SUPERSEDED = "superseded"


class DriverOfferEngine:
    def __init__(
        self,
        protocol: RideProtocol,
        driver_id: str,
        finalizer: Optional[RatingFinalizer] = None,
        offer_window_seconds: Optional[float] = None,
    ):
        self.protocol = protocol
        self.driver_id = driver_id
        self.finalizer = finalizer
        self.offer_window_seconds = (
            offer_window_seconds
            if offer_window_seconds is not None
            else protocol.offer_window_seconds
        )

        self.phase = DriverPhase.IDLE
        self.available = False
        self.offer: Optional[Ride] = None
        self.active_ride: Optional[Ride] = None
        self.locally_rejected: set[str] = set()
        self.notice: Optional[str] = None
        self._countdown: Optional[asyncio.Task] = None

    @property
    def can_scan(self) -> bool:
        return self.available and self.active_ride is None and self.offer is None

    # ── Availability ──────────────────────────────────────────────────

    async def go_online(self) -> SessionResult:
        try:
            driver = await self.protocol.set_availability(self.driver_id, True)
        except RideOfferError as exc:
            return SessionResult.failure(str(exc))
        self.available = True
        if self.active_ride is None:
            self.phase = DriverPhase.SCANNING
        return SessionResult.success("Estás disponible.", driver)

    async def go_offline(self) -> SessionResult:
        if self.offer is not None:
            await self.reject()
        try:
            driver = await self.protocol.set_availability(self.driver_id, False)
        except RideOfferError as exc:
            return SessionResult.failure(str(exc))
        self.available = False
        if self.active_ride is None:
            self.phase = DriverPhase.IDLE
        return SessionResult.success("Ya no estás disponible.", driver)

    # ── Snapshots ─────────────────────────────────────────────────────

    async def on_searching_snapshot(self, rides: Iterable[Ride]) -> Optional[Ride]:
        """Try to claim the first eligible ride.  Returns the claimed ride."""
        if not self.can_scan:
            return None
        self.phase = DriverPhase.SCANNING
        candidates = eligible_candidates(
            rides,
            self.driver_id,
            self.protocol.clock(),
            self.protocol.offer_window_seconds,
            self.locally_rejected,
        )
        for candidate in candidates:
            try:
                ride = await self.protocol.claim_offer(self.driver_id, candidate.id)
            except OfferUnavailable:
                # another driver won the race
                logger.debug("Claim on ride %s aborted", candidate.id)
                continue
            self._hold(ride)
            return ride
        return None

    async def on_my_rides_snapshot(self, rides: Iterable[Ride]) -> None:
        rides = list(rides)
        by_id = {r.id: r for r in rides}

        active = next(
            (
                r
                for r in rides
                if r.driver_id == self.driver_id and r.status in ASSIGNED_STATUSES
            ),
            None,
        )
        if active is not None:
            if self.offer is not None and self.offer.id == active.id:
                # passenger accepted our counter-offer
                self._stop_countdown()
                self.offer = None
            if self.active_ride is None:
                self.phase = DriverPhase.ACCEPTED
            self.active_ride = active
            return

        if self.active_ride is not None:
            ended = by_id.get(self.active_ride.id)
            if ended is not None and ended.status is RideStatus.CANCELLED:
                self.notice = "El pasajero canceló el viaje."
                self.phase = DriverPhase.SUPERSEDED
            else:
                self.phase = DriverPhase.SCANNING if self.available else DriverPhase.IDLE
            self.active_ride = None

        if self.offer is not None:
            current = by_id.get(self.offer.id)
            if current is None or not current.is_offered_to(self.driver_id):
                self._stop_countdown()
                self.offer = None
                self.phase = DriverPhase.SUPERSEDED
                self.notice = "El viaje ya no está disponible."
            else:
                self.offer = current

    # ── Offer actions ─────────────────────────────────────────────────

    async def accept(self) -> SessionResult:
        if self.offer is None:
            return SessionResult.failure("No tienes una oferta activa.")
        ride_id = self.offer.id
        self._stop_countdown()
        try:
            ride = await self.protocol.accept_offer(self.driver_id, ride_id)
        except RideOfferError as exc:
            self.offer = None
            self.phase = DriverPhase.SCANNING
            self.notice = str(exc)
            return SessionResult.failure(str(exc))
        self.offer = None
        self.active_ride = ride
        self.phase = DriverPhase.ACCEPTED
        return SessionResult.success("Viaje aceptado.", ride)

    async def reject(self) -> SessionResult:
        if self.offer is None:
            return SessionResult.failure("No tienes una oferta activa.")
        self._stop_countdown()
        return await self._release(DriverPhase.REJECTED)

    async def counter(self, fare: float) -> SessionResult:
        if self.offer is None:
            return SessionResult.failure("No tienes una oferta activa.")
        try:
            ride = await self.protocol.counter_offer(self.driver_id, self.offer.id, fare)
        except RideOfferError as exc:
            return SessionResult.failure(str(exc))
        # now waiting on the passenger, not on the window
        self._stop_countdown()
        self.offer = ride
        return SessionResult.success("Contraoferta enviada.", ride)

    async def _release(self, phase: DriverPhase) -> SessionResult:
        ride_id = self.offer.id
        self.locally_rejected.add(ride_id)
        self.offer = None
        self.phase = phase
        try:
            await self.protocol.reject_offer(self.driver_id, ride_id)
        except OfferUnavailable:
            # claim already gone (swept or cancelled); local exclusion still applies
            logger.debug("Reject of ride %s found no claim to release", ride_id)
        except RideOfferError as exc:
            return SessionResult.failure(str(exc))
        return SessionResult.success("Oferta rechazada.")

    # ── Countdown ─────────────────────────────────────────────────────

    def _hold(self, ride: Ride) -> None:
        self.offer = ride
        self.phase = DriverPhase.HOLDING_OFFER
        self.notice = None
        self._stop_countdown()
        self._countdown = asyncio.create_task(self._expire_after(ride.id))

    async def _expire_after(self, ride_id: str) -> None:
        await asyncio.sleep(self.offer_window_seconds)
        if self.offer is None or self.offer.id != ride_id:
            return
        if self.offer.status is not RideStatus.SEARCHING:
            return
        self._countdown = None
        logger.info("Offer on ride %s expired for driver %s", ride_id, self.driver_id)
        await self._release(DriverPhase.EXPIRED)

    def _stop_countdown(self) -> None:
        task, self._countdown = self._countdown, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    # ── Active ride ───────────────────────────────────────────────────

    async def update_status(self, new_status: RideStatus) -> SessionResult:
        if self.active_ride is None:
            return SessionResult.failure("No tienes un viaje activo.")
        try:
            ride = await self.protocol.advance_status(
                self.driver_id, self.active_ride.id, new_status
            )
        except RideOfferError as exc:
            return SessionResult.failure(str(exc))
        if ride.status is RideStatus.COMPLETED:
            self.active_ride = None
            self.available = True
            self.phase = DriverPhase.SCANNING
        else:
            self.active_ride = ride
        return SessionResult.success(f"Estado actualizado a {ride.status.value}.", ride)

    async def rate_passenger(
        self, ride_id: str, rating: int, comment: Optional[str] = None
    ) -> SessionResult:
        if self.finalizer is None:
            return SessionResult.failure("Calificaciones no disponibles.")
        try:
            ride = await self.finalizer.rate_ride(
                ride_id, self.driver_id, Role.DRIVER, rating, comment
            )
        except RideOfferError as exc:
            return SessionResult.failure(str(exc))
        return SessionResult.success("¡Gracias por tu calificación!", ride)

    async def send_message(self, text: str) -> SessionResult:
        if self.active_ride is None:
            return SessionResult.failure("No tienes un viaje activo.")
        try:
            message = await self.protocol.send_message(
                self.active_ride.id, self.driver_id, Role.DRIVER, text
            )
        except RideOfferError as exc:
            return SessionResult.failure(str(exc))
        return SessionResult.success(value=message)

    async def trigger_sos(self) -> SessionResult:
        if self.active_ride is None:
            return SessionResult.failure("No tienes un viaje activo.")
        try:
            alert = await self.protocol.trigger_sos(
                self.active_ride.id, self.driver_id, Role.DRIVER
            )
        except RideOfferError as exc:
            return SessionResult.failure(str(exc))
        return SessionResult.success("Alerta SOS enviada.", alert)

    # ── Feed ──────────────────────────────────────────────────────────

    def _concerns_me(self, message: RideUpdateMessage) -> bool:
        tracked = {r.id for r in (self.offer, self.active_ride) if r is not None}
        return (
            self.driver_id in (message.driver_id, message.offered_to)
            or message.ride_id in tracked
        )

    async def run(self, feed: RideFeed) -> None:
        """Drive the engine from the change feed until cancelled."""

        async def watch_searching():
            async for rides in feed.watch(self.protocol.searching_rides):
                await self.on_searching_snapshot(rides)

        async def watch_mine():
            async for rides in feed.watch(
                lambda: self.protocol.rides_for_driver(self.driver_id),
                only=self._concerns_me,
            ):
                await self.on_my_rides_snapshot(rides)

        try:
            await asyncio.gather(watch_searching(), watch_mine())
        finally:
            self._stop_countdown()

    async def close(self) -> None:
        self._stop_countdown()
