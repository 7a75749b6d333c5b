"""
Passenger Ride State Machine
============================

Phases::

    idle -> calculating -> calculated -> negotiating -> searching
         -> counter-offered <-> assigned -> rating -> idle

Fare phases (calculating, calculated, negotiating) are driven by the
passenger's own actions.  Once a ride exists, every ride phase comes from
the "my rides" snapshot alone:

==========================  ==================================
observed ride status         machine
==========================  ==================================
searching                    searching
counter-offered              counter-offered (fare surfaced)
accepted/arrived/in-progress assigned (driver resolved)
completed, not yet rated     rating (driver resolved)
nothing active               idle, unless rating
==========================  ==================================
"""

from __future__ import annotations

import enum
import logging
from datetime import datetime
from typing import Iterable, Optional

from rideoffer.domain.entities import Driver, Ride
from rideoffer.domain.enums import (
    ASSIGNED_STATUSES,
    TERMINAL_STATUSES,
    PaymentMethod,
    RideStatus,
    Role,
    ServiceType,
)
from rideoffer.domain.errors import RideOfferError
from rideoffer.domain.negotiation import (
    FareNegotiation,
    NegotiationOutcome,
    NegotiationPhase,
)
from rideoffer.domain.pricing import Coupon, FareEstimate, PricingEngine
from rideoffer.infrastructure.feed import RideFeed
from rideoffer.services.rating import RatingFinalizer
from rideoffer.services.ride_protocol import RideProtocol
from rideoffer.sessions.common import SessionResult

logger = logging.getLogger(__name__)


class PassengerPhase(str, enum.Enum):
    IDLE = "idle"
    CALCULATING = "calculating"
    CALCULATED = "calculated"
    NEGOTIATING = "negotiating"
    SEARCHING = "searching"
    COUNTER_OFFERED = "counter-offered"
    ASSIGNED = "assigned"
    RATING = "rating"


_RIDE_PHASES = frozenset(
    {PassengerPhase.SEARCHING, PassengerPhase.COUNTER_OFFERED, PassengerPhase.ASSIGNED}
)


class PassengerRideStateMachine:
    def __init__(
        self,
        protocol: RideProtocol,
        passenger_id: str,
        pricing: PricingEngine,
        negotiation: FareNegotiation,
        finalizer: Optional[RatingFinalizer] = None,
    ):
        self.protocol = protocol
        self.passenger_id = passenger_id
        self.pricing = pricing
        self.negotiation = negotiation
        self.finalizer = finalizer

        self.phase = PassengerPhase.IDLE
        self.estimate: Optional[FareEstimate] = None
        self.service_type = ServiceType.ECONOMY
        self.agreed: Optional[NegotiationOutcome] = None
        self.active_ride: Optional[Ride] = None
        self.rating_ride: Optional[Ride] = None
        self.driver: Optional[Driver] = None
        self.counter_offer_value: Optional[float] = None
        self.notice: Optional[str] = None

    # ── Fare ──────────────────────────────────────────────────────────

    def calculate(
        self,
        distance_km: float,
        duration_minutes: float,
        service_type: ServiceType = ServiceType.ECONOMY,
        ride_date: Optional[datetime] = None,
        peak_time: Optional[bool] = None,
        coupon: Optional[Coupon] = None,
    ) -> SessionResult:
        if self.phase in _RIDE_PHASES:
            return SessionResult.failure("Ya tienes un viaje en curso.")
        self.phase = PassengerPhase.CALCULATING
        self.negotiation.cancel()
        self.agreed = None
        self.estimate = self.pricing.estimate(
            distance_km,
            duration_minutes,
            service_type=service_type.value,
            ride_date=ride_date,
            peak_time=peak_time,
            coupon=coupon,
        )
        self.service_type = service_type
        self.phase = PassengerPhase.CALCULATED
        return SessionResult.success(value=self.estimate)

    def start_negotiation(self) -> SessionResult:
        if self.estimate is None or self.phase is not PassengerPhase.CALCULATED:
            return SessionResult.failure("Calcula la tarifa primero.")
        try:
            bounds = self.negotiation.start(self.estimate)
        except RideOfferError as exc:
            return SessionResult.failure(str(exc))
        self.phase = PassengerPhase.NEGOTIATING
        return SessionResult.success(value=bounds)

    async def propose(self, fare: float) -> SessionResult:
        if self.phase is not PassengerPhase.NEGOTIATING:
            return SessionResult.failure("No hay una negociación activa.")
        try:
            outcome = await self.negotiation.propose(fare)
        except RideOfferError as exc:
            return SessionResult.failure(str(exc))
        if outcome is not None:
            self.agreed = outcome
            return SessionResult.success("¡Tarifa aceptada!", outcome)
        if self.negotiation.phase is NegotiationPhase.COUNTER_OFFER:
            reason = self.negotiation.last_response.reason
            return SessionResult.success(reason, self.negotiation.counter_fare)
        # terminal failure: the estimate still stands
        self.phase = PassengerPhase.CALCULATED
        self.notice = self.negotiation.failure_reason
        return SessionResult.failure(self.notice or "No pudimos acordar una tarifa.")

    def accept_arbitration_counter(self) -> SessionResult:
        try:
            self.agreed = self.negotiation.accept_counter_offer()
        except RideOfferError as exc:
            return SessionResult.failure(str(exc))
        return SessionResult.success("Contraoferta aceptada.", self.agreed)

    def cancel_negotiation(self) -> None:
        self.negotiation.cancel()
        self.agreed = None
        if self.phase is PassengerPhase.NEGOTIATING:
            self.phase = PassengerPhase.CALCULATED

    # ── Ride request ──────────────────────────────────────────────────

    async def request_ride(
        self,
        pickup: str,
        dropoff: str,
        payment_method: PaymentMethod = PaymentMethod.CASH,
        coupon_code: Optional[str] = None,
    ) -> SessionResult:
        if self.estimate is None or self.phase not in (
            PassengerPhase.CALCULATED,
            PassengerPhase.NEGOTIATING,
        ):
            return SessionResult.failure("Calcula la tarifa primero.")
        if self.agreed is not None:
            fare, breakdown = self.agreed.final_fare, self.agreed.breakdown
        else:
            fare, breakdown = self.estimate.estimated_fare, self.estimate.breakdown
        try:
            ride = await self.protocol.create_ride(
                self.passenger_id,
                pickup,
                dropoff,
                fare,
                fare_breakdown=breakdown,
                service_type=self.service_type,
                payment_method=payment_method,
                coupon_code=coupon_code,
            )
        except RideOfferError as exc:
            return SessionResult.failure(str(exc))
        self.negotiation.cancel()
        self.agreed = None
        self.active_ride = ride
        self.phase = PassengerPhase.SEARCHING
        return SessionResult.success("Buscando conductor...", ride)

    # ── Snapshot ──────────────────────────────────────────────────────

    async def on_rides_snapshot(self, rides: Iterable[Ride]) -> PassengerPhase:
        rides = list(rides)
        active = next((r for r in rides if r.status not in TERMINAL_STATUSES), None)

        if active is None:
            if self.active_ride is not None:
                ended = next((r for r in rides if r.id == self.active_ride.id), None)
                if ended is not None and ended.status is RideStatus.CANCELLED:
                    self.notice = "El viaje fue cancelado."
            self.active_ride = None
            self.counter_offer_value = None
            unrated = next(
                (
                    r
                    for r in rides
                    if r.status is RideStatus.COMPLETED
                    and not r.is_rated_by_passenger
                    and r.driver_id
                ),
                None,
            )
            if unrated is not None and self.phase is not PassengerPhase.RATING:
                self.rating_ride = unrated
                self.driver = await self._resolve_driver(unrated.driver_id)
                self.phase = PassengerPhase.RATING
            elif self.phase in _RIDE_PHASES:
                self.driver = None
                self.phase = PassengerPhase.IDLE
            return self.phase

        self.active_ride = active
        if active.status is RideStatus.SEARCHING:
            self.counter_offer_value = None
            self.phase = PassengerPhase.SEARCHING
        elif active.status is RideStatus.COUNTER_OFFERED:
            self.counter_offer_value = active.fare
            self.phase = PassengerPhase.COUNTER_OFFERED
        elif active.status in ASSIGNED_STATUSES:
            self.counter_offer_value = None
            self.driver = await self._resolve_driver(active.driver_id)
            self.phase = PassengerPhase.ASSIGNED
        return self.phase

    async def _resolve_driver(self, driver_id: str) -> Optional[Driver]:
        if self.driver is not None and self.driver.id == driver_id:
            return self.driver
        try:
            return await self.protocol.get_driver(driver_id)
        except RideOfferError:
            logger.warning("Driver %s could not be resolved", driver_id)
            return None

    # ── Ride actions ──────────────────────────────────────────────────

    async def accept_counter_offer(self) -> SessionResult:
        if self.active_ride is None or self.phase is not PassengerPhase.COUNTER_OFFERED:
            return SessionResult.failure("No hay una contraoferta.")
        try:
            ride = await self.protocol.accept_counter_offer(
                self.passenger_id, self.active_ride.id
            )
        except RideOfferError as exc:
            return SessionResult.failure(str(exc))
        await self.on_rides_snapshot([ride])
        return SessionResult.success("¡Contraoferta aceptada!", ride)

    async def reject_counter_offer(self) -> SessionResult:
        if self.active_ride is None or self.phase is not PassengerPhase.COUNTER_OFFERED:
            return SessionResult.failure("No hay una contraoferta.")
        try:
            ride = await self.protocol.reject_counter_offer(
                self.passenger_id, self.active_ride.id
            )
        except RideOfferError as exc:
            return SessionResult.failure(str(exc))
        await self.on_rides_snapshot([ride])
        return SessionResult.success("Contraoferta rechazada.", ride)

    async def cancel(self, reason_code: str) -> SessionResult:
        if self.active_ride is None:
            return SessionResult.failure("No tienes un viaje activo.")
        try:
            ride = await self.protocol.cancel_ride(
                self.passenger_id, self.active_ride.id, reason_code
            )
        except RideOfferError as exc:
            return SessionResult.failure(str(exc))
        await self.on_rides_snapshot([ride])
        return SessionResult.success("Viaje cancelado.", ride)

    async def trigger_sos(self) -> SessionResult:
        if self.active_ride is None or self.phase is not PassengerPhase.ASSIGNED:
            return SessionResult.failure("No tienes un viaje en curso.")
        try:
            alert = await self.protocol.trigger_sos(
                self.active_ride.id, self.passenger_id, Role.PASSENGER
            )
        except RideOfferError as exc:
            return SessionResult.failure(str(exc))
        return SessionResult.success("Alerta SOS enviada.", alert)

    async def send_message(self, text: str) -> SessionResult:
        if self.active_ride is None or self.phase is not PassengerPhase.ASSIGNED:
            return SessionResult.failure("El chat no está disponible.")
        try:
            message = await self.protocol.send_message(
                self.active_ride.id, self.passenger_id, Role.PASSENGER, text
            )
        except RideOfferError as exc:
            return SessionResult.failure(str(exc))
        return SessionResult.success(value=message)

    async def submit_rating(
        self, rating: int, comment: Optional[str] = None
    ) -> SessionResult:
        if self.rating_ride is None or self.finalizer is None:
            return SessionResult.failure("No hay un viaje por calificar.")
        try:
            ride = await self.finalizer.rate_ride(
                self.rating_ride.id, self.passenger_id, Role.PASSENGER, rating, comment
            )
        except RideOfferError as exc:
            return SessionResult.failure(str(exc))
        self.rating_ride = None
        self.driver = None
        self.phase = PassengerPhase.IDLE
        return SessionResult.success("¡Gracias por tu calificación!", ride)

    # ── Feed ──────────────────────────────────────────────────────────

    async def run(self, feed: RideFeed) -> None:
        """Drive the machine from the change feed until cancelled."""
        async for rides in feed.watch(
            lambda: self.protocol.rides_for_passenger(self.passenger_id),
            only=lambda m: m.passenger_id == self.passenger_id,
        ):
            await self.on_rides_snapshot(rides)
