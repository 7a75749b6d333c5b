"""
Ride Offer Protocol
===================

All writes against the shared ride record go through ``RideProtocol``.

Every ride mutation is a compare-and-swap on ``rides.version``: the
caller's view of the ride is re-read inside the write's own session, the
preconditions are checked against that row, and the UPDATE only lands if
the version is still the one that was read.  A lost race surfaces as
``OfferUnavailable`` and nothing is written.

Writes that touch more than one record (accept, completion) are issued
on one session and committed together.  After each commit the fresh ride
row is published on the change feed.

Operations
----------
Passenger: ``create_ride``, ``accept_counter_offer``,
``reject_counter_offer``, ``cancel_ride``.

Driver: ``set_availability``, ``claim_offer``, ``claim_next``,
``accept_offer``, ``reject_offer``, ``counter_offer``, ``advance_status``,
``complete_ride``.

Either party: ``send_message``, ``list_messages``, ``trigger_sos``,
``mark_rated``.

System: ``release_expired_offers``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rideoffer.config import Settings, settings as default_settings
from rideoffer.domain.entities import (
    CancellationReason,
    ChatMessage,
    Driver,
    Passenger,
    Ride,
    SOSAlert,
)
from rideoffer.domain.enums import (
    ASSIGNED_STATUSES,
    CancelledBy,
    DriverStatus,
    PaymentMethod,
    RideStatus,
    Role,
    ServiceType,
)
from rideoffer.domain.errors import (
    IdentityNotFound,
    InvalidFare,
    InvalidStateTransition,
    OfferUnavailable,
    RideNotFound,
    UnknownCancellationReason,
    ValidationFailed,
)
from rideoffer.domain.offers import (
    eligible_candidates,
    ensure_claimable,
    ensure_holds_offer,
    utcnow,
)
from rideoffer.domain.pricing import FareBreakdown
from rideoffer.infrastructure.feed import RideFeed
from rideoffer.infrastructure.repositories import (
    ChatRepository,
    DriverRepository,
    RideRepository,
    SOSAlertRepository,
    UserRepository,
)

logger = logging.getLogger(__name__)

REJECTED_COUNTER = "REJECTED_COUNTER"


class RideProtocol:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        feed: Optional[RideFeed] = None,
        config: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        config = config or default_settings
        self.session_factory = session_factory
        self.feed = feed
        self.offer_window_seconds = config.offer_window_seconds
        self.reasons = {
            r["code"]: CancellationReason(r["code"], r["reason"])
            for r in config.cancellation_reasons
        }
        self.clock = clock

    # ── Reads ─────────────────────────────────────────────────────────

    async def get_ride(self, ride_id: str) -> Ride:
        async with self.session_factory() as session:
            ride = await RideRepository(session).get(ride_id)
        if ride is None:
            raise RideNotFound(f"Ride {ride_id} not found")
        return ride

    async def searching_rides(self) -> list[Ride]:
        async with self.session_factory() as session:
            return await RideRepository(session).list_by_status(RideStatus.SEARCHING)

    async def rides_for_passenger(self, passenger_id: str) -> list[Ride]:
        async with self.session_factory() as session:
            return await RideRepository(session).list_for_passenger(passenger_id)

    async def rides_for_driver(self, driver_id: str) -> list[Ride]:
        async with self.session_factory() as session:
            return await RideRepository(session).list_for_driver(driver_id)

    async def get_driver(self, driver_id: str) -> Driver:
        async with self.session_factory() as session:
            driver = await DriverRepository(session).get(driver_id)
        if driver is None:
            raise IdentityNotFound(f"Driver {driver_id} not found")
        return driver

    async def get_passenger(self, passenger_id: str) -> Passenger:
        async with self.session_factory() as session:
            passenger = await UserRepository(session).get(passenger_id)
        if passenger is None:
            raise IdentityNotFound(f"Passenger {passenger_id} not found")
        return passenger

    def cancellation_reasons(self) -> list[CancellationReason]:
        return list(self.reasons.values())

    def cancellation_reason(self, code: str) -> CancellationReason:
        try:
            return self.reasons[code]
        except KeyError:
            raise UnknownCancellationReason(f"Unknown cancellation code {code!r}") from None

    # ── Passenger writes ──────────────────────────────────────────────

    async def create_ride(
        self,
        passenger_id: str,
        pickup: str,
        dropoff: str,
        fare: float,
        fare_breakdown: Optional[FareBreakdown] = None,
        service_type: ServiceType = ServiceType.ECONOMY,
        payment_method: PaymentMethod = PaymentMethod.CASH,
        coupon_code: Optional[str] = None,
    ) -> Ride:
        if not pickup.strip() or not dropoff.strip():
            raise ValidationFailed("Pickup and dropoff are required")
        if fare <= 0:
            raise InvalidFare("Fare must be positive")

        async with self.session_factory() as session:
            if await UserRepository(session).get(passenger_id) is None:
                raise IdentityNotFound(f"Passenger {passenger_id} not found")
            ride = await RideRepository(session).create(
                Ride(
                    pickup=pickup.strip(),
                    dropoff=dropoff.strip(),
                    fare=round(fare, 2),
                    fare_breakdown=fare_breakdown,
                    service_type=service_type,
                    payment_method=payment_method,
                    coupon_code=coupon_code,
                    passenger_id=passenger_id,
                    status=RideStatus.SEARCHING,
                    date=self.clock(),
                )
            )
            logger.info("Ride %s requested by %s at %.2f", ride.id, passenger_id, fare)
            return await self._commit(session, ride.id)

    async def accept_counter_offer(self, passenger_id: str, ride_id: str) -> Ride:
        """Take the driver's counter: the ride is assigned to the offering driver."""
        async with self.session_factory() as session:
            ride = await self._load_own_ride(session, ride_id, passenger_id)
            if ride.status is not RideStatus.COUNTER_OFFERED or ride.offered_to is None:
                raise OfferUnavailable("La contraoferta ya no está disponible.")
            driver_id = ride.offered_to
            await self._cas(
                session,
                ride,
                status=RideStatus.ACCEPTED,
                driver_id=driver_id,
                offered_to=None,
                offered_at=None,
                assignment_timestamp=self.clock(),
            )
            await DriverRepository(session).set_status(driver_id, DriverStatus.ON_RIDE)
            logger.info("Ride %s: counter-offer of %s accepted", ride_id, driver_id)
            return await self._commit(session, ride_id)

    async def reject_counter_offer(self, passenger_id: str, ride_id: str) -> Ride:
        """Rejecting a driver's counter cancels the ride."""
        async with self.session_factory() as session:
            ride = await self._load_own_ride(session, ride_id, passenger_id)
            if ride.status is not RideStatus.COUNTER_OFFERED:
                raise OfferUnavailable("La contraoferta ya no está disponible.")
            await self._cancel(session, ride, self.cancellation_reason(REJECTED_COUNTER))
            return await self._commit(session, ride_id)

    async def cancel_ride(self, passenger_id: str, ride_id: str, reason_code: str) -> Ride:
        reason = self.cancellation_reason(reason_code)
        async with self.session_factory() as session:
            ride = await self._load_own_ride(session, ride_id, passenger_id)
            await self._cancel(session, ride, reason)
            return await self._commit(session, ride_id)

    async def _cancel(
        self, session: AsyncSession, ride: Ride, reason: CancellationReason
    ) -> None:
        if not ride.can_transition_to(RideStatus.CANCELLED):
            raise InvalidStateTransition(
                f"Cannot cancel ride in status {ride.status.value}"
            )
        await self._cas(
            session,
            ride,
            status=RideStatus.CANCELLED,
            offered_to=None,
            offered_at=None,
            cancellation_code=reason.code,
            cancellation_reason=reason.reason,
            cancelled_by=CancelledBy.PASSENGER,
        )
        if ride.driver_id:
            # TODO: decide whether cancelling an assigned ride should free the driver
            logger.warning(
                "Ride %s cancelled after assignment; driver %s left %s",
                ride.id,
                ride.driver_id,
                DriverStatus.ON_RIDE.value,
            )
        logger.info("Ride %s cancelled (%s)", ride.id, reason.code)

    # ── Driver writes ─────────────────────────────────────────────────

    async def set_availability(self, driver_id: str, available: bool) -> Driver:
        status = DriverStatus.AVAILABLE if available else DriverStatus.UNAVAILABLE
        async with self.session_factory() as session:
            repo = DriverRepository(session)
            if not await repo.set_status(driver_id, status):
                raise IdentityNotFound(f"Driver {driver_id} not found")
            await session.commit()
            driver = await repo.get(driver_id)
        logger.info("Driver %s is now %s", driver_id, status.value)
        return driver

    async def claim_offer(self, driver_id: str, ride_id: str) -> Ride:
        """Take the exclusive offer window on a searching ride."""
        async with self.session_factory() as session:
            ride = await self._load(session, ride_id)
            now = self.clock()
            ensure_claimable(ride, now, self.offer_window_seconds)
            await self._cas(session, ride, offered_to=driver_id, offered_at=now)
            logger.info("Ride %s offered to driver %s", ride_id, driver_id)
            return await self._commit(session, ride_id)

    async def claim_next(
        self, driver_id: str, locally_rejected: Iterable[str] = ()
    ) -> Optional[Ride]:
        """Claim the first eligible searching ride, or return None."""
        driver = await self.get_driver(driver_id)
        if not driver.is_available:
            raise InvalidStateTransition(
                f"Driver {driver_id} is {driver.status.value}, not available"
            )
        candidates = eligible_candidates(
            await self.searching_rides(),
            driver_id,
            self.clock(),
            self.offer_window_seconds,
            locally_rejected,
        )
        for candidate in candidates:
            try:
                return await self.claim_offer(driver_id, candidate.id)
            except OfferUnavailable:
                logger.debug("Lost claim on ride %s, trying next", candidate.id)
        return None

    async def accept_offer(self, driver_id: str, ride_id: str) -> Ride:
        async with self.session_factory() as session:
            ride = await self._load(session, ride_id)
            if ride.status is RideStatus.COUNTER_OFFERED:
                if not ride.is_offered_to(driver_id):
                    raise OfferUnavailable("El viaje ya no está disponible.")
            else:
                ensure_holds_offer(ride, driver_id, self.clock(), self.offer_window_seconds)
            await self._cas(
                session,
                ride,
                status=RideStatus.ACCEPTED,
                driver_id=driver_id,
                offered_to=None,
                offered_at=None,
                assignment_timestamp=self.clock(),
            )
            await DriverRepository(session).set_status(driver_id, DriverStatus.ON_RIDE)
            logger.info("Ride %s accepted by driver %s", ride_id, driver_id)
            return await self._commit(session, ride_id)

    async def reject_offer(self, driver_id: str, ride_id: str) -> Ride:
        """Release the offer and never see this ride again."""
        async with self.session_factory() as session:
            ride = await self._load(session, ride_id)
            if ride.status is not RideStatus.SEARCHING or not ride.is_offered_to(driver_id):
                raise OfferUnavailable("El viaje ya no está disponible.")
            rejected = ride.rejected_by + [driver_id]
            await self._cas(
                session, ride, rejected_by=rejected, offered_to=None, offered_at=None
            )
            logger.info("Ride %s rejected by driver %s", ride_id, driver_id)
            return await self._commit(session, ride_id)

    async def counter_offer(self, driver_id: str, ride_id: str, fare: float) -> Ride:
        if fare <= 0:
            raise InvalidFare("Counter-offer must be positive")
        async with self.session_factory() as session:
            ride = await self._load(session, ride_id)
            ensure_holds_offer(ride, driver_id, self.clock(), self.offer_window_seconds)
            await self._cas(
                session, ride, fare=round(fare, 2), status=RideStatus.COUNTER_OFFERED
            )
            logger.info("Ride %s: driver %s countered %.2f", ride_id, driver_id, fare)
            return await self._commit(session, ride_id)

    async def advance_status(
        self, driver_id: str, ride_id: str, new_status: RideStatus
    ) -> Ride:
        """Driver-side progress: arrived, in-progress or completed."""
        if new_status is RideStatus.COMPLETED:
            return await self.complete_ride(driver_id, ride_id)
        if new_status not in (RideStatus.ARRIVED, RideStatus.IN_PROGRESS):
            raise InvalidStateTransition(
                f"Drivers cannot move a ride to {new_status.value}"
            )
        async with self.session_factory() as session:
            ride = await self._load_assigned_ride(session, ride_id, driver_id)
            if not ride.can_transition_to(new_status):
                raise InvalidStateTransition(
                    f"Cannot transition from {ride.status.value} to {new_status.value}"
                )
            await self._cas(session, ride, status=new_status)
            return await self._commit(session, ride_id)

    async def complete_ride(self, driver_id: str, ride_id: str) -> Ride:
        """Batch: ride completed, driver available, passenger ride counter bumped."""
        async with self.session_factory() as session:
            ride = await self._load_assigned_ride(session, ride_id, driver_id)
            if not ride.can_transition_to(RideStatus.COMPLETED):
                raise InvalidStateTransition(
                    f"Cannot complete ride in status {ride.status.value}"
                )
            await self._cas(session, ride, status=RideStatus.COMPLETED)
            await DriverRepository(session).set_status(driver_id, DriverStatus.AVAILABLE)
            await UserRepository(session).increment_total_rides(ride.passenger_id)
            logger.info("Ride %s completed by driver %s", ride_id, driver_id)
            return await self._commit(session, ride_id)

    # ── Either party ──────────────────────────────────────────────────

    async def send_message(
        self, ride_id: str, sender_id: str, role: Role, text: str
    ) -> ChatMessage:
        if not text.strip():
            raise ValidationFailed("Message text is required")
        async with self.session_factory() as session:
            ride = await self._load_party_ride(session, ride_id, sender_id, role)
            if ride.status not in ASSIGNED_STATUSES:
                raise InvalidStateTransition(
                    f"Chat is closed while the ride is {ride.status.value}"
                )
            message = await ChatRepository(session).add(
                ChatMessage(
                    ride_id=ride_id,
                    sender_id=sender_id,
                    sender_role=role,
                    text=text.strip(),
                    timestamp=self.clock(),
                )
            )
            await session.commit()
            return message

    async def list_messages(
        self, ride_id: str, reader_id: str, role: Role
    ) -> list[ChatMessage]:
        async with self.session_factory() as session:
            await self._load_party_ride(session, ride_id, reader_id, role)
            return await ChatRepository(session).list_for_ride(ride_id)

    async def trigger_sos(self, ride_id: str, actor_id: str, role: Role) -> SOSAlert:
        async with self.session_factory() as session:
            ride = await self._load_party_ride(session, ride_id, actor_id, role)
            if ride.status not in ASSIGNED_STATUSES:
                raise InvalidStateTransition("SOS is only available during a ride")
            alert = await SOSAlertRepository(session).add(
                SOSAlert(
                    ride_id=ride_id,
                    passenger_id=ride.passenger_id,
                    driver_id=ride.driver_id,
                    triggered_by=role,
                    date=self.clock(),
                )
            )
            await session.commit()
        logger.warning("SOS raised on ride %s by %s %s", ride_id, role.value, actor_id)
        return alert

    async def mark_rated(self, ride_id: str, role: Role) -> Ride:
        """Claim the rating slot for *role* on a ride.

        Only one caller per ride and direction wins; the rest get
        ``InvalidStateTransition`` and must not write a review.
        """
        async with self.session_factory() as session:
            await self._load(session, ride_id)
            if not await RideRepository(session).mark_rated(ride_id, role):
                await session.rollback()
                raise InvalidStateTransition("Ride already rated")
            return await self._commit(session, ride_id)

    # ── System ────────────────────────────────────────────────────────

    async def release_expired_offers(self) -> int:
        """Clear claims older than the offer window.  Returns rides released.

        An expired holder is recorded in ``rejected_by``, the same as an
        explicit rejection.
        """
        cutoff = self.clock() - timedelta(seconds=self.offer_window_seconds)
        async with self.session_factory() as session:
            expired = await RideRepository(session).list_expired_offers(cutoff)

        released = 0
        for stale in expired:
            async with self.session_factory() as session:
                repo = RideRepository(session)
                rejected = stale.rejected_by
                if stale.offered_to and stale.offered_to not in rejected:
                    rejected = rejected + [stale.offered_to]
                if not await repo.compare_and_set(
                    stale.id,
                    stale.version,
                    rejected_by=rejected,
                    offered_to=None,
                    offered_at=None,
                ):
                    # holder answered or another sweep got there first
                    continue
                await self._commit(session, stale.id)
                released += 1
        if released:
            logger.info("Released %d expired offers", released)
        return released

    # ── Internals ─────────────────────────────────────────────────────

    async def _load(self, session: AsyncSession, ride_id: str) -> Ride:
        ride = await RideRepository(session).get(ride_id)
        if ride is None:
            raise RideNotFound(f"Ride {ride_id} not found")
        return ride

    async def _load_own_ride(
        self, session: AsyncSession, ride_id: str, passenger_id: str
    ) -> Ride:
        ride = await self._load(session, ride_id)
        if ride.passenger_id != passenger_id:
            raise RideNotFound(f"Ride {ride_id} not found")
        return ride

    async def _load_assigned_ride(
        self, session: AsyncSession, ride_id: str, driver_id: str
    ) -> Ride:
        ride = await self._load(session, ride_id)
        if ride.driver_id != driver_id:
            raise RideNotFound(f"Ride {ride_id} not found")
        return ride

    async def _load_party_ride(
        self, session: AsyncSession, ride_id: str, actor_id: str, role: Role
    ) -> Ride:
        ride = await self._load(session, ride_id)
        party = ride.passenger_id if role is Role.PASSENGER else ride.driver_id
        if party != actor_id:
            raise RideNotFound(f"Ride {ride_id} not found")
        return ride

    async def _cas(self, session: AsyncSession, ride: Ride, **values) -> None:
        if not await RideRepository(session).compare_and_set(
            ride.id, ride.version, **values
        ):
            await session.rollback()
            raise OfferUnavailable("El viaje ya no está disponible.")

    async def _commit(self, session: AsyncSession, ride_id: str) -> Ride:
        await session.commit()
        ride = await self._load(session, ride_id)
        if self.feed is not None:
            await self.feed.publish(ride)
        return ride
