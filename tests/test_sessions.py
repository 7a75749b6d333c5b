"""Tests for the driver offer engine and the passenger ride state machine."""

from __future__ import annotations

from datetime import datetime

import pytest

from rideoffer.domain.enums import NegotiationDecision, RideStatus, Role
from rideoffer.domain.negotiation import (
    ArbitrationResult,
    EnvelopeArbitrator,
    FareNegotiation,
)
from rideoffer.domain.pricing import PricingEngine
from rideoffer.services.rating import RatingFinalizer
from rideoffer.sessions.driver import DriverOfferEngine, DriverPhase
from rideoffer.sessions.passenger import PassengerPhase, PassengerRideStateMachine
from tests.conftest import DRIVER_A, DRIVER_B, PASSENGER

OFF_PEAK = datetime(2024, 5, 8, 10, 0)


class SnapshotFeed:
    """Yields one snapshot per watch, like a feed that never changes."""

    def __init__(self):
        self.filters = []

    async def watch(self, query, only=None):
        self.filters.append(only)
        yield await query()


class RejectingArbitrator:
    async def negotiate(self, estimated_fare, proposed_fare, min_fare, max_fare):
        return ArbitrationResult(NegotiationDecision.REJECTED, "Tarifa no aceptada.")


@pytest.fixture
def finalizer(session_factory, protocol):
    return RatingFinalizer(session_factory, protocol=protocol)


@pytest.fixture
def driver_engine(protocol, finalizer):
    return DriverOfferEngine(protocol, DRIVER_A, finalizer)


@pytest.fixture
def passenger(protocol, finalizer, test_settings):
    return PassengerRideStateMachine(
        protocol,
        PASSENGER,
        PricingEngine.from_settings(test_settings),
        FareNegotiation(EnvelopeArbitrator(0.2), negotiation_range=0.2),
        finalizer,
    )


async def _mine(protocol):
    return await protocol.rides_for_passenger(PASSENGER)


async def _online(engine):
    result = await engine.go_online()
    assert result.ok
    return engine


class TestDriverOfferEngine:
    @pytest.mark.asyncio
    async def test_offline_driver_does_not_scan(self, protocol, driver_engine, searching_ride):
        claimed = await driver_engine.on_searching_snapshot([searching_ride])
        assert claimed is None
        assert driver_engine.phase is DriverPhase.IDLE

    @pytest.mark.asyncio
    async def test_claims_first_eligible_ride(self, protocol, driver_engine, searching_ride):
        await _online(driver_engine)

        claimed = await driver_engine.on_searching_snapshot(await protocol.searching_rides())

        assert claimed.id == searching_ride.id
        assert driver_engine.phase is DriverPhase.HOLDING_OFFER
        assert not driver_engine.can_scan
        await driver_engine.close()

    @pytest.mark.asyncio
    async def test_losing_driver_keeps_scanning(self, protocol, finalizer, searching_ride):
        first = await _online(DriverOfferEngine(protocol, DRIVER_A, finalizer))
        second = await _online(DriverOfferEngine(protocol, DRIVER_B, finalizer))
        snapshot = await protocol.searching_rides()

        await first.on_searching_snapshot(snapshot)
        # stale snapshot still shows the ride as free
        assert await second.on_searching_snapshot(snapshot) is None

        assert second.phase is DriverPhase.SCANNING
        assert (await protocol.get_ride(searching_ride.id)).offered_to == DRIVER_A
        await first.close()

    @pytest.mark.asyncio
    async def test_going_offline_releases_held_offer(
        self, protocol, driver_engine, searching_ride
    ):
        await _online(driver_engine)
        await driver_engine.on_searching_snapshot([searching_ride])

        result = await driver_engine.go_offline()

        assert result.ok
        assert driver_engine.phase is DriverPhase.IDLE
        assert driver_engine.offer is None
        ride = await protocol.get_ride(searching_ride.id)
        assert ride.offered_to is None
        assert ride.rejected_by == [DRIVER_A]
        assert not (await protocol.get_driver(DRIVER_A)).is_available

    @pytest.mark.asyncio
    async def test_accept(self, protocol, driver_engine, searching_ride):
        await _online(driver_engine)
        await driver_engine.on_searching_snapshot([searching_ride])

        result = await driver_engine.accept()

        assert result.ok
        assert driver_engine.phase is DriverPhase.ACCEPTED
        assert driver_engine.active_ride.status is RideStatus.ACCEPTED
        assert driver_engine.offer is None

    @pytest.mark.asyncio
    async def test_accept_after_cancel_returns_to_scanning(
        self, protocol, driver_engine, searching_ride
    ):
        await _online(driver_engine)
        await driver_engine.on_searching_snapshot([searching_ride])
        await protocol.cancel_ride(PASSENGER, searching_ride.id, "OTHER")

        result = await driver_engine.accept()

        assert not result.ok
        assert result.message == "El viaje ya no está disponible."
        assert driver_engine.phase is DriverPhase.SCANNING
        assert driver_engine.can_scan

    @pytest.mark.asyncio
    async def test_reject_excludes_ride(self, protocol, driver_engine, searching_ride):
        await _online(driver_engine)
        await driver_engine.on_searching_snapshot([searching_ride])

        result = await driver_engine.reject()

        assert result.ok
        assert driver_engine.phase is DriverPhase.REJECTED
        assert searching_ride.id in driver_engine.locally_rejected
        ride = await protocol.get_ride(searching_ride.id)
        assert ride.rejected_by == [DRIVER_A]
        assert await driver_engine.on_searching_snapshot([ride]) is None

    @pytest.mark.asyncio
    async def test_countdown_expiry_rejects(self, protocol, finalizer, searching_ride):
        engine = await _online(
            DriverOfferEngine(protocol, DRIVER_A, finalizer, offer_window_seconds=0.01)
        )
        await engine.on_searching_snapshot([searching_ride])

        await engine._countdown

        assert engine.phase is DriverPhase.EXPIRED
        assert engine.offer is None
        ride = await protocol.get_ride(searching_ride.id)
        assert ride.offered_to is None
        assert ride.rejected_by == [DRIVER_A]

    @pytest.mark.asyncio
    async def test_counter_accepted_by_passenger(self, protocol, driver_engine, searching_ride):
        await _online(driver_engine)
        await driver_engine.on_searching_snapshot([searching_ride])

        result = await driver_engine.counter(26.0)
        assert result.ok
        assert driver_engine._countdown is None
        assert driver_engine.offer.status is RideStatus.COUNTER_OFFERED

        await protocol.accept_counter_offer(PASSENGER, searching_ride.id)
        await driver_engine.on_my_rides_snapshot(await protocol.rides_for_driver(DRIVER_A))

        assert driver_engine.phase is DriverPhase.ACCEPTED
        assert driver_engine.active_ride.fare == 26.0
        assert driver_engine.offer is None

    @pytest.mark.asyncio
    async def test_counter_rejected_by_passenger(self, protocol, driver_engine, searching_ride):
        await _online(driver_engine)
        await driver_engine.on_searching_snapshot([searching_ride])
        await driver_engine.counter(26.0)

        await protocol.reject_counter_offer(PASSENGER, searching_ride.id)
        await driver_engine.on_my_rides_snapshot(await protocol.rides_for_driver(DRIVER_A))

        assert driver_engine.phase is DriverPhase.SUPERSEDED
        assert driver_engine.offer is None
        assert driver_engine.can_scan

    @pytest.mark.asyncio
    async def test_trip_to_rating(self, protocol, driver_engine, searching_ride):
        await _online(driver_engine)
        await driver_engine.on_searching_snapshot([searching_ride])
        await driver_engine.accept()

        assert (await driver_engine.update_status(RideStatus.ARRIVED)).ok
        assert (await driver_engine.send_message("Estoy afuera")).ok
        assert (await driver_engine.update_status(RideStatus.IN_PROGRESS)).ok
        assert (await driver_engine.update_status(RideStatus.COMPLETED)).ok

        assert driver_engine.active_ride is None
        assert driver_engine.phase is DriverPhase.SCANNING
        result = await driver_engine.rate_passenger(searching_ride.id, 5, "Puntual")
        assert result.ok
        assert result.value.is_rated_by_driver

    @pytest.mark.asyncio
    async def test_illegal_status_is_reported(self, protocol, driver_engine, searching_ride):
        await _online(driver_engine)
        await driver_engine.on_searching_snapshot([searching_ride])
        await driver_engine.accept()

        result = await driver_engine.update_status(RideStatus.COMPLETED)

        assert not result.ok
        assert driver_engine.active_ride.status is RideStatus.ACCEPTED

    @pytest.mark.asyncio
    async def test_run_consumes_both_snapshots(self, protocol, driver_engine, searching_ride):
        await _online(driver_engine)
        feed = SnapshotFeed()

        await driver_engine.run(feed)

        assert driver_engine._countdown is None
        assert (await protocol.get_ride(searching_ride.id)).offered_to == DRIVER_A
        searching_filter, mine_filter = feed.filters
        assert searching_filter is None
        assert mine_filter is not None


class TestPassengerRideStateMachine:
    @pytest.mark.asyncio
    async def test_negotiated_request(self, passenger):
        estimate = passenger.calculate(12.5, 20, ride_date=OFF_PEAK).value
        assert estimate.estimated_fare == pytest.approx(20.0)
        assert passenger.phase is PassengerPhase.CALCULATED

        low, high = passenger.start_negotiation().value
        assert (round(low, 2), high) == (16.0, 20.0)
        result = await passenger.propose(18)
        assert result.ok and result.value.final_fare == 18.0

        result = await passenger.request_ride("Av. Larco 345", "Jockey Plaza")

        assert result.ok
        assert passenger.phase is PassengerPhase.SEARCHING
        assert result.value.fare == 18.0
        assert result.value.fare_breakdown.total == 18.0

    @pytest.mark.asyncio
    async def test_request_at_estimate_without_negotiating(self, passenger):
        passenger.calculate(12.5, 20, ride_date=OFF_PEAK)
        result = await passenger.request_ride("A", "B")
        assert result.value.fare == pytest.approx(20.0)

    @pytest.mark.asyncio
    async def test_arbitration_counter(self, passenger):
        passenger.calculate(12.5, 20, ride_date=OFF_PEAK)
        passenger.start_negotiation()

        result = await passenger.propose(17)
        assert result.ok and result.value == 18.0

        agreed = passenger.accept_arbitration_counter()
        assert agreed.value.final_fare == 18.0

    @pytest.mark.asyncio
    async def test_failed_negotiation_keeps_estimate(self, protocol, finalizer, test_settings):
        machine = PassengerRideStateMachine(
            protocol,
            PASSENGER,
            PricingEngine.from_settings(test_settings),
            FareNegotiation(RejectingArbitrator()),
            finalizer,
        )
        machine.calculate(12.5, 20, ride_date=OFF_PEAK)
        machine.start_negotiation()

        result = await machine.propose(17)

        assert not result.ok
        assert result.message == "Tarifa no aceptada."
        assert machine.phase is PassengerPhase.CALCULATED
        assert machine.estimate is not None

    @pytest.mark.asyncio
    async def test_cancel_negotiation_keeps_estimate(self, passenger):
        passenger.calculate(12.5, 20, ride_date=OFF_PEAK)
        passenger.start_negotiation()

        passenger.cancel_negotiation()

        assert passenger.phase is PassengerPhase.CALCULATED
        assert passenger.agreed is None
        assert passenger.start_negotiation().ok

    @pytest.mark.asyncio
    async def test_out_of_bounds_proposal(self, passenger):
        passenger.calculate(12.5, 20, ride_date=OFF_PEAK)
        passenger.start_negotiation()
        result = await passenger.propose(25)
        assert not result.ok
        assert passenger.phase is PassengerPhase.NEGOTIATING

    @pytest.mark.asyncio
    async def test_request_requires_estimate(self, passenger):
        result = await passenger.request_ride("A", "B")
        assert not result.ok
        assert passenger.phase is PassengerPhase.IDLE

    @pytest.mark.asyncio
    async def test_snapshot_drives_phases(self, protocol, passenger, searching_ride):
        phase = await passenger.on_rides_snapshot(await _mine(protocol))
        assert phase is PassengerPhase.SEARCHING

        await protocol.claim_offer(DRIVER_A, searching_ride.id)
        await protocol.counter_offer(DRIVER_A, searching_ride.id, 23.0)
        assert (
            await passenger.on_rides_snapshot(await _mine(protocol))
            is PassengerPhase.COUNTER_OFFERED
        )
        assert passenger.counter_offer_value == 23.0

        result = await passenger.accept_counter_offer()
        assert result.ok
        assert passenger.phase is PassengerPhase.ASSIGNED
        assert passenger.driver.id == DRIVER_A

        await protocol.advance_status(DRIVER_A, searching_ride.id, RideStatus.IN_PROGRESS)
        await protocol.advance_status(DRIVER_A, searching_ride.id, RideStatus.COMPLETED)
        phase = await passenger.on_rides_snapshot(await _mine(protocol))
        assert phase is PassengerPhase.RATING
        assert passenger.rating_ride.id == searching_ride.id

        result = await passenger.submit_rating(5, "Excelente")
        assert result.ok
        assert passenger.phase is PassengerPhase.IDLE
        phase = await passenger.on_rides_snapshot(await _mine(protocol))
        assert phase is PassengerPhase.IDLE

    @pytest.mark.asyncio
    async def test_reject_driver_counter(self, protocol, passenger, searching_ride):
        await protocol.claim_offer(DRIVER_A, searching_ride.id)
        await protocol.counter_offer(DRIVER_A, searching_ride.id, 23.0)
        await passenger.on_rides_snapshot(await _mine(protocol))

        result = await passenger.reject_counter_offer()

        assert result.ok
        assert result.value.cancellation.code == "REJECTED_COUNTER"
        assert passenger.phase is PassengerPhase.IDLE
        assert passenger.notice == "El viaje fue cancelado."

    @pytest.mark.asyncio
    async def test_cancel_searching(self, protocol, passenger, searching_ride):
        await passenger.on_rides_snapshot(await _mine(protocol))

        result = await passenger.cancel("NO_LONGER_NEEDED")

        assert result.ok
        assert passenger.phase is PassengerPhase.IDLE
        assert passenger.active_ride is None

    @pytest.mark.asyncio
    async def test_cancel_with_unknown_reason(self, protocol, passenger, searching_ride):
        await passenger.on_rides_snapshot(await _mine(protocol))
        result = await passenger.cancel("BORED")
        assert not result.ok
        assert passenger.phase is PassengerPhase.SEARCHING

    @pytest.mark.asyncio
    async def test_sos_and_chat_while_assigned(self, protocol, passenger, searching_ride):
        assert not (await passenger.trigger_sos()).ok

        await protocol.claim_offer(DRIVER_A, searching_ride.id)
        await protocol.accept_offer(DRIVER_A, searching_ride.id)
        await passenger.on_rides_snapshot(await _mine(protocol))

        sos = await passenger.trigger_sos()
        assert sos.ok and sos.value.triggered_by is Role.PASSENGER
        chat = await passenger.send_message("¿Dónde estás?")
        assert chat.ok and chat.value.sender_id == PASSENGER

    @pytest.mark.asyncio
    async def test_snapshot_does_not_reset_fare_phases(self, passenger):
        passenger.calculate(12.5, 20, ride_date=OFF_PEAK)
        assert await passenger.on_rides_snapshot([]) is PassengerPhase.CALCULATED

    @pytest.mark.asyncio
    async def test_run_subscribes_to_own_rides(self, passenger, searching_ride):
        feed = SnapshotFeed()

        await passenger.run(feed)

        assert passenger.phase is PassengerPhase.SEARCHING
        (only,) = feed.filters
        assert only is not None
