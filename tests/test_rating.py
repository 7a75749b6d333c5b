"""Tests for the running-average rating and the rating finalizer."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from rideoffer.domain.enums import RideStatus, Role, Sentiment
from rideoffer.domain.errors import (
    ExternalServiceError,
    IdentityNotFound,
    InvalidRating,
    InvalidStateTransition,
    RideNotFound,
)
from rideoffer.domain.rating import running_average, validate_rating
from rideoffer.infrastructure.models import UserModel
from rideoffer.infrastructure.repositories import ReviewRepository
from rideoffer.services.rating import RatingFinalizer
from tests.conftest import DRIVER_A, DRIVER_B, PASSENGER


def _classifier(sentiment=Sentiment.POSITIVE, error=None):
    mock = AsyncMock()
    mock.classify = AsyncMock(return_value=sentiment, side_effect=error)
    return mock


async def _set_identity(session_factory, user_id, rating, total_rides):
    async with session_factory() as session:
        user = await session.get(UserModel, user_id)
        user.rating = rating
        user.total_rides = total_rides
        await session.commit()


async def _reviews(session_factory, subject_id):
    async with session_factory() as session:
        return await ReviewRepository(session).list_for_subject(subject_id)


async def _completed_ride(protocol, ride):
    await protocol.claim_offer(DRIVER_A, ride.id)
    await protocol.accept_offer(DRIVER_A, ride.id)
    await protocol.advance_status(DRIVER_A, ride.id, RideStatus.IN_PROGRESS)
    return await protocol.complete_ride(DRIVER_A, ride.id)


class TestRunningAverage:
    def test_first_rating_is_taken_as_is(self):
        assert running_average(0.0, 0, 5) == 5.0

    def test_weighted_by_ride_count(self):
        assert running_average(4.0, 3, 5) == pytest.approx(4.25)

    @pytest.mark.parametrize("rating", [0, 6, -1])
    def test_out_of_range(self, rating):
        with pytest.raises(InvalidRating):
            validate_rating(rating)

    @pytest.mark.parametrize("rating", [1, 3, 5])
    def test_in_range(self, rating):
        validate_rating(rating)


class TestRatingFinalizer:
    @pytest.mark.asyncio
    async def test_first_rating_of_fresh_identity(self, session_factory):
        finalizer = RatingFinalizer(session_factory)

        average = await finalizer.submit(Role.PASSENGER, PASSENGER, 5)

        assert round(average, 2) == 5.00

    @pytest.mark.asyncio
    async def test_average_uses_stored_values(self, session_factory):
        await _set_identity(session_factory, PASSENGER, 4.0, 3)
        finalizer = RatingFinalizer(session_factory)

        average = await finalizer.submit(Role.PASSENGER, PASSENGER, 5)

        assert average == pytest.approx(4.25)
        async with session_factory() as session:
            user = await session.get(UserModel, PASSENGER)
        assert user.rating == pytest.approx(4.25)

    @pytest.mark.asyncio
    async def test_review_written_with_sentiment(self, session_factory):
        classifier = _classifier(Sentiment.POSITIVE)
        finalizer = RatingFinalizer(session_factory, classifier)

        await finalizer.submit(Role.DRIVER, DRIVER_A, 4, "  Muy amable  ")

        classifier.classify.assert_awaited_once_with("Muy amable")
        (review,) = await _reviews(session_factory, DRIVER_A)
        assert review.subject_id == DRIVER_A
        assert review.subject_role is Role.DRIVER
        assert review.sentiment is Sentiment.POSITIVE
        assert review.comment == "Muy amable"

    @pytest.mark.asyncio
    async def test_blank_comment_skips_classifier(self, session_factory):
        classifier = _classifier()
        finalizer = RatingFinalizer(session_factory, classifier)

        await finalizer.submit(Role.DRIVER, DRIVER_A, 3, "   ")

        classifier.classify.assert_not_awaited()
        (review,) = await _reviews(session_factory, DRIVER_A)
        assert review.sentiment is Sentiment.NEUTRAL
        assert review.comment is None

    @pytest.mark.asyncio
    async def test_classifier_failure_degrades_to_neutral(self, session_factory):
        classifier = _classifier(error=ExternalServiceError("down"))
        finalizer = RatingFinalizer(session_factory, classifier)

        average = await finalizer.submit(Role.DRIVER, DRIVER_A, 2, "Llegó tarde")

        assert average == 2.0
        (review,) = await _reviews(session_factory, DRIVER_A)
        assert review.sentiment is Sentiment.NEUTRAL

    @pytest.mark.asyncio
    async def test_invalid_rating_touches_nothing(self, session_factory):
        classifier = _classifier()
        finalizer = RatingFinalizer(session_factory, classifier)

        with pytest.raises(InvalidRating):
            await finalizer.submit(Role.DRIVER, DRIVER_A, 6, "Excelente")

        classifier.classify.assert_not_awaited()
        assert list(await _reviews(session_factory, DRIVER_A)) == []

    @pytest.mark.asyncio
    async def test_unknown_identity(self, session_factory):
        finalizer = RatingFinalizer(session_factory)
        with pytest.raises(IdentityNotFound):
            await finalizer.submit(Role.DRIVER, "d-nadie", 5)


class TestRateRide:
    @pytest.mark.asyncio
    async def test_passenger_rates_driver(self, session_factory, protocol, searching_ride):
        await _completed_ride(protocol, searching_ride)
        finalizer = RatingFinalizer(session_factory, protocol=protocol)

        ride = await finalizer.rate_ride(searching_ride.id, PASSENGER, Role.PASSENGER, 5)

        assert ride.is_rated_by_passenger
        assert not ride.is_rated_by_driver
        driver = await protocol.get_driver(DRIVER_A)
        assert driver.total_rides == 0
        assert driver.rating == pytest.approx(5.0)

    @pytest.mark.asyncio
    async def test_driver_rates_passenger(self, session_factory, protocol, searching_ride):
        await _completed_ride(protocol, searching_ride)
        finalizer = RatingFinalizer(session_factory, protocol=protocol)

        ride = await finalizer.rate_ride(searching_ride.id, DRIVER_A, Role.DRIVER, 4)

        assert ride.is_rated_by_driver
        (review,) = await _reviews(session_factory, PASSENGER)
        assert review.subject_id == PASSENGER
        assert review.ride_id == searching_ride.id

    @pytest.mark.asyncio
    async def test_cannot_rate_twice(self, session_factory, protocol, searching_ride):
        await _completed_ride(protocol, searching_ride)
        finalizer = RatingFinalizer(session_factory, protocol=protocol)
        await finalizer.rate_ride(searching_ride.id, PASSENGER, Role.PASSENGER, 5)

        with pytest.raises(InvalidStateTransition):
            await finalizer.rate_ride(searching_ride.id, PASSENGER, Role.PASSENGER, 1)

    @pytest.mark.asyncio
    async def test_cannot_rate_unfinished_ride(self, session_factory, protocol, searching_ride):
        await protocol.claim_offer(DRIVER_A, searching_ride.id)
        await protocol.accept_offer(DRIVER_A, searching_ride.id)
        finalizer = RatingFinalizer(session_factory, protocol=protocol)

        with pytest.raises(InvalidStateTransition):
            await finalizer.rate_ride(searching_ride.id, PASSENGER, Role.PASSENGER, 5)

    @pytest.mark.asyncio
    async def test_outsider_cannot_rate(self, session_factory, protocol, searching_ride):
        await _completed_ride(protocol, searching_ride)
        finalizer = RatingFinalizer(session_factory, protocol=protocol)

        with pytest.raises(RideNotFound):
            await finalizer.rate_ride(searching_ride.id, DRIVER_B, Role.DRIVER, 5)

    @pytest.mark.asyncio
    async def test_concurrent_ratings_write_one_review(
        self, session_factory, protocol, searching_ride
    ):
        await _completed_ride(protocol, searching_ride)
        finalizer = RatingFinalizer(session_factory, protocol=protocol)

        results = await asyncio.gather(
            finalizer.rate_ride(searching_ride.id, PASSENGER, Role.PASSENGER, 5),
            finalizer.rate_ride(searching_ride.id, PASSENGER, Role.PASSENGER, 1),
            return_exceptions=True,
        )

        rated = [r for r in results if not isinstance(r, Exception)]
        refused = [r for r in results if isinstance(r, InvalidStateTransition)]
        assert len(rated) == 1
        assert len(refused) == 1
        (review,) = await _reviews(session_factory, DRIVER_A)
        driver = await protocol.get_driver(DRIVER_A)
        assert driver.rating == pytest.approx(float(review.rating))

    @pytest.mark.asyncio
    async def test_both_directions_rate_concurrently(
        self, session_factory, protocol, searching_ride
    ):
        await _completed_ride(protocol, searching_ride)
        finalizer = RatingFinalizer(session_factory, protocol=protocol)

        await asyncio.gather(
            finalizer.rate_ride(searching_ride.id, PASSENGER, Role.PASSENGER, 5),
            finalizer.rate_ride(searching_ride.id, DRIVER_A, Role.DRIVER, 4),
        )

        ride = await protocol.get_ride(searching_ride.id)
        assert ride.is_rated_by_passenger
        assert ride.is_rated_by_driver

    @pytest.mark.asyncio
    async def test_missing_subject_leaves_ride_unrated(
        self, session_factory, protocol, searching_ride
    ):
        await _completed_ride(protocol, searching_ride)
        async with session_factory() as session:
            await session.delete(await session.get(UserModel, PASSENGER))
            await session.commit()
        finalizer = RatingFinalizer(session_factory, protocol=protocol)

        with pytest.raises(IdentityNotFound):
            await finalizer.rate_ride(searching_ride.id, DRIVER_A, Role.DRIVER, 4)

        ride = await protocol.get_ride(searching_ride.id)
        assert not ride.is_rated_by_driver
