"""
Rating finalizer.

Folds one rating into the subject's running average:

1. Validate the rating (1..5) before touching the store.
2. Classify the comment's sentiment; a failing classifier degrades to
   ``neutral`` and never blocks the rating.
3. Append the review record.
4. In a separate transaction, lock the identity row, recompute the
   average from the *re-read* values and write it back.

Steps 3 and 4 are not atomic: a crash in between leaves a review whose
rating is not yet reflected in the average.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rideoffer.domain.entities import Review, Ride
from rideoffer.domain.enums import RideStatus, Role, Sentiment
from rideoffer.domain.errors import (
    ExternalServiceError,
    IdentityNotFound,
    InvalidStateTransition,
    RideNotFound,
)
from rideoffer.domain.offers import utcnow
from rideoffer.domain.rating import running_average, validate_rating
from rideoffer.infrastructure.clients import (
    NeutralSentimentClassifier,
    SentimentClassifier,
)
from rideoffer.infrastructure.repositories import (
    DriverRepository,
    ReviewRepository,
    UserRepository,
)
from rideoffer.services.ride_protocol import RideProtocol

logger = logging.getLogger(__name__)


class RatingFinalizer:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        classifier: Optional[SentimentClassifier] = None,
        protocol: Optional[RideProtocol] = None,
    ):
        self.session_factory = session_factory
        self.classifier = classifier or NeutralSentimentClassifier()
        self.protocol = protocol

    async def classify(self, comment: Optional[str]) -> Sentiment:
        text = (comment or "").strip()
        if not text:
            return Sentiment.NEUTRAL
        try:
            return await self.classifier.classify(text)
        except ExternalServiceError as exc:
            logger.warning("Sentiment classification failed, using neutral: %s", exc)
            return Sentiment.NEUTRAL

    async def submit(
        self,
        subject_role: Role,
        subject_id: str,
        rating: int,
        comment: Optional[str] = None,
        ride_id: Optional[str] = None,
    ) -> float:
        """Record a rating for a passenger or driver.

        Returns the new average rounded to two decimals; the stored value
        keeps full precision.
        """
        validate_rating(rating)
        await self._ensure_exists(subject_role, subject_id)
        sentiment = await self.classify(comment)

        async with self.session_factory() as session:
            await ReviewRepository(session).add(
                Review(
                    subject_id=subject_id,
                    subject_role=subject_role,
                    rating=rating,
                    sentiment=sentiment,
                    comment=(comment or "").strip() or None,
                    ride_id=ride_id,
                    created_at=utcnow(),
                )
            )
            await session.commit()

        async with self.session_factory() as session:
            if subject_role is Role.DRIVER:
                row = await DriverRepository(session).get_for_update(subject_id)
            else:
                row = await UserRepository(session).get_for_update(subject_id)
            if row is None:
                raise IdentityNotFound(f"{subject_role.value} {subject_id} not found")
            row.rating = running_average(row.rating or 0.0, row.total_rides or 0, rating)
            new_average = row.rating
            await session.commit()

        logger.info(
            "Rated %s %s: %d (%s) -> %.2f",
            subject_role.value,
            subject_id,
            rating,
            sentiment.value,
            new_average,
        )
        return round(new_average, 2)

    async def rate_ride(
        self,
        ride_id: str,
        rater_id: str,
        rater_role: Role,
        rating: int,
        comment: Optional[str] = None,
    ) -> Ride:
        """Rate the other party of a completed ride.

        The ride's rating flag is claimed before anything is written, so a
        second rating in the same direction, concurrent or not, leaves no
        review behind.
        """
        if self.protocol is None:
            raise RuntimeError("rate_ride needs a RideProtocol")
        validate_rating(rating)
        ride = await self.protocol.get_ride(ride_id)
        if rater_role is Role.PASSENGER:
            own, subject_role, subject_id = ride.passenger_id, Role.DRIVER, ride.driver_id
        else:
            own, subject_role, subject_id = ride.driver_id, Role.PASSENGER, ride.passenger_id
        if own != rater_id or subject_id is None:
            raise RideNotFound(f"Ride {ride_id} not found")
        if ride.status is not RideStatus.COMPLETED:
            raise InvalidStateTransition("Only completed rides can be rated")
        if ride.is_rated_by(rater_role):
            raise InvalidStateTransition("Ride already rated")

        await self._ensure_exists(subject_role, subject_id)

        rated = await self.protocol.mark_rated(ride_id, rater_role)
        await self.submit(subject_role, subject_id, rating, comment, ride_id=ride_id)
        return rated

    async def _ensure_exists(self, role: Role, subject_id: str) -> None:
        async with self.session_factory() as session:
            if role is Role.DRIVER:
                found = await DriverRepository(session).get(subject_id)
            else:
                found = await UserRepository(session).get(subject_id)
        if found is None:
            raise IdentityNotFound(f"{role.value} {subject_id} not found")
