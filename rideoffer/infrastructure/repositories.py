"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.  Several repository writes issued on one
session and committed together form a batch write.

``RideRepository`` exposes the two ride-mutation primitives:

* ``compare_and_set`` -- conditional write that only lands if the row is
  still at the version the caller read; otherwise nothing is written and
  ``False`` is returned.
* ``mark_rated``      -- sets one rating flag only while it is unset, so
  exactly one caller per ride and direction gets ``True``.

Rows are converted to domain entities here so callers only ever see
``RideStatus`` members and typed fields.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    ChatMessageModel,
    DriverModel,
    ReviewModel,
    RideModel,
    SOSAlertModel,
    UserModel,
)
from rideoffer.domain.entities import (
    CancellationReason,
    ChatMessage,
    Driver,
    Passenger,
    Review,
    Ride,
    SOSAlert,
)
from rideoffer.domain.enums import DriverStatus, RideStatus, Role
from rideoffer.domain.pricing import FareBreakdown


def ride_from_model(m: RideModel) -> Ride:
    cancellation = None
    if m.cancellation_code:
        cancellation = CancellationReason(m.cancellation_code, m.cancellation_reason or "")
    return Ride(
        id=m.id,
        pickup=m.pickup,
        dropoff=m.dropoff,
        fare=m.fare,
        fare_breakdown=FareBreakdown.from_dict(m.fare_breakdown) if m.fare_breakdown else None,
        service_type=m.service_type,
        payment_method=m.payment_method,
        coupon_code=m.coupon_code,
        passenger_id=m.passenger_id,
        driver_id=m.driver_id,
        offered_to=m.offered_to,
        offered_at=m.offered_at,
        rejected_by=list(m.rejected_by or []),
        status=RideStatus(m.status),
        cancellation=cancellation,
        cancelled_by=m.cancelled_by,
        date=m.date,
        assignment_timestamp=m.assignment_timestamp,
        is_rated_by_passenger=bool(m.is_rated_by_passenger),
        is_rated_by_driver=bool(m.is_rated_by_driver),
        version=m.version,
    )


class RideRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, ride: Ride) -> Ride:
        model = RideModel(
            pickup=ride.pickup,
            dropoff=ride.dropoff,
            fare=ride.fare,
            fare_breakdown=ride.fare_breakdown.to_dict() if ride.fare_breakdown else None,
            service_type=ride.service_type,
            payment_method=ride.payment_method,
            coupon_code=ride.coupon_code,
            passenger_id=ride.passenger_id,
            status=ride.status,
            rejected_by=[],
            date=ride.date,
            version=0,
        )
        self.session.add(model)
        await self.session.flush()
        return ride_from_model(model)

    async def get(self, ride_id: str) -> Optional[Ride]:
        result = await self.session.execute(
            select(RideModel)
            .where(RideModel.id == ride_id)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return ride_from_model(model) if model else None

    async def list_by_status(self, status: RideStatus) -> list[Ride]:
        result = await self.session.execute(
            select(RideModel)
            .where(RideModel.status == status)
            .order_by(RideModel.date, RideModel.id)
        )
        return [ride_from_model(m) for m in result.scalars().all()]

    async def list_for_passenger(self, passenger_id: str) -> list[Ride]:
        result = await self.session.execute(
            select(RideModel)
            .where(RideModel.passenger_id == passenger_id)
            .order_by(RideModel.date.desc(), RideModel.id)
        )
        return [ride_from_model(m) for m in result.scalars().all()]

    async def list_for_driver(self, driver_id: str) -> list[Ride]:
        """Rides assigned to, or currently offered to, *driver_id*."""
        result = await self.session.execute(
            select(RideModel)
            .where(
                or_(RideModel.driver_id == driver_id, RideModel.offered_to == driver_id)
            )
            .order_by(RideModel.date.desc(), RideModel.id)
        )
        return [ride_from_model(m) for m in result.scalars().all()]

    async def list_expired_offers(self, cutoff: datetime) -> list[Ride]:
        result = await self.session.execute(
            select(RideModel).where(
                RideModel.status == RideStatus.SEARCHING,
                RideModel.offered_to.is_not(None),
                RideModel.offered_at < cutoff,
            )
        )
        return [ride_from_model(m) for m in result.scalars().all()]

    async def mark_rated(self, ride_id: str, role: Role) -> bool:
        flag = (
            RideModel.is_rated_by_passenger
            if role is Role.PASSENGER
            else RideModel.is_rated_by_driver
        )
        result = await self.session.execute(
            update(RideModel)
            .where(RideModel.id == ride_id, flag.is_not(True))
            .values({flag: True, RideModel.version: RideModel.version + 1})
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def compare_and_set(self, ride_id: str, expected_version: int, **values) -> bool:
        result = await self.session.execute(
            update(RideModel)
            .where(RideModel.id == ride_id, RideModel.version == expected_version)
            .values(version=RideModel.version + 1, **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def count_by_status(self, status: RideStatus) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(RideModel).where(RideModel.status == status)
        )
        return result.scalar() or 0


class DriverRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, driver_id: str) -> Optional[Driver]:
        m = await self.session.get(DriverModel, driver_id, populate_existing=True)
        if m is None:
            return None
        return Driver(
            id=m.id,
            name=m.name,
            rating=m.rating or 0.0,
            total_rides=m.total_rides or 0,
            status=DriverStatus(m.status),
            service_type=m.service_type,
        )

    async def get_for_update(self, driver_id: str) -> Optional[DriverModel]:
        """SELECT ... FOR UPDATE so concurrent raters re-read the latest average."""
        result = await self.session.execute(
            select(DriverModel).where(DriverModel.id == driver_id).with_for_update()
        )
        return result.scalar_one_or_none()

    async def set_status(self, driver_id: str, status: DriverStatus) -> bool:
        result = await self.session.execute(
            update(DriverModel).where(DriverModel.id == driver_id).values(status=status)
        )
        return result.rowcount == 1


class UserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, user_id: str) -> Optional[Passenger]:
        m = await self.session.get(UserModel, user_id, populate_existing=True)
        if m is None:
            return None
        return Passenger(
            id=m.id,
            name=m.name,
            email=m.email,
            rating=m.rating or 0.0,
            total_rides=m.total_rides or 0,
        )

    async def get_for_update(self, user_id: str) -> Optional[UserModel]:
        result = await self.session.execute(
            select(UserModel).where(UserModel.id == user_id).with_for_update()
        )
        return result.scalar_one_or_none()

    async def increment_total_rides(self, user_id: str) -> None:
        await self.session.execute(
            update(UserModel)
            .where(UserModel.id == user_id)
            .values(total_rides=UserModel.total_rides + 1)
        )


class ChatRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, message: ChatMessage) -> ChatMessage:
        m = ChatMessageModel(
            ride_id=message.ride_id,
            sender_id=message.sender_id,
            sender_role=message.sender_role,
            text=message.text,
            timestamp=message.timestamp,
        )
        self.session.add(m)
        await self.session.flush()
        return ChatMessage(
            id=m.id,
            ride_id=m.ride_id,
            sender_id=m.sender_id,
            sender_role=m.sender_role,
            text=m.text,
            timestamp=m.timestamp,
        )

    async def list_for_ride(self, ride_id: str) -> list[ChatMessage]:
        result = await self.session.execute(
            select(ChatMessageModel)
            .where(ChatMessageModel.ride_id == ride_id)
            .order_by(ChatMessageModel.timestamp, ChatMessageModel.id)
        )
        return [
            ChatMessage(
                id=m.id,
                ride_id=m.ride_id,
                sender_id=m.sender_id,
                sender_role=m.sender_role,
                text=m.text,
                timestamp=m.timestamp,
            )
            for m in result.scalars().all()
        ]


class ReviewRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, review: Review) -> Review:
        m = ReviewModel(
            subject_id=review.subject_id,
            subject_role=review.subject_role,
            ride_id=review.ride_id,
            rating=review.rating,
            comment=review.comment,
            sentiment=review.sentiment,
            created_at=review.created_at,
        )
        self.session.add(m)
        await self.session.flush()
        return Review(
            id=m.id,
            subject_id=m.subject_id,
            subject_role=m.subject_role,
            ride_id=m.ride_id,
            rating=m.rating,
            comment=m.comment,
            sentiment=m.sentiment,
            created_at=m.created_at,
        )

    async def list_for_subject(self, subject_id: str) -> Sequence[ReviewModel]:
        result = await self.session.execute(
            select(ReviewModel)
            .where(ReviewModel.subject_id == subject_id)
            .order_by(ReviewModel.created_at)
        )
        return result.scalars().all()


class SOSAlertRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, alert: SOSAlert) -> SOSAlert:
        m = SOSAlertModel(
            ride_id=alert.ride_id,
            passenger_id=alert.passenger_id,
            driver_id=alert.driver_id,
            triggered_by=alert.triggered_by,
            status=alert.status,
            date=alert.date,
        )
        self.session.add(m)
        await self.session.flush()
        return SOSAlert(
            id=m.id,
            ride_id=m.ride_id,
            passenger_id=m.passenger_id,
            driver_id=m.driver_id,
            triggered_by=m.triggered_by,
            status=m.status,
            date=m.date,
        )
