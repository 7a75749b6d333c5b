"""
SQLAlchemy ORM models  (the Ride Record Store schema).

Tables
------
* ``users``          -- passengers
* ``drivers``        -- drivers with availability status
* ``rides``          -- the shared ride record mutated by both sides
* ``chat_messages``  -- append-only per-ride chat
* ``reviews``        -- append-only ratings of a passenger or driver
* ``sos_alerts``     -- panic alerts raised during a ride

``rides.version`` is the compare-and-swap token: every conditional write
matches on it and increments it.

Indexes
-------
* **B-Tree** on ``rides.status``, ``passenger_id``, ``driver_id``,
  ``offered_to`` for the feed queries used by both sessions.
* **B-Tree** on ``chat_messages(ride_id, timestamp)`` for ordered reads.
"""

import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)

from .database import Base
from rideoffer.domain.enums import (
    CancelledBy,
    DriverStatus,
    PaymentMethod,
    RideStatus,
    Role,
    Sentiment,
    ServiceType,
    SOSStatus,
)


def _values(enum_cls):
    # persist the wire value ("counter-offered"), not the member name
    return [member.value for member in enum_cls]


def _enum(enum_cls, name):
    return Enum(enum_cls, name=name, values_callable=_values, native_enum=False, length=20)


def _new_id() -> str:
    return uuid.uuid4().hex


class UserModel(Base):
    __tablename__ = "users"

    id = Column(String(64), primary_key=True, default=_new_id)
    name = Column(String(120), nullable=False)
    email = Column(String(255), unique=True, nullable=True)
    rating = Column(Float, default=0.0, nullable=False)
    total_rides = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class DriverModel(Base):
    __tablename__ = "drivers"

    id = Column(String(64), primary_key=True, default=_new_id)
    name = Column(String(120), nullable=False)
    rating = Column(Float, default=0.0, nullable=False)
    total_rides = Column(Integer, default=0, nullable=False)
    status = Column(
        _enum(DriverStatus, "driver_status"),
        default=DriverStatus.UNAVAILABLE,
        nullable=False,
    )
    service_type = Column(
        _enum(ServiceType, "service_type"), default=ServiceType.ECONOMY, nullable=False
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("idx_drivers_status", "status"),)


class RideModel(Base):
    __tablename__ = "rides"

    id = Column(String(64), primary_key=True, default=_new_id)
    pickup = Column(String(255), nullable=False)
    dropoff = Column(String(255), nullable=False)

    fare = Column(Float, nullable=False)
    fare_breakdown = Column(JSON, nullable=True)
    service_type = Column(
        _enum(ServiceType, "service_type"), default=ServiceType.ECONOMY, nullable=False
    )
    payment_method = Column(
        _enum(PaymentMethod, "payment_method"), default=PaymentMethod.CASH, nullable=False
    )
    coupon_code = Column(String(40), nullable=True)

    passenger_id = Column(String(64), ForeignKey("users.id"), nullable=False)
    driver_id = Column(String(64), ForeignKey("drivers.id"), nullable=True)

    # Offer state
    offered_to = Column(String(64), ForeignKey("drivers.id"), nullable=True)
    offered_at = Column(DateTime(timezone=True), nullable=True)
    rejected_by = Column(JSON, default=list, nullable=False)

    status = Column(
        _enum(RideStatus, "ride_status"), default=RideStatus.SEARCHING, nullable=False
    )

    cancellation_code = Column(String(40), nullable=True)
    cancellation_reason = Column(String(255), nullable=True)
    cancelled_by = Column(_enum(CancelledBy, "cancelled_by"), nullable=True)

    is_rated_by_passenger = Column(Boolean, default=False, nullable=False)
    is_rated_by_driver = Column(Boolean, default=False, nullable=False)

    date = Column(DateTime(timezone=True), server_default=func.now())
    assignment_timestamp = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, default=0, nullable=False)

    __table_args__ = (
        Index("idx_rides_status", "status"),
        Index("idx_rides_passenger", "passenger_id"),
        Index("idx_rides_driver", "driver_id"),
        Index("idx_rides_offered_to", "offered_to"),
    )


class ChatMessageModel(Base):
    __tablename__ = "chat_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ride_id = Column(String(64), ForeignKey("rides.id"), nullable=False)
    sender_id = Column(String(64), nullable=False)
    sender_role = Column(_enum(Role, "role"), nullable=False)
    text = Column(Text, nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("idx_chat_ride_ts", "ride_id", "timestamp"),)


class ReviewModel(Base):
    __tablename__ = "reviews"

    id = Column(Integer, primary_key=True, autoincrement=True)
    subject_id = Column(String(64), nullable=False)
    subject_role = Column(_enum(Role, "role"), nullable=False)
    ride_id = Column(String(64), ForeignKey("rides.id"), nullable=True)
    rating = Column(Integer, nullable=False)
    comment = Column(Text, nullable=True)
    sentiment = Column(
        _enum(Sentiment, "sentiment"), default=Sentiment.NEUTRAL, nullable=False
    )
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("idx_reviews_subject", "subject_role", "subject_id"),)


class SOSAlertModel(Base):
    __tablename__ = "sos_alerts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ride_id = Column(String(64), ForeignKey("rides.id"), nullable=False)
    passenger_id = Column(String(64), ForeignKey("users.id"), nullable=False)
    driver_id = Column(String(64), ForeignKey("drivers.id"), nullable=True)
    triggered_by = Column(_enum(Role, "role"), nullable=False)
    status = Column(_enum(SOSStatus, "sos_status"), default=SOSStatus.PENDING, nullable=False)
    date = Column(DateTime(timezone=True), nullable=False)
