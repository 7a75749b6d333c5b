"""
Domain entities with business logic.

Patterns used
-------------
- **State Pattern** on ``Ride``: ``can_transition_to`` answers whether a
  lifecycle move is legal (searching -> counter-offered / accepted ->
  arrived -> in-progress -> completed | cancelled).
- ``Ride.is_offered_to`` encapsulates the exclusive offer-window invariant.

Entities are built from ORM rows at the repository boundary so every
status is a ``RideStatus`` member, never a loose string.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from .enums import (
    RIDE_TRANSITIONS,
    CancelledBy,
    DriverStatus,
    PaymentMethod,
    RideStatus,
    Role,
    Sentiment,
    ServiceType,
    SOSStatus,
)
from .pricing import FareBreakdown


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class CancellationReason:
    code: str
    reason: str


# ── Entities ──────────────────────────────────────────────────────────


@dataclass
class Ride:
    id: Optional[str] = None
    pickup: str = ""
    dropoff: str = ""
    fare: float = 0.0
    fare_breakdown: Optional[FareBreakdown] = None
    service_type: ServiceType = ServiceType.ECONOMY
    payment_method: PaymentMethod = PaymentMethod.CASH
    coupon_code: Optional[str] = None
    passenger_id: str = ""
    driver_id: Optional[str] = None
    offered_to: Optional[str] = None
    offered_at: Optional[datetime] = None
    rejected_by: list[str] = field(default_factory=list)
    status: RideStatus = RideStatus.SEARCHING
    cancellation: Optional[CancellationReason] = None
    cancelled_by: Optional[CancelledBy] = None
    date: Optional[datetime] = None
    assignment_timestamp: Optional[datetime] = None
    is_rated_by_passenger: bool = False
    is_rated_by_driver: bool = False
    version: int = 0

    def can_transition_to(self, new_status: RideStatus) -> bool:
        return new_status in RIDE_TRANSITIONS.get(self.status, set())

    def is_offered_to(self, driver_id: str) -> bool:
        return self.offered_to is not None and self.offered_to == driver_id

    def was_rejected_by(self, driver_id: str) -> bool:
        return driver_id in self.rejected_by

    def is_rated_by(self, role: Role) -> bool:
        if role is Role.PASSENGER:
            return self.is_rated_by_passenger
        return self.is_rated_by_driver


@dataclass
class Passenger:
    id: str
    name: str = ""
    email: Optional[str] = None
    rating: float = 0.0
    total_rides: int = 0


@dataclass
class Driver:
    id: str
    name: str = ""
    rating: float = 0.0
    total_rides: int = 0
    status: DriverStatus = DriverStatus.UNAVAILABLE
    service_type: ServiceType = ServiceType.ECONOMY

    @property
    def is_available(self) -> bool:
        return self.status is DriverStatus.AVAILABLE


@dataclass(frozen=True)
class ChatMessage:
    ride_id: str
    sender_id: str
    sender_role: Role
    text: str
    timestamp: datetime
    id: Optional[int] = None


@dataclass(frozen=True)
class Review:
    subject_id: str
    subject_role: Role
    rating: int
    sentiment: Sentiment = Sentiment.NEUTRAL
    comment: Optional[str] = None
    ride_id: Optional[str] = None
    created_at: Optional[datetime] = None
    id: Optional[int] = None


@dataclass(frozen=True)
class SOSAlert:
    ride_id: str
    passenger_id: str
    driver_id: Optional[str]
    triggered_by: Role
    status: SOSStatus = SOSStatus.PENDING
    date: Optional[datetime] = None
    id: Optional[int] = None
