"""Domain enumerations and state-transition rules.

Enum values are the persisted wire strings shared by passenger and
driver clients; they must not change.
"""

import enum


class RideStatus(str, enum.Enum):
    SEARCHING = "searching"
    COUNTER_OFFERED = "counter-offered"
    ACCEPTED = "accepted"
    ARRIVED = "arrived"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# State machine: maps current status -> set of valid next statuses
RIDE_TRANSITIONS: dict[RideStatus, set[RideStatus]] = {
    RideStatus.SEARCHING: {
        RideStatus.COUNTER_OFFERED,
        RideStatus.ACCEPTED,
        RideStatus.CANCELLED,
    },
    RideStatus.COUNTER_OFFERED: {RideStatus.ACCEPTED, RideStatus.CANCELLED},
    RideStatus.ACCEPTED: {
        RideStatus.ARRIVED,
        RideStatus.IN_PROGRESS,
        RideStatus.CANCELLED,
    },
    RideStatus.ARRIVED: {RideStatus.IN_PROGRESS, RideStatus.CANCELLED},
    RideStatus.IN_PROGRESS: {RideStatus.COMPLETED},
    RideStatus.COMPLETED: set(),
    RideStatus.CANCELLED: set(),
}

# Statuses the passenger sees as "driver assigned"
ASSIGNED_STATUSES = frozenset(
    {RideStatus.ACCEPTED, RideStatus.ARRIVED, RideStatus.IN_PROGRESS}
)

TERMINAL_STATUSES = frozenset({RideStatus.COMPLETED, RideStatus.CANCELLED})


class ServiceType(str, enum.Enum):
    ECONOMY = "economy"
    COMFORT = "comfort"
    EXCLUSIVE = "exclusive"


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    YAPE = "yape"
    PLIN = "plin"


class DriverStatus(str, enum.Enum):
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    ON_RIDE = "on-ride"


class Role(str, enum.Enum):
    PASSENGER = "passenger"
    DRIVER = "driver"


class CancelledBy(str, enum.Enum):
    PASSENGER = "passenger"
    DRIVER = "driver"
    SYSTEM = "system"


class Sentiment(str, enum.Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


class NegotiationDecision(str, enum.Enum):
    ACCEPTED = "accepted"
    COUNTER_OFFER = "counter-offer"
    REJECTED = "rejected"


class SOSStatus(str, enum.Enum):
    PENDING = "pending"
    ATTENDED = "attended"
