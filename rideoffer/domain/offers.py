"""
Offer-window rules
==================

A driver holds an exclusive offer on a ride while ``offered_to`` names
them and the claim is younger than the offer window.  A claim older than
the window is expired: any driver may claim over it and the sweep worker
clears it.  The driver's local countdown is advisory only.

Candidate selection is first-match in store order (creation date).
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from .entities import Ride
from .enums import RideStatus
from .errors import OfferUnavailable


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; every stored value is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def offer_expires_at(ride: Ride, window_seconds: int) -> Optional[datetime]:
    if ride.offered_to is None or ride.offered_at is None:
        return None
    return as_utc(ride.offered_at) + timedelta(seconds=window_seconds)


def offer_is_live(ride: Ride, now: datetime, window_seconds: int) -> bool:
    """True while some driver holds an unexpired claim on a searching ride."""
    if ride.offered_to is None:
        return False
    if ride.status is not RideStatus.SEARCHING:
        # counter-offered rides wait on the passenger, not on the window
        return True
    expires = offer_expires_at(ride, window_seconds)
    return expires is None or as_utc(now) < expires


def is_candidate(
    ride: Ride,
    driver_id: str,
    now: datetime,
    window_seconds: int,
    locally_rejected: Iterable[str] = (),
) -> bool:
    return (
        ride.status is RideStatus.SEARCHING
        and not offer_is_live(ride, now, window_seconds)
        and not ride.was_rejected_by(driver_id)
        and ride.id not in set(locally_rejected)
    )


def eligible_candidates(
    rides: Iterable[Ride],
    driver_id: str,
    now: datetime,
    window_seconds: int,
    locally_rejected: Iterable[str] = (),
) -> list[Ride]:
    rejected = set(locally_rejected)
    return [
        r for r in rides if is_candidate(r, driver_id, now, window_seconds, rejected)
    ]


def ensure_claimable(ride: Ride, now: datetime, window_seconds: int) -> None:
    if ride.status is not RideStatus.SEARCHING:
        raise OfferUnavailable(f"Ride {ride.id} is no longer searching")
    if offer_is_live(ride, now, window_seconds):
        raise OfferUnavailable(f"Ride {ride.id} is already offered to another driver")


def ensure_holds_offer(
    ride: Ride, driver_id: str, now: datetime, window_seconds: int
) -> None:
    """Raise unless *driver_id* holds a live offer on a searching ride."""
    if ride.status is not RideStatus.SEARCHING or not ride.is_offered_to(driver_id):
        raise OfferUnavailable("El viaje ya no está disponible.")
    if not offer_is_live(ride, now, window_seconds):
        raise OfferUnavailable("La oferta expiró.")
