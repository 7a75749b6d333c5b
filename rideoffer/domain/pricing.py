"""
Baseline Fare Estimation  (Strategy Pattern)
============================================

Formula
-------
Subtotal = (Base_Fare + Distance x Rate_Per_KM + Duration x Rate_Per_Minute) x Service_Multiplier

Total = Subtotal + Peak_Surcharge + Special_Day_Surcharge - Coupon_Discount

* **Service_Multiplier**: economy 1.0, comfort 1.5, exclusive 2.0 (configurable)
* **Peak_Surcharge**: percentage of subtotal while a peak window is active
  (windows may wrap midnight, e.g. 23:00-05:00)
* **Special_Day_Surcharge**: percentage of subtotal on configured dates
* **Coupon_Discount**: percentage of or fixed amount off the surcharged fare

The estimate is the baseline for fare negotiation.  Distance and duration
come from the routing provider and are taken as given.

Complexity: O(R) per estimate, R = number of surcharge rules.
"""

from __future__ import annotations

import dataclasses
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Iterable, Optional


@dataclass(frozen=True)
class FareBreakdown:
    base_fare: float
    distance_cost: float
    duration_cost: float
    service_multiplier: float
    service_cost: float
    peak_surcharge: float
    special_day_surcharge: float
    coupon_discount: float
    subtotal: float
    total: float

    def with_total(self, total: float) -> "FareBreakdown":
        """Clone with ``total`` overwritten by an agreed fare."""
        return dataclasses.replace(self, total=round(total, 2))

    def to_dict(self) -> dict:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "FareBreakdown":
        return cls(**{f.name: float(data[f.name]) for f in dataclasses.fields(cls)})


@dataclass(frozen=True)
class FareEstimate:
    estimated_fare: float
    breakdown: FareBreakdown


@dataclass(frozen=True)
class Coupon:
    code: str
    discount_type: str  # "percentage" | "fixed"
    value: float

    def discount_for(self, amount: float) -> float:
        if self.discount_type == "percentage":
            return amount * self.value / 100
        return min(self.value, amount)


# ── Surcharge strategies ──────────────────────────────────────────────


class SurchargeRule(ABC):
    name: str
    surcharge: float  # percentage

    @abstractmethod
    def applies(self, at: datetime) -> bool: ...

    def amount(self, subtotal: float, at: datetime) -> float:
        return subtotal * self.surcharge / 100 if self.applies(at) else 0.0


class PeakTimeRule(SurchargeRule):
    def __init__(self, name: str, start: time, end: time, surcharge: float):
        self.name = name
        self.start = start
        self.end = end
        self.surcharge = surcharge

    def applies(self, at: datetime) -> bool:
        now = at.time()
        if self.start <= self.end:
            return self.start <= now < self.end
        # window wraps midnight
        return now >= self.start or now < self.end

    @classmethod
    def from_config(cls, raw: dict) -> "PeakTimeRule":
        return cls(
            raw["name"],
            time.fromisoformat(raw["start"]),
            time.fromisoformat(raw["end"]),
            float(raw["surcharge"]),
        )


class SpecialDayRule(SurchargeRule):
    def __init__(self, name: str, start: date, end: date, surcharge: float):
        self.name = name
        self.start = start
        self.end = end
        self.surcharge = surcharge

    def applies(self, at: datetime) -> bool:
        return self.start <= at.date() <= self.end

    @classmethod
    def from_config(cls, raw: dict) -> "SpecialDayRule":
        return cls(
            raw["name"],
            date.fromisoformat(raw["start_date"]),
            date.fromisoformat(raw["end_date"]),
            float(raw["surcharge"]),
        )


# ── Engine facade ─────────────────────────────────────────────────────


class PricingEngine:
    """High-level API used by the passenger session and the fare routes."""

    def __init__(
        self,
        base_fare: float = 3.5,
        per_km_fare: float = 1.0,
        per_minute_fare: float = 0.20,
        service_multipliers: Optional[dict[str, float]] = None,
        peak_rules: Iterable[PeakTimeRule] = (),
        special_day_rules: Iterable[SpecialDayRule] = (),
    ):
        self.base_fare = base_fare
        self.per_km_fare = per_km_fare
        self.per_minute_fare = per_minute_fare
        self.service_multipliers = service_multipliers or {
            "economy": 1.0,
            "comfort": 1.5,
            "exclusive": 2.0,
        }
        self.peak_rules = list(peak_rules)
        self.special_day_rules = list(special_day_rules)

    @classmethod
    def from_settings(cls, settings) -> "PricingEngine":
        return cls(
            base_fare=settings.base_fare,
            per_km_fare=settings.per_km_fare,
            per_minute_fare=settings.per_minute_fare,
            service_multipliers=settings.service_multipliers,
            peak_rules=[PeakTimeRule.from_config(r) for r in settings.peak_time_rules],
            special_day_rules=[
                SpecialDayRule.from_config(r) for r in settings.special_fare_rules
            ],
        )

    def multiplier_for(self, service_type: str) -> float:
        return self.service_multipliers.get(str(service_type), 1.0)

    def estimate(
        self,
        distance_km: float,
        duration_minutes: float,
        service_type: str = "economy",
        ride_date: Optional[datetime] = None,
        peak_time: Optional[bool] = None,
        coupon: Optional[Coupon] = None,
    ) -> FareEstimate:
        """Compute the baseline fare and its breakdown.

        ``peak_time`` overrides the configured peak windows when given.
        """
        at = ride_date or datetime.now()
        distance_cost = max(distance_km, 0.0) * self.per_km_fare
        duration_cost = max(duration_minutes, 0.0) * self.per_minute_fare
        raw = self.base_fare + distance_cost + duration_cost

        multiplier = self.multiplier_for(service_type)
        subtotal = raw * multiplier
        service_cost = subtotal - raw

        if peak_time is None:
            peak = sum(rule.amount(subtotal, at) for rule in self.peak_rules)
        elif peak_time and self.peak_rules:
            peak = subtotal * self.peak_rules[0].surcharge / 100
        else:
            peak = 0.0
        special = sum(rule.amount(subtotal, at) for rule in self.special_day_rules)

        gross = subtotal + peak + special
        discount = coupon.discount_for(gross) if coupon else 0.0
        total = round(max(gross - discount, 0.0), 2)

        breakdown = FareBreakdown(
            base_fare=round(self.base_fare, 2),
            distance_cost=round(distance_cost, 2),
            duration_cost=round(duration_cost, 2),
            service_multiplier=multiplier,
            service_cost=round(service_cost, 2),
            peak_surcharge=round(peak, 2),
            special_day_surcharge=round(special, 2),
            coupon_discount=round(discount, 2),
            subtotal=round(subtotal, 2),
            total=total,
        )
        return FareEstimate(estimated_fare=total, breakdown=breakdown)
