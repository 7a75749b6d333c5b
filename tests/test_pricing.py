"""Unit tests for the baseline fare estimator."""

from datetime import date, datetime, time

import pytest

from rideoffer.config import Settings
from rideoffer.domain.pricing import (
    Coupon,
    FareBreakdown,
    PeakTimeRule,
    PricingEngine,
    SpecialDayRule,
)

# 3.5 base + 12.5 km x 1.0 + 20 min x 0.20 = 20.00
KM, MINUTES = 12.5, 20
OFF_PEAK = datetime(2024, 5, 8, 10, 0)


class TestSurchargeRules:
    def test_peak_window(self):
        rule = PeakTimeRule("tarde", time(16), time(19), 25)
        assert rule.applies(datetime(2024, 5, 8, 17, 30))
        assert not rule.applies(datetime(2024, 5, 8, 19, 0))

    def test_peak_window_wrapping_midnight(self):
        rule = PeakTimeRule("noche", time(23), time(5), 35)
        assert rule.applies(datetime(2024, 5, 8, 23, 30))
        assert rule.applies(datetime(2024, 5, 9, 2, 0))
        assert not rule.applies(datetime(2024, 5, 9, 12, 0))

    def test_special_day_range_is_inclusive(self):
        rule = SpecialDayRule("fiestas", date(2024, 7, 28), date(2024, 7, 29), 10)
        assert rule.applies(datetime(2024, 7, 29, 23, 59))
        assert not rule.applies(datetime(2024, 7, 30, 0, 0))

    def test_amount_is_percentage_of_subtotal(self):
        rule = PeakTimeRule("tarde", time(16), time(19), 25)
        assert rule.amount(20.0, datetime(2024, 5, 8, 17, 0)) == pytest.approx(5.0)
        assert rule.amount(20.0, OFF_PEAK) == 0.0


class TestCoupon:
    def test_percentage(self):
        assert Coupon("DESC10", "percentage", 10).discount_for(20.0) == pytest.approx(2.0)

    def test_fixed_never_exceeds_amount(self):
        assert Coupon("REGALO", "fixed", 50).discount_for(20.0) == 20.0


class TestPricingEngine:
    def setup_method(self):
        self.engine = PricingEngine.from_settings(Settings(_env_file=None))

    def test_off_peak_economy(self):
        estimate = self.engine.estimate(KM, MINUTES, ride_date=OFF_PEAK)
        assert estimate.estimated_fare == pytest.approx(20.0)
        assert estimate.breakdown.total == estimate.estimated_fare
        assert estimate.breakdown.service_cost == 0.0

    def test_service_multiplier(self):
        estimate = self.engine.estimate(KM, MINUTES, "comfort", ride_date=OFF_PEAK)
        assert estimate.estimated_fare == pytest.approx(30.0)
        assert estimate.breakdown.service_cost == pytest.approx(10.0)

    def test_unknown_service_type_uses_base_rate(self):
        estimate = self.engine.estimate(KM, MINUTES, "bicitaxi", ride_date=OFF_PEAK)
        assert estimate.estimated_fare == pytest.approx(20.0)

    def test_evening_peak(self):
        estimate = self.engine.estimate(KM, MINUTES, ride_date=datetime(2024, 5, 8, 17, 0))
        assert estimate.breakdown.peak_surcharge == pytest.approx(5.0)
        assert estimate.estimated_fare == pytest.approx(25.0)

    def test_night_surcharge_after_midnight(self):
        estimate = self.engine.estimate(KM, MINUTES, ride_date=datetime(2024, 5, 9, 2, 0))
        assert estimate.estimated_fare == pytest.approx(27.0)

    def test_peak_override(self):
        forced = self.engine.estimate(KM, MINUTES, ride_date=OFF_PEAK, peak_time=True)
        skipped = self.engine.estimate(
            KM, MINUTES, ride_date=datetime(2024, 5, 8, 17, 0), peak_time=False
        )
        assert forced.estimated_fare == pytest.approx(25.0)
        assert skipped.estimated_fare == pytest.approx(20.0)

    def test_special_day(self):
        engine = PricingEngine(
            special_day_rules=[
                SpecialDayRule("navidad", date(2024, 12, 25), date(2024, 12, 25), 10)
            ]
        )
        estimate = engine.estimate(KM, MINUTES, ride_date=datetime(2024, 12, 25, 10, 0))
        assert estimate.breakdown.special_day_surcharge == pytest.approx(2.0)
        assert estimate.estimated_fare == pytest.approx(22.0)

    def test_coupon_applies_after_surcharges(self):
        estimate = self.engine.estimate(
            KM,
            MINUTES,
            ride_date=datetime(2024, 5, 8, 17, 0),
            coupon=Coupon("DESC10", "percentage", 10),
        )
        assert estimate.breakdown.coupon_discount == pytest.approx(2.5)
        assert estimate.estimated_fare == pytest.approx(22.5)

    def test_total_never_negative(self):
        estimate = self.engine.estimate(
            KM, MINUTES, ride_date=OFF_PEAK, coupon=Coupon("REGALO", "fixed", 500)
        )
        assert estimate.estimated_fare == 0.0

    def test_negative_inputs_are_clamped(self):
        estimate = self.engine.estimate(-5, -10, ride_date=OFF_PEAK)
        assert estimate.estimated_fare == pytest.approx(3.5)


class TestFareBreakdown:
    def test_with_total_only_overwrites_total(self):
        original = PricingEngine().estimate(KM, MINUTES, ride_date=OFF_PEAK).breakdown
        agreed = original.with_total(18)
        assert agreed.total == 18.0
        assert agreed.subtotal == original.subtotal
        assert original.total == pytest.approx(20.0)

    def test_dict_round_trip(self):
        breakdown = PricingEngine().estimate(KM, MINUTES, ride_date=OFF_PEAK).breakdown
        assert FareBreakdown.from_dict(breakdown.to_dict()) == breakdown
