"""
Tests for the Pricing Engine

These tests verify:
- Duration table and hourly fallback
- Weekday and weekend peak windows
- Flat and multiplier peak surcharges
- Percentage and unlimited-play member discounts
- Rejection of bad input
"""

import pytest
from datetime import date
from decimal import Decimal

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from baybook.config import Settings
from baybook.services.pricing_engine import PricingEngine
from baybook.services.membership import get_tier

TUESDAY = date(2025, 6, 10)
SATURDAY = date(2025, 6, 14)


@pytest.fixture
def engine():
    return PricingEngine(Settings())


class TestBasePrice:
    def test_two_hours_off_peak_weekday(self, engine):
        """10:00 AM on a Tuesday for 2 units prices from the table: 80.00"""
        price = engine.compute_price(2, TUESDAY, "10:00 AM")
        assert price.base == Decimal("80.00")
        assert price.peak_surcharge == Decimal("0.00")
        assert price.member_discount == Decimal("0.00")
        assert price.final == Decimal("80.00")
        assert price.is_peak is False
        assert price.currency == "USD"

    def test_duration_outside_table_uses_hourly_rate(self, engine):
        price = engine.compute_price(6, TUESDAY, "09:00")
        assert price.base == Decimal("270.00")

    def test_same_inputs_same_price(self, engine):
        first = engine.compute_price(3, SATURDAY, "18:00", "par")
        second = engine.compute_price(3, SATURDAY, "18:00", "par")
        assert first == second


class TestPeakHours:
    def test_weekday_evening_is_peak(self, engine):
        assert engine.is_peak_hour(TUESDAY, 17) is True
        assert engine.is_peak_hour(TUESDAY, 20) is True

    def test_weekday_window_end_is_exclusive(self, engine):
        assert engine.is_peak_hour(TUESDAY, 21) is False
        assert engine.is_peak_hour(TUESDAY, 16) is False

    def test_weekend_window(self, engine):
        assert engine.is_peak_hour(SATURDAY, 10) is True
        assert engine.is_peak_hour(SATURDAY, 9) is False

    def test_flat_surcharge(self, engine):
        price = engine.compute_price(1, TUESDAY, "6:00 PM")
        assert price.is_peak is True
        assert price.peak_surcharge == Decimal("10.00")
        assert price.final == Decimal("55.00")

    def test_multiplier_surcharge(self):
        engine = PricingEngine(Settings(PEAK_PRICING_MODE="multiplier", PEAK_MULTIPLIER=1.5))
        price = engine.compute_price(2, TUESDAY, "18:00")
        assert price.peak_surcharge == Decimal("40.00")
        assert price.final == Decimal("120.00")

    def test_peak_is_decided_by_start_hour(self, engine):
        """A booking starting 16:00 and running into the window is off-peak"""
        price = engine.compute_price(2, TUESDAY, "16:00")
        assert price.is_peak is False


class TestMemberDiscounts:
    def test_par_is_half_price(self, engine):
        price = engine.compute_price(2, TUESDAY, "10:00")
        par = engine.compute_price(2, TUESDAY, "10:00", "par")
        assert par.member_discount == Decimal("40.00")
        assert par.final == price.final / 2
        assert par.member_tier == "par"

    def test_discount_applies_after_peak_surcharge(self, engine):
        price = engine.compute_price(1, TUESDAY, "18:00", "monthly")
        # (45 + 10) * 10% = 5.50
        assert price.member_discount == Decimal("5.50")
        assert price.final == Decimal("49.50")

    def test_unlimited_play_is_free(self, engine):
        price = engine.compute_price(2, SATURDAY, "12:00", "Birdie")
        assert price.final == Decimal("0.00")
        assert price.member_discount == price.base + price.peak_surcharge

    def test_league_tier_has_no_bay_discount(self, engine):
        price = engine.compute_price(1, TUESDAY, "10:00", "league-player")
        assert price.member_discount == Decimal("0.00")
        assert price.final == Decimal("45.00")

    def test_unknown_tier_prices_as_non_member(self, engine):
        price = engine.compute_price(1, TUESDAY, "10:00", "platinum")
        assert price.member_tier is None
        assert price.final == Decimal("45.00")

    def test_tier_lookup_normalizes_key(self):
        assert get_tier("Family Eagle").key == "family_eagle"
        assert get_tier(None) is None


class TestInvalidInput:
    def test_unparsable_time_raises(self, engine):
        with pytest.raises(ValueError):
            engine.compute_price(1, TUESDAY, "noon")

    @pytest.mark.parametrize("units", [0, -1, None])
    def test_non_positive_duration_raises(self, engine, units):
        with pytest.raises(ValueError):
            engine.compute_price(units, TUESDAY, "10:00")
