"""
Pricing Engine Service

Computes bay prices based on:
- Duration table (falls back to duration * hourly rate)
- Peak windows by weekday/weekend (flat surcharge or multiplier)
- Membership tier discount on bay time

Pricing Formula:
1. base = table[duration_units] or duration_units * hourly_rate
2. peak_surcharge = flat amount, or base * (multiplier - 1), when the start hour is peak
3. member_discount = (base + peak_surcharge) * tier discount
4. final = round(base + peak_surcharge - member_discount, 2), half-up
Unlimited-play tiers always give final = 0.
"""

from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Union
from dataclasses import dataclass

from ..config import settings as default_settings, Settings
from .membership import get_tier
from .time_utils import TimeOfDay, parse_time_of_day

CENT = Decimal("0.01")


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass
class PriceBreakdown:
    """Computed price for one booking"""
    base: Decimal
    peak_surcharge: Decimal
    member_discount: Decimal
    final: Decimal
    is_peak: bool
    member_tier: Optional[str]
    currency: str

    def to_dict(self) -> dict:
        return {
            "base": float(self.base),
            "peak_surcharge": float(self.peak_surcharge),
            "member_discount": float(self.member_discount),
            "final": float(self.final),
            "is_peak": self.is_peak,
            "member_tier": self.member_tier,
            "currency": self.currency,
        }


class PricingEngine:
    """Pure pricing: same inputs and configuration always give the same result."""

    def __init__(self, config: Optional[Settings] = None):
        self.config = config or default_settings

    def is_weekend(self, check_date: date) -> bool:
        """Python weekday(): Monday=0 ... Sunday=6"""
        return check_date.weekday() in self.config.weekend_day_numbers

    def is_peak_hour(self, check_date: date, hour: int) -> bool:
        if self.is_weekend(check_date):
            start, end = self.config.weekend_peak_window
        else:
            start, end = self.config.weekday_peak_window
        return start <= hour < end

    def base_price(self, duration_units: int) -> Decimal:
        table = self.config.price_table
        if duration_units in table:
            return Decimal(str(table[duration_units]))
        return Decimal(str(self.config.hourly_rate)) * duration_units

    def compute_price(
        self,
        duration_units: int,
        check_date: date,
        start_time: Union[str, TimeOfDay],
        member_tier: Optional[str] = None
    ) -> PriceBreakdown:
        """
        Args:
            duration_units: positive number of booking units
            check_date: calendar day of the booking
            start_time: "HH:MM"/"H:MM PM" text or a parsed TimeOfDay
            member_tier: tier key, unknown tiers price as non-members

        Raises:
            ValueError: start_time cannot be parsed or duration is not positive
        """
        if duration_units is None or duration_units <= 0:
            raise ValueError("duration_units must be positive")

        start = start_time if isinstance(start_time, TimeOfDay) else parse_time_of_day(start_time)
        if start is None:
            raise ValueError(f"Unparsable start time: {start_time!r}")

        base = _money(self.base_price(duration_units))
        is_peak = self.is_peak_hour(check_date, start.hour)

        peak_surcharge = Decimal("0")
        if is_peak:
            if self.config.peak_pricing_mode == "multiplier":
                multiplier = Decimal(str(self.config.peak_multiplier))
                peak_surcharge = base * (multiplier - 1)
            else:
                peak_surcharge = Decimal(str(self.config.peak_surcharge))
        peak_surcharge = _money(peak_surcharge)

        subtotal = base + peak_surcharge
        tier = get_tier(member_tier)

        if tier and tier.unlimited_play:
            member_discount = subtotal
            final = Decimal("0.00")
        elif tier:
            member_discount = _money(subtotal * tier.hourly_discount)
            final = _money(max(subtotal - member_discount, Decimal("0")))
        else:
            member_discount = Decimal("0.00")
            final = _money(subtotal)

        return PriceBreakdown(
            base=base,
            peak_surcharge=peak_surcharge,
            member_discount=member_discount,
            final=final,
            is_peak=is_peak,
            member_tier=tier.key if tier else None,
            currency=self.config.currency,
        )


def get_pricing_engine(config: Optional[Settings] = None) -> PricingEngine:
    """Factory function for pricing engine"""
    return PricingEngine(config)


def is_peak_hour(check_date: date, hour: int) -> bool:
    return PricingEngine().is_peak_hour(check_date, hour)


def compute_price(
    duration_units: int,
    check_date: date,
    start_time: Union[str, TimeOfDay],
    member_tier: Optional[str] = None
) -> PriceBreakdown:
    return PricingEngine().compute_price(duration_units, check_date, start_time, member_tier)
