"""
Availability Checker

Decides whether a (resource, date, start, duration) interval is free against
a booking set. Intervals are half-open [start, end) in minutes since midnight,
so back-to-back bookings do not conflict.

The checker assumes a positive duration; the ledger rejects anything else
before calling it.
"""

from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, List, Optional, Union

from ..config import settings as default_settings
from ..models.booking import BookingStatus
from .pricing_engine import PricingEngine
from .resource_catalog import ResourceCatalog
from .time_utils import TimeOfDay, format_time_of_day, to_minutes


@dataclass
class SlotAvailability:
    start_time: str
    available: bool
    is_peak: bool

    def to_dict(self) -> dict:
        return {
            "start_time": self.start_time,
            "available": self.available,
            "is_peak": self.is_peak,
        }


def _field(record, name):
    # Bookings arrive as ORM rows or as plain dicts from the merge step
    if isinstance(record, dict):
        return record.get(name)
    return getattr(record, name, None)


def _as_date(value) -> Optional[date]:
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            return None
    return None


def booking_interval(record, unit_minutes: int):
    """[start, end) minutes for a booking, or None when its time is unreadable."""
    start = to_minutes(_field(record, "start_time"))
    if start is None:
        return None
    duration = int(_field(record, "duration_units") or 0)
    return start, start + duration * unit_minutes


def intervals_overlap(a_start: int, a_end: int, b_start: int, b_end: int) -> bool:
    return a_start < b_end and a_end > b_start


class AvailabilityChecker:
    def __init__(
        self,
        catalog: ResourceCatalog,
        pricing: Optional[PricingEngine] = None,
        unit_minutes: Optional[int] = None,
        slot_minutes: Optional[int] = None
    ):
        self.catalog = catalog
        self.pricing = pricing or PricingEngine(catalog.config)
        self.unit_minutes = unit_minutes or catalog.config.duration_unit_minutes or default_settings.duration_unit_minutes
        self.slot_minutes = slot_minutes or catalog.config.slot_minutes or default_settings.slot_minutes

    def within_operating_hours(self, check_date: date, start: int, end: int) -> bool:
        open_minute, close_minute = self.catalog.window_minutes(check_date)
        return start >= open_minute and end <= close_minute

    def is_slot_free(
        self,
        resource_id: int,
        check_date: date,
        start_time: Union[str, TimeOfDay],
        duration_units: int,
        bookings: Iterable,
        exclude_booking_id: Optional[str] = None
    ) -> bool:
        if self.catalog.get(resource_id) is None:
            return False

        start = to_minutes(start_time)
        if start is None:
            return False
        end = start + duration_units * self.unit_minutes

        if not self.within_operating_hours(check_date, start, end):
            return False

        for booking in bookings:
            if _field(booking, "resource_id") != resource_id:
                continue
            if _as_date(_field(booking, "date")) != check_date:
                continue
            if _field(booking, "status") == BookingStatus.CANCELLED.value:
                continue
            if exclude_booking_id is not None and _field(booking, "id") == exclude_booking_id:
                continue

            interval = booking_interval(booking, self.unit_minutes)
            if interval is None:
                continue
            if intervals_overlap(start, end, interval[0], interval[1]):
                return False

        return True

    def find_free_slots_for_date(
        self,
        check_date: date,
        duration_units: int,
        bookings: Iterable
    ) -> Dict[int, List[SlotAvailability]]:
        """
        Enumerate the day's grid per resource.

        Every grid start from opening up to the last start that still fits
        before closing is listed, each with its availability flag.
        """
        bookings = list(bookings)
        open_minute, close_minute = self.catalog.window_minutes(check_date)
        length = duration_units * self.unit_minutes

        result: Dict[int, List[SlotAvailability]] = {}
        for resource in self.catalog.resources:
            slots = []
            minute = open_minute
            while minute + length <= close_minute:
                start = TimeOfDay.from_minutes(minute)
                slots.append(SlotAvailability(
                    start_time=format_time_of_day(start),
                    available=self.is_slot_free(resource.id, check_date, start, duration_units, bookings),
                    is_peak=self.pricing.is_peak_hour(check_date, start.hour),
                ))
                minute += self.slot_minutes
            result[resource.id] = slots

        return result
