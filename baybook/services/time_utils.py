"""
Time-of-day parsing and formatting.

Staff type start times in either form ("2:00 PM", "2:00pm", "14:00").
A failed parse returns None and callers reject the operation; an unparsable
time is never treated as midnight.
"""

import re
from typing import NamedTuple, Optional, Union

_TIME_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*([AaPp][Mm])?\s*$")


class TimeOfDay(NamedTuple):
    hour: int
    minute: int

    @property
    def minutes(self) -> int:
        """Minutes since midnight"""
        return self.hour * 60 + self.minute

    @classmethod
    def from_minutes(cls, total: int) -> "TimeOfDay":
        return cls(total // 60, total % 60)


def parse_time_of_day(text: Optional[str]) -> Optional[TimeOfDay]:
    """
    Parse "HH:MM" (24-hour) or "H:MM AM/PM" (12-hour).

    Returns None for empty input, a missing colon, non-numeric parts,
    minutes outside 0-59, a 12-hour hour outside 1-12, or a 24-hour hour
    outside 0-23.
    """
    if not text or not isinstance(text, str):
        return None

    match = _TIME_RE.match(text)
    if not match:
        return None

    hour = int(match.group(1))
    minute = int(match.group(2))
    meridiem = match.group(3)

    if minute > 59:
        return None

    if meridiem:
        if hour < 1 or hour > 12:
            return None
        is_pm = meridiem.lower() == "pm"
        if hour == 12:
            hour = 12 if is_pm else 0
        elif is_pm:
            hour += 12

    if hour > 23:
        return None

    return TimeOfDay(hour, minute)


def format_time_of_day(t: TimeOfDay, twelve_hour: bool = False) -> str:
    """Format as "14:00" or, with twelve_hour, "2:00pm"."""
    if not twelve_hour:
        return f"{t.hour:02d}:{t.minute:02d}"

    suffix = "pm" if t.hour >= 12 else "am"
    display_hour = t.hour % 12 or 12
    return f"{display_hour}:{t.minute:02d}{suffix}"


def normalize_time(value: Union[str, TimeOfDay, None]) -> Optional[str]:
    """Return the stored "HH:MM" form, or None when unparsable."""
    if isinstance(value, TimeOfDay):
        return format_time_of_day(value)
    parsed = parse_time_of_day(value)
    return format_time_of_day(parsed) if parsed else None


def to_minutes(value: Union[str, TimeOfDay]) -> Optional[int]:
    """Minutes since midnight for a stored or typed time, None when unparsable."""
    if isinstance(value, TimeOfDay):
        return value.minutes
    parsed = parse_time_of_day(value)
    return parsed.minutes if parsed else None
