"""
Wall-clock time ranges for same-day bookings.

Times are "HH:MM" strings in venue-local time, compared as minutes since
midnight. Ranges are half-open, so a booking ending at 20:00 does not
collide with one starting at 20:00. There is no midnight wraparound: a
range whose end is not after its start is rejected.
"""

import re
from dataclasses import dataclass
from datetime import time

from tapn.core.exceptions import FormatError, InvalidTimeRange

TIME_PATTERN = re.compile(r"^([01]?[0-9]|2[0-3]):[0-5][0-9]$")
MINUTES_PER_DAY = 24 * 60


def parse_time(value: str) -> int:
    """Parse "HH:MM" (hour may be one digit) into minutes since midnight."""
    if not isinstance(value, str) or not TIME_PATTERN.match(value):
        raise FormatError("Invalid time format")
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def format_time(minutes: int) -> str:
    """Inverse of parse_time, always zero-padded."""
    if not 0 <= minutes < MINUTES_PER_DAY:
        raise FormatError("Invalid time format")
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def to_minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def ranges_overlap(a_start: int, a_end: int, b_start: int, b_end: int) -> bool:
    return a_start < b_end and b_start < a_end


@dataclass(frozen=True)
class TimeRange:
    start: int
    end: int

    def __post_init__(self) -> None:
        if self.end <= self.start:
            raise InvalidTimeRange()

    @classmethod
    def parse(cls, start: str, end: str) -> "TimeRange":
        return cls(parse_time(start), parse_time(end))

    @classmethod
    def from_times(cls, start: time, end: time) -> "TimeRange":
        return cls(to_minutes(start), to_minutes(end))

    def overlaps(self, other: "TimeRange") -> bool:
        return ranges_overlap(self.start, self.end, other.start, other.end)

    @property
    def start_time(self) -> time:
        return time(self.start // 60, self.start % 60)

    @property
    def end_time(self) -> time:
        return time(self.end // 60, self.end % 60)

    def __str__(self) -> str:
        return f"{format_time(self.start)}-{format_time(self.end)}"
