from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time

MINUTES_PER_DAY = 24 * 60


@dataclass(frozen=True, slots=True, order=True)
class TimeOfDay:
    """Wall-clock time of day with minute precision and no timezone.

    Differences between two values are plain signed minute counts: a work
    window that crosses midnight (e.g. 22:00-06:00) is not supported.
    """

    minute_of_day: int

    def __post_init__(self) -> None:
        if not 0 <= self.minute_of_day < MINUTES_PER_DAY:
            raise ValueError(f"minute_of_day out of range: {self.minute_of_day}")

    @classmethod
    def parse(cls, raw: str | None) -> TimeOfDay:
        """Parse ``HH:MM`` or ``HH:MM:SS``; seconds are truncated."""
        value = (raw or "").strip()
        parts = value.split(":")
        if len(parts) not in (2, 3) or not all(part.isdigit() for part in parts):
            raise ValueError(f"Invalid time of day: {raw!r}")
        hour, minute = int(parts[0]), int(parts[1])
        second = int(parts[2]) if len(parts) == 3 else 0
        if hour > 23 or minute > 59 or second > 59:
            raise ValueError(f"Invalid time of day: {raw!r}")
        return cls(hour * 60 + minute)

    @classmethod
    def from_time(cls, value: time | datetime) -> TimeOfDay:
        return cls(value.hour * 60 + value.minute)

    @property
    def hour(self) -> int:
        return self.minute_of_day // 60

    @property
    def minute(self) -> int:
        return self.minute_of_day % 60

    def minutes_since(self, earlier: TimeOfDay) -> int:
        return self.minute_of_day - earlier.minute_of_day

    def shifted(self, minutes: int) -> TimeOfDay:
        return TimeOfDay((self.minute_of_day + minutes) % MINUTES_PER_DAY)

    def __str__(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}"


def parse_time_of_day(raw: str | None) -> TimeOfDay | None:
    if raw is None or not raw.strip():
        return None
    try:
        return TimeOfDay.parse(raw)
    except ValueError:
        return None
