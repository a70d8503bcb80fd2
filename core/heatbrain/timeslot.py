"""
Time-of-day slots.

A slot covers [start, end). When end is before start the slot wraps past
midnight. Slots are either evaluated in UTC or in the installation's local
time zone.
"""

from dataclasses import dataclass
from datetime import datetime, time, timezone, tzinfo
from typing import Optional

from .exceptions import ConfigurationError

UTC = "Utc"
LOCAL = "Local"


def parse_time(value) -> time:
    """Parse an HH:MM:SS (or HH:MM) time of day.

    Raises:
        ConfigurationError: If the value is not a valid time of day
    """
    if isinstance(value, time):
        return value
    if isinstance(value, int):
        # YAML 1.1 reads unquoted 01:30:00 as sexagesimal seconds
        if 0 <= value < 24 * 3600:
            return time(value // 3600, (value % 3600) // 60, value % 60)
        raise ConfigurationError(f"Invalid time of day: {value!r}")
    try:
        return time.fromisoformat(str(value).strip())
    except ValueError:
        raise ConfigurationError(f"Invalid time of day: {value!r}") from None


def seconds_from_midnight(t: time) -> int:
    return t.hour * 3600 + t.minute * 60 + t.second


@dataclass(frozen=True)
class TimeSlot:
    """A daily time window."""

    start: time
    end: time
    zone: str = LOCAL

    @classmethod
    def from_dict(cls, data: dict, default_zone: str = LOCAL) -> "TimeSlot":
        """Create from `{type, start, end}`."""
        zone = data.get("type", default_zone)
        if zone not in (UTC, LOCAL):
            raise ConfigurationError(f"Invalid slot type {zone!r}, expected {UTC!r} or {LOCAL!r}")
        try:
            return cls(start=parse_time(data["start"]), end=parse_time(data["end"]), zone=zone)
        except KeyError as e:
            raise ConfigurationError(f"Time slot missing {e.args[0]!r}: {data}") from None

    @property
    def wraps_midnight(self) -> bool:
        return self.end < self.start

    def contains_time(self, t: time) -> bool:
        """Whether a time of day falls in [start, end), honouring midnight wrap."""
        t = t.replace(microsecond=0, tzinfo=None)
        if self.wraps_midnight:
            return t >= self.start or t < self.end
        return self.start <= t < self.end

    def local_time(self, now: datetime, local_tz: Optional[tzinfo] = None) -> time:
        """Time of day of `now` in this slot's zone.

        Naive datetimes are taken as already being wall-clock time.
        """
        if now.tzinfo is None:
            return now.time()
        if self.zone == UTC:
            return now.astimezone(timezone.utc).time()
        return now.astimezone(local_tz).time()

    def contains(self, now: datetime, local_tz: Optional[tzinfo] = None) -> bool:
        return self.contains_time(self.local_time(now, local_tz))

    def seconds_into(self, t: time) -> int:
        """Seconds elapsed since the slot started (slot must contain `t`)."""
        return (seconds_from_midnight(t) - seconds_from_midnight(self.start)) % (24 * 3600)

    @property
    def duration_seconds(self) -> int:
        return (seconds_from_midnight(self.end) - seconds_from_midnight(self.start)) % (24 * 3600)

    def __str__(self) -> str:
        zone = "UTC" if self.zone == UTC else "Local Time"
        return f"{self.start.isoformat()}-{self.end.isoformat()} {zone}"
