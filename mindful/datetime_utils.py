"""Shared datetime arithmetic, time-of-day binding and serialization utilities."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
ONE_DAY = timedelta(days=1)

_TIME_KEYWORDS = {
    "noon": (12, 0),
    "midday": (12, 0),
    "midnight": (0, 0),
    "morning": (9, 0),
    "evening": (18, 0),
}


def local_now() -> datetime:
    """Get current datetime in local timezone."""
    return datetime.now().astimezone()


def as_aware(dt: datetime) -> datetime:
    """Attach the local timezone to naive datetimes; aware values pass through untouched."""
    if dt.tzinfo is None:
        return dt.astimezone()
    return dt


def to_local(instant: datetime) -> datetime:
    """Re-express an instant in the live local zone.

    Stored and chained instants keep whatever fixed offset they were created
    with; wall-clock reads must go through here so they follow DST changes.
    """
    return as_aware(instant).astimezone()


def local_date(instant: datetime) -> date:
    return to_local(instant).date()


def serialize_dt(value: datetime) -> str:
    return as_aware(value).isoformat()


def deserialize_dt(value: str | None) -> datetime | None:
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    return as_aware(parsed)


@dataclass(frozen=True, slots=True)
class Duration:
    """Signed, component-wise amount of time."""

    days: float = 0
    hours: float = 0
    minutes: float = 0
    seconds: float = 0
    milliseconds: float = 0

    def to_timedelta(self) -> timedelta:
        return timedelta(
            days=self.days,
            hours=self.hours,
            minutes=self.minutes,
            seconds=self.seconds,
            milliseconds=self.milliseconds,
        )


def add_duration(instant: datetime, duration: Duration) -> datetime:
    return instant + duration.to_timedelta()


def subtract_duration(instant: datetime, duration: Duration) -> datetime:
    return instant - duration.to_timedelta()


def align_down(instant: datetime, grid: timedelta) -> datetime:
    """Snap an instant back to the most recent multiple of ``grid`` counted from the Unix epoch."""
    if grid <= timedelta(0):
        raise ValueError("Alignment grid must be positive")
    over = (as_aware(instant) - EPOCH) % grid
    return instant - over


def parse_time_of_day(phrase: str | None) -> tuple[int, int] | None:
    """Parse time of day phrase into (hour, minute) tuple. Returns None if invalid."""
    if not phrase:
        return None
    cleaned = phrase.strip().lower()
    if not cleaned:
        return None
    keyword = _TIME_KEYWORDS.get(cleaned)
    if keyword:
        return keyword
    match = re.match(r"^(\d{1,2})(?::(\d{2}))?\s*(am|pm)?$", cleaned)
    if not match:
        return None
    hour = int(match.group(1))
    minute = int(match.group(2) or 0)
    suffix = match.group(3)
    if suffix:
        if hour > 12:
            return None
        if hour == 12:
            hour = 0
        if suffix == "pm":
            hour += 12
    if hour >= 24 or minute >= 60:
        return None
    return hour, minute


@dataclass(frozen=True, slots=True)
class TimeOfDay:
    """Wall-clock time with no date component."""

    hour: int
    minute: int = 0

    def __post_init__(self) -> None:
        if not 0 <= self.hour <= 23:
            raise ValueError(f"Hour out of range: {self.hour}")
        if not 0 <= self.minute <= 59:
            raise ValueError(f"Minute out of range: {self.minute}")

    @classmethod
    def parse(cls, value: str) -> TimeOfDay:
        """Parse 'HH:MM', '9pm', 'noon' and friends. Raises ValueError if invalid."""
        result = parse_time_of_day(value)
        if result is None:
            raise ValueError(f"Invalid time of day: {value!r}")
        return cls(*result)

    def to_time(self) -> time:
        return time(self.hour, self.minute)

    def on_date(self, day: date) -> datetime:
        """Bind to ``day`` in the live local zone, using that day's UTC offset."""
        return datetime.combine(day, self.to_time()).astimezone()

    def to_today(self, reference: datetime) -> datetime:
        return self.on_date(local_date(reference))

    def to_tomorrow(self, reference: datetime) -> datetime:
        return self.on_date(local_date(reference) + ONE_DAY)

    def to_yesterday(self, reference: datetime) -> datetime:
        return self.on_date(local_date(reference) - ONE_DAY)

    def __str__(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}"
