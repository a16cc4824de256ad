"""
Quiet-hours-aware fire-time scheduling

Two cadence strategies, modelled as a closed tagged variant:

- PeriodicSchedule: fixed cadence aligned to a wall-clock grid (e.g. :00/:15/:30/:45)
- RandomSchedule: random gap drawn from a configured minute range

FireTimeScheduler computes a naive candidate for the active strategy and, when
that candidate lands inside quiet hours, recomputes it from the end of the
quiet window. Chaining calls (each result feeding the next reference) yields a
strictly increasing sequence of fire instants.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from mindful.datetime_utils import Duration, add_duration, align_down, as_aware, local_now
from mindful.quiet_hours import QuietHours

LOGGER = logging.getLogger(__name__)

# Shortest interval the host's background scheduling can honour reliably.
MIN_INTERVAL_MINUTES = 15

# Keeps non-deferred results clear of "now" despite registration latency.
ALARM_PADDING = Duration(minutes=2)

# No fire instant is ever closer than this to its reference.
MIN_GAP_MINUTES = 2


@dataclass(frozen=True, slots=True)
class PeriodicSchedule:
    hours: int = 1
    minutes: int = 0

    @property
    def period_minutes(self) -> int:
        return self.hours * 60 + self.minutes

    @property
    def grid_minutes(self) -> int:
        if self.minutes > 0:
            return self.minutes
        if self.hours > 0:
            return self.hours * 60
        return MIN_INTERVAL_MINUTES


@dataclass(frozen=True, slots=True)
class RandomSchedule:
    min_minutes: int = 30
    max_minutes: int = 60

    @property
    def is_degenerate(self) -> bool:
        return self.max_minutes == self.min_minutes or self.min_minutes > self.max_minutes


Schedule = PeriodicSchedule | RandomSchedule


def schedule_to_dict(schedule: Schedule) -> dict[str, Any]:
    match schedule:
        case PeriodicSchedule(hours=hours, minutes=minutes):
            return {"kind": "periodic", "hours": hours, "minutes": minutes}
        case RandomSchedule(min_minutes=min_minutes, max_minutes=max_minutes):
            return {"kind": "random", "min_minutes": min_minutes, "max_minutes": max_minutes}
    raise TypeError(f"Unsupported schedule: {schedule!r}")


def schedule_from_dict(payload: dict[str, Any]) -> Schedule:
    kind = str(payload.get("kind") or "").lower()
    if kind == "periodic":
        return PeriodicSchedule(
            hours=max(0, int(payload.get("hours", 1))),
            minutes=max(0, int(payload.get("minutes", 0))),
        )
    if kind == "random":
        return RandomSchedule(
            min_minutes=max(0, int(payload.get("min_minutes", 30))),
            max_minutes=max(0, int(payload.get("max_minutes", 60))),
        )
    raise ValueError(f"Unknown schedule kind: {kind!r}")


def average_interval_minutes(schedule: Schedule) -> float:
    match schedule:
        case PeriodicSchedule():
            return float(schedule.period_minutes or MIN_INTERVAL_MINUTES)
        case RandomSchedule(min_minutes=low, max_minutes=high):
            return (low + high) / 2
    raise TypeError(f"Unsupported schedule: {schedule!r}")


def describe_schedule(schedule: Schedule) -> str:
    match schedule:
        case PeriodicSchedule(hours=hours, minutes=minutes):
            return f"periodic every {hours}h{minutes:02d}m"
        case RandomSchedule(min_minutes=low, max_minutes=high):
            return f"random {low}-{high} min"
    return repr(schedule)


@dataclass(frozen=True, slots=True)
class FireDecision:
    instant: datetime
    deferred_past_quiet: bool = False


class FireTimeScheduler:
    """Compute the next fire instant for a schedule, deferring past quiet hours."""

    def __init__(
        self,
        schedule: Schedule,
        quiet_hours: QuietHours,
        *,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = local_now,
    ) -> None:
        self.schedule = schedule
        self.quiet_hours = quiet_hours
        self._rng = rng or random.Random()
        self._clock = clock

    def next_fire(self, reference: datetime | None = None) -> FireDecision:
        reference = as_aware(reference) if reference else self._clock()
        candidate = self.naive_next(reference)
        if not self.quiet_hours.is_in_quiet_hours(candidate):
            LOGGER.debug("Next reminder at %s", candidate)
            return FireDecision(candidate, False)
        deferred = self.naive_next(self.quiet_hours.next_end(reference), deferred=True)
        LOGGER.debug("Candidate %s is in quiet hours %s; deferring to %s", candidate, self.quiet_hours, deferred)
        return FireDecision(deferred, True)

    def naive_next(self, reference: datetime, deferred: bool = False) -> datetime:
        """Next candidate ignoring quiet hours."""
        match self.schedule:
            case PeriodicSchedule():
                return self._periodic_next(self.schedule, reference, deferred)
            case RandomSchedule():
                return self._random_next(self.schedule, reference, deferred)
        raise TypeError(f"Unsupported schedule: {self.schedule!r}")

    @staticmethod
    def _periodic_next(schedule: PeriodicSchedule, reference: datetime, deferred: bool) -> datetime:
        if not deferred:
            reference = add_duration(reference, ALARM_PADDING)
        period = schedule.period_minutes or MIN_INTERVAL_MINUTES
        raw = add_duration(reference, Duration(minutes=period))
        return align_down(raw, timedelta(minutes=schedule.grid_minutes))

    def _random_next(self, schedule: RandomSchedule, reference: datetime, deferred: bool) -> datetime:
        if schedule.is_degenerate:
            # Deferred: resume soon after quiet hours rather than waiting the full maximum.
            minutes = self._draw(0, schedule.max_minutes) if deferred else schedule.max_minutes
        elif deferred:
            minutes = self._draw(0, schedule.max_minutes - schedule.min_minutes)
        else:
            minutes = self._draw(schedule.min_minutes, schedule.max_minutes)
        minutes = max(MIN_GAP_MINUTES, minutes)
        return add_duration(reference, Duration(minutes=minutes))

    def _draw(self, low: int, high: int) -> int:
        """Uniform whole minutes from ``[low, high)``; an empty range yields ``low``."""
        if high <= low:
            return low
        return self._rng.randrange(low, high)
