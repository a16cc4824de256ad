"""Recurring daily quiet window during which no reminder should fire."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from mindful.datetime_utils import TimeOfDay, as_aware, local_now, to_local


@dataclass(frozen=True, slots=True)
class QuietHours:
    """Daily ``[start, end)`` window. ``start > end`` means the window spans midnight."""

    start: TimeOfDay = field(default_factory=lambda: TimeOfDay(21, 0))
    end: TimeOfDay = field(default_factory=lambda: TimeOfDay(9, 0))
    notify_on_quiet_end: bool = False

    @property
    def is_empty(self) -> bool:
        return self.start == self.end

    def is_in_quiet_hours(self, instant: datetime) -> bool:
        if self.is_empty:
            return False
        wall = to_local(instant).time()
        start, end = self.start.to_time(), self.end.to_time()
        if start < end:
            return start <= wall < end
        # Spans midnight.
        return wall >= start or wall < end

    def next_start(self, reference: datetime | None = None) -> datetime:
        reference = as_aware(reference) if reference else local_now()
        candidate = self.start.to_today(reference)
        if candidate <= reference:
            candidate = self.start.to_tomorrow(reference)
        return candidate

    def next_end(self, reference: datetime | None = None) -> datetime:
        reference = as_aware(reference) if reference else local_now()
        candidate = self.end.to_today(reference)
        if candidate <= reference:
            candidate = self.end.to_tomorrow(reference)
        return candidate

    def to_dict(self) -> dict[str, Any]:
        return {
            "start": str(self.start),
            "end": str(self.end),
            "notify_on_quiet_end": self.notify_on_quiet_end,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | None) -> QuietHours:
        if not payload:
            return cls()
        return cls(
            start=TimeOfDay.parse(str(payload.get("start") or "21:00")),
            end=TimeOfDay.parse(str(payload.get("end") or "09:00")),
            notify_on_quiet_end=bool(payload.get("notify_on_quiet_end", False)),
        )

    def __str__(self) -> str:
        return f"{self.start}-{self.end}"
