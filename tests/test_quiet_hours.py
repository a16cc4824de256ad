"""Tests for the daily quiet window (mindful/quiet_hours.py)."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from mindful.datetime_utils import TimeOfDay, local_now
from mindful.quiet_hours import QuietHours


@pytest.fixture
def overnight():
    """Default 21:00-09:00 window, crossing midnight."""
    return QuietHours()


@pytest.fixture
def afternoon():
    return QuietHours(start=TimeOfDay(13, 0), end=TimeOfDay(15, 0))


@pytest.mark.parametrize(
    "hour,minute,expected",
    [
        (20, 59, False),
        (21, 0, True),
        (23, 30, True),
        (0, 0, True),
        (3, 0, True),
        (8, 59, True),
        (9, 0, False),
        (12, 0, False),
    ],
)
def test_overnight_window(overnight, at, hour, minute, expected):
    assert overnight.is_in_quiet_hours(at(2025, 2, 1, hour, minute)) is expected


@pytest.mark.parametrize(
    "hour,minute,expected",
    [(12, 59, False), (13, 0, True), (14, 0, True), (14, 59, True), (15, 0, False), (16, 0, False), (2, 0, False)],
)
def test_same_day_window(afternoon, at, hour, minute, expected):
    assert afternoon.is_in_quiet_hours(at(2025, 2, 1, hour, minute)) is expected


def test_empty_window_is_never_quiet(at):
    quiet = QuietHours(start=TimeOfDay(9, 0), end=TimeOfDay(9, 0))
    assert quiet.is_empty
    assert not quiet.is_in_quiet_hours(at(2025, 2, 1, 9, 0))
    assert not quiet.is_in_quiet_hours(at(2025, 2, 1, 22, 0))


class TestNextBoundaries:
    def test_next_end_later_today(self, overnight, at):
        assert overnight.next_end(at(2025, 2, 1, 8, 0)) == at(2025, 2, 1, 9, 0)

    def test_next_end_is_strictly_after_reference(self, overnight, at):
        assert overnight.next_end(at(2025, 2, 1, 9, 0)) == at(2025, 2, 2, 9, 0)

    def test_next_end_tomorrow(self, overnight, at):
        assert overnight.next_end(at(2025, 2, 1, 22, 0)) == at(2025, 2, 2, 9, 0)

    def test_next_start(self, overnight, at):
        assert overnight.next_start(at(2025, 2, 1, 12, 0)) == at(2025, 2, 1, 21, 0)
        assert overnight.next_start(at(2025, 2, 1, 21, 0)) == at(2025, 2, 2, 21, 0)

    def test_defaults_to_now(self, overnight):
        before = local_now()
        assert overnight.next_end() > before


def test_dict_round_trip():
    quiet = QuietHours(start=TimeOfDay(22, 30), end=TimeOfDay(7, 0), notify_on_quiet_end=True)
    payload = quiet.to_dict()
    assert payload == {"start": "22:30", "end": "07:00", "notify_on_quiet_end": True}
    assert QuietHours.from_dict(payload) == quiet


def test_from_empty_dict_uses_defaults():
    assert QuietHours.from_dict(None) == QuietHours()


def test_str(overnight):
    assert str(overnight) == "21:00-09:00"


class TestDaylightSaving:
    """Local zone is US Eastern: spring forward 2025-03-09, fall back 2025-11-02."""

    EDT = timezone(timedelta(hours=-4))

    def test_window_follows_wall_clock_after_spring_forward(self, overnight, at):
        # 20:00 in the old -05:00 offset is 21:00 EDT.
        assert overnight.is_in_quiet_hours(at(2025, 3, 9, 20, 0))
        assert not overnight.is_in_quiet_hours(datetime(2025, 3, 9, 20, 0, tzinfo=self.EDT))

    def test_next_end_across_spring_forward(self, overnight, at):
        assert overnight.next_end(at(2025, 3, 8, 22, 0)) == datetime(2025, 3, 9, 9, 0, tzinfo=self.EDT)

    def test_boundaries_across_fall_back(self, overnight, at):
        assert overnight.next_end(datetime(2025, 11, 1, 22, 0, tzinfo=self.EDT)) == at(2025, 11, 2, 9, 0)
        assert overnight.next_start(datetime(2025, 11, 1, 22, 0, tzinfo=self.EDT)) == at(2025, 11, 2, 21, 0)
