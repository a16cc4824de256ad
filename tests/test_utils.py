"""Tests for env-style parsing helpers (mindful/utils.py)."""

from __future__ import annotations

import pytest

from mindful.utils import clamp, parse_bool, parse_float, parse_int, split_csv


@pytest.mark.parametrize(
    "value,expected",
    [("1", True), ("true", True), (" YES ", True), ("on", True), ("0", False), ("off", False), ("", False)],
)
def test_parse_bool(value, expected):
    assert parse_bool(value) is expected


def test_parse_bool_none_uses_default():
    assert parse_bool(None, True) is True
    assert parse_bool(None) is False


def test_parse_int_falls_back_on_garbage():
    assert parse_int("42", 0) == 42
    assert parse_int("forty", 7) == 7
    assert parse_int(None, 3) == 3


def test_parse_float_falls_back_on_garbage():
    assert parse_float("0.5", 0.0) == 0.5
    assert parse_float("half", 0.2) == 0.2


def test_split_csv_trims_and_drops_empty_tokens():
    assert split_csv(" a, b ,,c ") == ["a", "b", "c"]
    assert split_csv(None) == []
    assert split_csv("") == []


def test_clamp():
    assert clamp(5, 15, 480) == 15
    assert clamp(600, 15, 480) == 480
    assert clamp(100, 15, 480) == 100
