"""
Shared helpers for parsing environment-style configuration values

Provides:
- parse_bool, parse_int, parse_float: Env string conversion with fallback defaults
- split_csv: Comma-separated list splitting
- clamp: Bound a number to an inclusive range
"""

from __future__ import annotations


def parse_bool(value: str | None, default: bool = False) -> bool:
    """Interpret env-style booleans."""
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def parse_int(value: str | None, default: int) -> int:
    """Best-effort int parser with fallback."""
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def parse_float(value: str | None, default: float) -> float:
    """Best-effort float parser with fallback."""
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def split_csv(value: str | None) -> list[str]:
    """Split comma-separated strings into trimmed tokens."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(value, upper))
