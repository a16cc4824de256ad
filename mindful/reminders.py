"""Reminder text selection with favourite weighting."""

from __future__ import annotations

import random
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

DEFAULT_TAG = "default"

# Chance of drawing from the favourites pool when favourites exist.
DEFAULT_FAVOURITE_PROBABILITY = 0.2

DEFAULT_REMINDER_TEXTS = (
    "Are you aware?",
    "Breathe deeply. This is the present moment.",
    "Take a moment to pause, and come back to the present.",
    "Bring awareness into this moment.",
    "Respond, not react.",
    "All of this is impermanent.",
    "Note any feeling tones in the moment: Pleasant / Unpleasant / Neutral.",
    "What is the attitude in the mind right now?",
    "May you be happy. May you be healthy. May you be free from harm. May you be peaceful.",
    "Sitting quietly, doing nothing, spring comes, and the grass grows by itself.",
)

ReminderPicker = Callable[[int], list[str]]


@dataclass(frozen=True, slots=True)
class Reminder:
    text: str
    enabled: bool = True
    tag: str = DEFAULT_TAG
    favourite: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"text": self.text, "enabled": self.enabled, "tag": self.tag, "favourite": self.favourite}

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Reminder:
        text = payload.get("text")
        if not isinstance(text, str) or not text.strip():
            raise ValueError("Reminder text must be a non-empty string")
        return cls(
            text=text.strip(),
            enabled=bool(payload.get("enabled", True)),
            tag=str(payload.get("tag") or DEFAULT_TAG),
            favourite=bool(payload.get("favourite", False)),
        )


def default_reminders() -> tuple[Reminder, ...]:
    return tuple(Reminder(text) for text in DEFAULT_REMINDER_TEXTS)


def _enabled_pool(reminders: Sequence[Reminder] | None) -> list[Reminder]:
    pool = list(reminders) if reminders else list(default_reminders())
    enabled = [reminder for reminder in pool if reminder.enabled]
    # Nothing enabled: fall back to everything rather than going silent.
    return enabled or pool


def _shuffled(items: Sequence[Reminder], rng: random.Random) -> list[Reminder]:
    shuffled = list(items)
    rng.shuffle(shuffled)
    return shuffled


def pick_reminder_bodies(
    count: int,
    reminders: Sequence[Reminder] | None = None,
    favourite_probability: float = DEFAULT_FAVOURITE_PROBABILITY,
    rng: random.Random | None = None,
) -> list[str]:
    """Return ``count`` reminder texts, one per scheduled slot.

    Texts are drawn from reshuffled decks so repeats stay rare. When
    favourites exist, each slot draws from the favourites deck with
    ``favourite_probability``.
    """
    if count <= 0:
        return []
    rng = rng or random.Random()
    enabled = _enabled_pool(reminders)

    if favourite_probability <= 0:
        result: list[str] = []
        while len(result) < count:
            deck = _shuffled(enabled, rng)
            result.extend(reminder.text for reminder in deck[: count - len(result)])
        return result

    favourites = [reminder for reminder in enabled if reminder.favourite]
    others = [reminder for reminder in enabled if not reminder.favourite]
    favourite_deck: list[Reminder] = []
    other_deck: list[Reminder] = []
    result = []
    while len(result) < count:
        use_favourite = bool(favourites) and (not others or rng.random() < favourite_probability)
        if use_favourite:
            if not favourite_deck:
                favourite_deck = _shuffled(favourites, rng)
            result.append(favourite_deck.pop().text)
        else:
            if not other_deck:
                other_deck = _shuffled(others, rng)
            result.append(other_deck.pop().text)
    return result


def make_picker(
    reminders: Sequence[Reminder] | None = None,
    favourite_probability: float = DEFAULT_FAVOURITE_PROBABILITY,
    rng: random.Random | None = None,
) -> ReminderPicker:
    def _pick(count: int) -> list[str]:
        return pick_reminder_bodies(count, reminders, favourite_probability, rng)

    return _pick
