"""Configuration helpers for the Mindful notifier.

Two layers:

- NotifierConfig: process configuration read from environment variables
  (state directory, MQTT broker, first-run defaults).
- NotifierSettings: the user's schedule preferences persisted in the durable
  store under a versioned schema, so the headless background context can
  rebuild them without any in-memory state.
"""

from __future__ import annotations

import logging
import os
import socket
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from mindful.datetime_utils import TimeOfDay
from mindful.quiet_hours import QuietHours
from mindful.reminders import DEFAULT_FAVOURITE_PROBABILITY, Reminder, default_reminders
from mindful.scheduler import (
    MIN_INTERVAL_MINUTES,
    PeriodicSchedule,
    RandomSchedule,
    Schedule,
    schedule_from_dict,
    schedule_to_dict,
)
from mindful.utils import parse_bool, parse_float, parse_int, split_csv

if TYPE_CHECKING:
    from mindful.durable_store import DurableStore

LOGGER = logging.getLogger(__name__)

SETTINGS_KEY = "settings"
SETTINGS_VERSION = 1
NOTIFICATIONS_ENABLED_KEY = "notifications_enabled"

DEFAULT_MIN_BUFFER = 30
DEFAULT_TITLE = "Mindful Notifier"


class SettingsError(Exception):
    """Persisted settings are missing, malformed, or from an unknown schema version."""


def _strip_or_none(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def is_valid_periodic_interval(hours: int, minutes: int, min_interval: int = MIN_INTERVAL_MINUTES) -> bool:
    return hours * 60 + minutes >= min_interval


def is_valid_random_interval(min_minutes: int, max_minutes: int, min_interval: int = MIN_INTERVAL_MINUTES) -> bool:
    return min_minutes >= min_interval and max_minutes >= min_minutes


def is_valid_schedule(schedule: Schedule, min_interval: int = MIN_INTERVAL_MINUTES) -> bool:
    if isinstance(schedule, PeriodicSchedule):
        return is_valid_periodic_interval(schedule.hours, schedule.minutes, min_interval)
    return is_valid_random_interval(schedule.min_minutes, schedule.max_minutes, min_interval)


@dataclass(frozen=True)
class NotifierSettings:
    schedule: Schedule = field(default_factory=RandomSchedule)
    quiet_hours: QuietHours = field(default_factory=QuietHours)
    min_buffer: int = DEFAULT_MIN_BUFFER
    reminders: tuple[Reminder, ...] = field(default_factory=default_reminders)
    favourite_probability: float = DEFAULT_FAVOURITE_PROBABILITY
    title: str = DEFAULT_TITLE

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": SETTINGS_VERSION,
            "schedule": schedule_to_dict(self.schedule),
            "quiet_hours": self.quiet_hours.to_dict(),
            "min_buffer": self.min_buffer,
            "reminders": [reminder.to_dict() for reminder in self.reminders],
            "favourite_probability": self.favourite_probability,
            "title": self.title,
        }

    @classmethod
    def from_dict(cls, payload: Any) -> NotifierSettings:
        if not isinstance(payload, dict):
            raise SettingsError("Settings payload must be an object")
        version = payload.get("version")
        if version != SETTINGS_VERSION:
            raise SettingsError(f"Unsupported settings version: {version!r}")
        try:
            schedule = schedule_from_dict(payload.get("schedule") or {})
            quiet_hours = QuietHours.from_dict(payload.get("quiet_hours"))
            raw_reminders = payload.get("reminders") or []
            reminders = tuple(Reminder.from_dict(item) for item in raw_reminders) or default_reminders()
            min_buffer = max(1, int(payload.get("min_buffer", DEFAULT_MIN_BUFFER)))
            favourite_probability = float(payload.get("favourite_probability", DEFAULT_FAVOURITE_PROBABILITY))
        except (TypeError, ValueError, AttributeError) as exc:
            raise SettingsError(f"Malformed settings: {exc}") from exc
        return cls(
            schedule=schedule,
            quiet_hours=quiet_hours,
            min_buffer=min_buffer,
            reminders=reminders,
            favourite_probability=favourite_probability,
            title=str(payload.get("title") or DEFAULT_TITLE),
        )


def load_settings(store: DurableStore, logger: logging.Logger | None = None) -> NotifierSettings | None:
    """Rebuild settings from the durable store; ``None`` if absent or unreadable."""
    logger = logger or LOGGER
    payload = store.get(SETTINGS_KEY)
    if payload is None:
        logger.warning("No persisted settings found under '%s'", SETTINGS_KEY)
        return None
    try:
        return NotifierSettings.from_dict(payload)
    except SettingsError as exc:
        logger.error("Failed to load persisted settings: %s", exc)
        return None


def save_settings(store: DurableStore, settings: NotifierSettings) -> None:
    store.set(SETTINGS_KEY, settings.to_dict())


def notifications_enabled(store: DurableStore) -> bool:
    return bool(store.get(NOTIFICATIONS_ENABLED_KEY, False))


def set_notifications_enabled(store: DurableStore, enabled: bool) -> None:
    store.set(NOTIFICATIONS_ENABLED_KEY, enabled)


@dataclass(frozen=True)
class MqttConfig:
    host: str | None
    port: int
    username: str | None
    password: str | None
    tls_enabled: bool
    cert: str | None
    key: str | None
    ca_cert: str | None
    topic_base: str

    @property
    def notification_topic(self) -> str:
        return f"{self.topic_base}/notification"

    @property
    def buffer_state_topic(self) -> str:
        return f"{self.topic_base}/buffer/state"

    @property
    def command_topic(self) -> str:
        return f"{self.topic_base}/command"


@dataclass(frozen=True)
class NotifierConfig:
    hostname: str
    state_dir: Path
    mqtt: MqttConfig
    defaults: NotifierSettings

    @property
    def store_path(self) -> Path:
        return self.state_dir / "state.json"

    @property
    def pending_path(self) -> Path:
        return self.state_dir / "pending.json"

    @staticmethod
    def from_env(env: dict[str, str] | None = None) -> NotifierConfig:
        source = env if env is not None else os.environ
        hostname = source.get("MINDFUL_HOSTNAME") or socket.gethostname()

        state_dir = Path(source.get("MINDFUL_STATE_DIR") or Path.home() / ".local" / "state" / "mindful")

        schedule_type = (source.get("MINDFUL_SCHEDULE_TYPE") or "random").strip().lower()
        schedule: Schedule
        if schedule_type == "periodic":
            schedule = PeriodicSchedule(
                hours=max(0, parse_int(source.get("MINDFUL_PERIODIC_HOURS"), 1)),
                minutes=max(0, parse_int(source.get("MINDFUL_PERIODIC_MINUTES"), 0)),
            )
        else:
            schedule = RandomSchedule(
                min_minutes=max(0, parse_int(source.get("MINDFUL_RANDOM_MIN_MINUTES"), 30)),
                max_minutes=max(0, parse_int(source.get("MINDFUL_RANDOM_MAX_MINUTES"), 60)),
            )

        quiet_hours = QuietHours(
            start=_parse_time_or_default(source.get("MINDFUL_QUIET_START"), TimeOfDay(21, 0)),
            end=_parse_time_or_default(source.get("MINDFUL_QUIET_END"), TimeOfDay(9, 0)),
            notify_on_quiet_end=parse_bool(source.get("MINDFUL_NOTIFY_QUIET_END"), False),
        )

        texts = split_csv(source.get("MINDFUL_REMINDERS"))
        reminders = tuple(Reminder(text) for text in texts) or default_reminders()

        defaults = NotifierSettings(
            schedule=schedule,
            quiet_hours=quiet_hours,
            min_buffer=max(1, parse_int(source.get("MINDFUL_MIN_BUFFER"), DEFAULT_MIN_BUFFER)),
            reminders=reminders,
            favourite_probability=parse_float(
                source.get("MINDFUL_FAVOURITE_PROBABILITY"), DEFAULT_FAVOURITE_PROBABILITY
            ),
            title=(source.get("MINDFUL_TITLE") or DEFAULT_TITLE).strip() or DEFAULT_TITLE,
        )

        topic_base = (source.get("MINDFUL_TOPIC_BASE") or f"mindful/{hostname}").rstrip("/")
        mqtt = MqttConfig(
            host=_strip_or_none(source.get("MQTT_HOST")),
            port=parse_int(source.get("MQTT_PORT"), 1883),
            username=_strip_or_none(source.get("MQTT_USER") or source.get("MQTT_USERNAME")),
            password=_strip_or_none(source.get("MQTT_PASS") or source.get("MQTT_PASSWORD")),
            tls_enabled=parse_bool(source.get("MQTT_TLS_ENABLED"), False),
            cert=_strip_or_none(source.get("MQTT_CERT")),
            key=_strip_or_none(source.get("MQTT_KEY")),
            ca_cert=_strip_or_none(source.get("MQTT_CA_CERT")),
            topic_base=topic_base,
        )

        return NotifierConfig(
            hostname=hostname,
            state_dir=state_dir,
            mqtt=mqtt,
            defaults=defaults,
        )


def _parse_time_or_default(value: str | None, default: TimeOfDay) -> TimeOfDay:
    if not value:
        return default
    try:
        return TimeOfDay.parse(value)
    except ValueError:
        LOGGER.warning("Ignoring invalid time of day %r; using %s", value, default)
        return default
