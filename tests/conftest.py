"""Shared test fixtures for the Mindful notifier test suite.

This module provides:
- A process-wide local zone with US Eastern DST rules
- A controllable clock pinned to a fixed UTC offset
- An in-memory notification host with injectable failures
- MQTT configuration and paho client mocks
- Durable store fixtures
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock
from uuid import uuid4

import paho.mqtt.client as mqtt
import pytest

from mindful.config import MqttConfig
from mindful.durable_store import JsonFileStore, MemoryStore
from mindful.notifications import NotificationError, PendingNotification

# POSIX rule, so no tz database is needed. Winter offset matches TEST_TZ.
LOCAL_ZONE_RULE = "EST5EDT,M3.2.0,M11.1.0"

# Whole-hour offset keeps epoch-aligned grids on local :00/:15/:30/:45.
TEST_TZ = timezone(timedelta(hours=-5))


# ============================================================================
# Pytest Configuration
# ============================================================================


@pytest.fixture(scope="session")
def anyio_backend():
    """Configure anyio backend for async tests."""
    return "asyncio"


@pytest.fixture(scope="session", autouse=True)
def local_zone():
    """Run every test with a DST-observing process zone."""
    with pytest.MonkeyPatch.context() as patch:
        patch.setenv("TZ", LOCAL_ZONE_RULE)
        time.tzset()
        yield
    time.tzset()


@pytest.fixture
def mock_logger():
    """Create a mock logger that only accepts real logger methods."""
    return Mock(spec=logging.Logger)


# ============================================================================
# Time Fixtures
# ============================================================================


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def at():
    """Factory for aware datetimes in the test zone.

    Usage:
        instant = at(2025, 2, 1, 8, 0)
    """

    def _at(year: int, month: int, day: int, hour: int = 0, minute: int = 0, second: int = 0) -> datetime:
        return datetime(year, month, day, hour, minute, second, tzinfo=TEST_TZ)

    return _at


@pytest.fixture
def clock(at):
    """Clock starting at 2025-02-01 12:00 in the test zone."""
    return FakeClock(at(2025, 2, 1, 12, 0))


# ============================================================================
# Notification Host Fixtures
# ============================================================================


class FakeNotificationHost:
    """In-memory host; ``fail_after`` makes the Nth subsequent registration raise."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.pending: dict[str, PendingNotification] = {}
        self.fail_after: int | None = None
        self.registrations = 0
        self.cancel_all_calls = 0

    async def register(self, title: str, body: str, fire_at: datetime) -> str:
        if self.fail_after is not None and self.registrations >= self.fail_after:
            raise NotificationError("host refused registration")
        if fire_at <= self.clock():
            raise NotificationError("fire instant is in the past")
        self.registrations += 1
        notification = PendingNotification(uuid4().hex, fire_at, title, body)
        self.pending[notification.notification_id] = notification
        return notification.notification_id

    async def cancel(self, notification_id: str) -> None:
        self.pending.pop(notification_id, None)

    async def cancel_all(self) -> None:
        self.cancel_all_calls += 1
        self.pending.clear()

    async def list_pending(self) -> list[PendingNotification]:
        return sorted(self.pending.values(), key=lambda item: item.fire_at)

    def fire_until(self, instant: datetime) -> list[PendingNotification]:
        """Drop every notification due at or before ``instant``, as the OS would."""
        fired = [item for item in self.pending.values() if item.fire_at <= instant]
        for item in fired:
            self.pending.pop(item.notification_id)
        return fired


@pytest.fixture
def host(clock):
    return FakeNotificationHost(clock)


# ============================================================================
# Store Fixtures
# ============================================================================


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def file_store(tmp_path):
    return JsonFileStore(tmp_path / "state" / "state.json")


# ============================================================================
# MQTT Fixtures
# ============================================================================


@pytest.fixture
def mqtt_config():
    """Create a basic MQTT configuration for testing."""
    return MqttConfig(
        host="localhost",
        port=1883,
        username=None,
        password=None,
        tls_enabled=False,
        cert=None,
        key=None,
        ca_cert=None,
        topic_base="mindful/test-host",
    )


@pytest.fixture
def mqtt_config_with_tls():
    """Create MQTT configuration with TLS and credentials."""
    return MqttConfig(
        host="localhost",
        port=8883,
        username="mqtt_user",
        password="mqtt_pass",
        tls_enabled=True,
        cert="/path/to/client.crt",
        key="/path/to/client.key",
        ca_cert="/path/to/ca.crt",
        topic_base="mindful/test-host",
    )


@pytest.fixture
def mock_mqtt_client():
    """Create a mock paho MQTT client."""
    client = Mock(spec=mqtt.Client)
    message_info = Mock(spec=mqtt.MQTTMessageInfo)
    message_info.rc = mqtt.MQTT_ERR_SUCCESS
    client.publish = Mock(return_value=message_info)
    client.subscribe = Mock(return_value=(mqtt.MQTT_ERR_SUCCESS, 1))
    client.is_connected = Mock(return_value=True)
    return client
