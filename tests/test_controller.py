"""Tests for the scheduling lifecycle (mindful/controller.py)."""

from __future__ import annotations

import random
from unittest.mock import AsyncMock, Mock

import pytest

from mindful.buffer import LAST_SCHEDULED_KEY, WARNING_NOTIFICATION_ID_KEY, ReplenishError
from mindful.config import NotifierSettings, load_settings, save_settings
from mindful.controller import BufferHealth, SchedulingContext
from mindful.datetime_utils import TimeOfDay
from mindful.quiet_hours import QuietHours
from mindful.scheduler import PeriodicSchedule

pytestmark = pytest.mark.anyio


@pytest.fixture
def settings():
    return NotifierSettings(schedule=PeriodicSchedule(hours=0, minutes=30), min_buffer=6)


@pytest.fixture
def task_host():
    task_host = Mock()
    task_host.register = AsyncMock()
    task_host.unregister = AsyncMock()
    return task_host


@pytest.fixture
def on_health():
    return Mock()


@pytest.fixture
def context(host, memory_store, task_host, clock, on_health, mock_logger):
    return SchedulingContext(
        host,
        memory_store,
        task_host=task_host,
        clock=clock,
        rng=random.Random(3),
        on_health=on_health,
        logger=mock_logger,
    )


class TestEnable:
    async def test_enable_persists_and_fills_buffer(self, context, memory_store, task_host, settings, at):
        last = await context.enable(settings)

        assert context.enabled
        assert load_settings(memory_store) == settings
        assert last == at(2025, 2, 1, 15, 0)
        assert len(await context.buffer.pending_reminders()) == 6
        # 6 reminders * 30 min / 2 = 90 minutes between background checks.
        task_host.register.assert_awaited_once_with(90, context.run_background_check)

    async def test_enable_publishes_health(self, context, settings, on_health):
        await context.enable(settings)
        health = on_health.call_args[0][0]
        assert isinstance(health, BufferHealth)
        assert health.enabled
        assert health.pending_count == 6
        assert health.healthy

    async def test_invalid_interval_warns_but_schedules(self, context, mock_logger):
        settings = NotifierSettings(schedule=PeriodicSchedule(hours=0, minutes=5), min_buffer=3)
        await context.enable(settings)
        mock_logger.warning.assert_called()
        assert len(await context.buffer.pending_reminders()) == 3

    async def test_host_failure_propagates_and_keeps_background_armed(
        self, context, host, task_host, settings, mock_logger
    ):
        host.fail_after = 2
        with pytest.raises(ReplenishError) as excinfo:
            await context.enable(settings)
        assert excinfo.value.scheduled == 2
        mock_logger.error.assert_called()
        task_host.register.assert_awaited_once()


class TestReschedule:
    async def test_reschedule_is_idempotent(self, context, settings):
        await context.enable(settings)

        first = await context.reschedule(settings)
        first_times = [item.fire_at for item in await context.buffer.pending_reminders()]
        second = await context.reschedule(settings)
        second_times = [item.fire_at for item in await context.buffer.pending_reminders()]

        assert second == first
        assert second_times == first_times
        assert len(second_times) == settings.min_buffer

    async def test_reschedule_applies_new_settings(self, context, settings, at):
        await context.enable(settings)
        hourly = NotifierSettings(schedule=PeriodicSchedule(hours=1, minutes=0), min_buffer=3)

        await context.reschedule(hourly)

        times = [item.fire_at for item in await context.buffer.pending_reminders()]
        assert times == [at(2025, 2, 1, 13, 0), at(2025, 2, 1, 14, 0), at(2025, 2, 1, 15, 0)]

    async def test_edit_inside_debounce_interval_survives_background_check(self, context, clock, settings, at):
        await context.enable(settings)
        clock.advance(seconds=2)
        afternoon_off = NotifierSettings(
            schedule=settings.schedule,
            quiet_hours=QuietHours(start=TimeOfDay(12, 0), end=TimeOfDay(18, 0)),
            min_buffer=settings.min_buffer,
        )

        await context.reschedule(afternoon_off)
        clock.advance(minutes=10)
        assert await context.run_background_check() == "success"

        pending = await context.buffer.pending_reminders()
        assert len(pending) == settings.min_buffer
        assert pending[0].fire_at == at(2025, 2, 1, 18, 30)
        assert not [item for item in pending if afternoon_off.quiet_hours.is_in_quiet_hours(item.fire_at)]

    async def test_background_top_up_still_debounced(self, context, host, clock, settings):
        await context.enable(settings)
        clock.advance(seconds=2)
        host.pending.clear()

        assert await context.buffer.ensure_buffer(settings) is None
        assert host.pending == {}

    async def test_reschedule_while_disabled_only_saves(self, context, host, memory_store, settings):
        assert await context.reschedule(settings) is None
        assert host.registrations == 0
        assert load_settings(memory_store) == settings


class TestDisable:
    async def test_disable_clears_everything(self, context, host, memory_store, task_host, settings):
        await context.enable(settings)
        await context.disable()

        assert not context.enabled
        assert host.pending == {}
        assert memory_store.get(LAST_SCHEDULED_KEY) is None
        assert memory_store.get(WARNING_NOTIFICATION_ID_KEY) is None
        task_host.unregister.assert_awaited()


class TestIntrospection:
    async def test_next_fire_instant(self, context, settings, at):
        assert await context.get_next_fire_instant() is None
        await context.enable(settings)
        assert await context.get_next_fire_instant() == at(2025, 2, 1, 12, 30)

    async def test_health_snapshot(self, context, settings, at):
        await context.enable(settings)
        await context.run_background_check()

        health = await context.health()
        assert health.buffer_target == 6
        assert health.last_scheduled == at(2025, 2, 1, 15, 0)
        assert health.next_fire == at(2025, 2, 1, 12, 30)
        assert health.background_interval_minutes == 90
        assert len(health.background_history) == 1

        payload = health.to_dict()
        assert payload["pending_count"] == 6
        assert payload["next_fire"] == at(2025, 2, 1, 12, 30).isoformat()

    async def test_health_without_settings(self, context):
        health = await context.health()
        assert not health.enabled
        assert health.buffer_target == 0
        assert health.background_interval_minutes is None


class TestBackgroundCheck:
    async def test_check_tops_up_and_publishes(self, context, memory_store, host, settings, clock, on_health):
        await context.enable(settings)
        clock.advance(minutes=61)
        host.fire_until(clock.now)
        on_health.reset_mock()

        assert await context.run_background_check() == "success"
        assert len(await context.buffer.pending_reminders()) == 6
        on_health.assert_called_once()

    async def test_health_publish_failure_is_logged(self, context, memory_store, settings, on_health, mock_logger):
        save_settings(memory_store, settings)
        on_health.side_effect = RuntimeError("broker gone")
        assert await context.run_background_check() == "success"
        mock_logger.exception.assert_called_once()

    async def test_ensure_running_rearms_after_restart(self, context, memory_store, task_host, host, clock, settings):
        await context.enable(settings)
        task_host.register.reset_mock()

        restarted = SchedulingContext(host, memory_store, task_host=task_host, clock=clock)
        await restarted.ensure_running()

        task_host.register.assert_awaited_once()
