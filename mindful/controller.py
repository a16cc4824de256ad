"""Scheduling lifecycle shared by the daemon and the headless check entry point."""

from __future__ import annotations

import logging
import random
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from mindful.background import (
    AsyncioPeriodicTask,
    BackgroundRunner,
    PeriodicTaskHost,
    RunResult,
    compute_background_interval,
    read_history,
)
from mindful.buffer import BufferManager, ReplenishError
from mindful.config import (
    NotifierSettings,
    is_valid_schedule,
    load_settings,
    notifications_enabled,
    save_settings,
    set_notifications_enabled,
)
from mindful.datetime_utils import local_now, serialize_dt
from mindful.durable_store import DurableStore
from mindful.notifications import NotificationHost
from mindful.scheduler import describe_schedule

LOGGER = logging.getLogger(__name__)

HealthCallback = Callable[["BufferHealth"], None]


@dataclass(frozen=True)
class BufferHealth:
    enabled: bool
    pending_count: int
    buffer_target: int
    last_replenish: datetime | None
    last_scheduled: datetime | None
    next_fire: datetime | None
    background_interval_minutes: int | None
    background_history: list[datetime] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return not self.enabled or self.pending_count >= self.buffer_target

    def to_dict(self) -> dict[str, Any]:
        def _dt(value: datetime | None) -> str | None:
            return serialize_dt(value) if value else None

        return {
            "enabled": self.enabled,
            "healthy": self.healthy,
            "pending_count": self.pending_count,
            "buffer_target": self.buffer_target,
            "last_replenish": _dt(self.last_replenish),
            "last_scheduled": _dt(self.last_scheduled),
            "next_fire": _dt(self.next_fire),
            "background_interval_minutes": self.background_interval_minutes,
            "background_history": [serialize_dt(item) for item in self.background_history],
        }


class SchedulingContext:
    """Entry points for enabling, disabling, and rescheduling reminders.

    The durable store is the only shared state; any number of contexts (an
    interactive daemon, a one-shot ``--check`` run) may exist at once.
    """

    def __init__(
        self,
        host: NotificationHost,
        store: DurableStore,
        *,
        task_host: PeriodicTaskHost | None = None,
        buffer_manager: BufferManager | None = None,
        clock: Callable[[], datetime] = local_now,
        rng: random.Random | None = None,
        on_health: HealthCallback | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._host = host
        self._store = store
        self._clock = clock
        self._logger = logger or LOGGER
        self._task_host = task_host or AsyncioPeriodicTask(logger=self._logger)
        self.buffer = buffer_manager or BufferManager(host, store, clock=clock, rng=rng, logger=self._logger)
        self.runner = BackgroundRunner(store, self.buffer, clock=clock, logger=self._logger)
        self._on_health = on_health

    @property
    def enabled(self) -> bool:
        return notifications_enabled(self._store)

    def settings(self) -> NotifierSettings | None:
        return load_settings(self._store, self._logger)

    async def enable(self, settings: NotifierSettings) -> datetime | None:
        self._warn_if_invalid(settings)
        save_settings(self._store, settings)
        set_notifications_enabled(self._store, True)
        self._logger.info(
            "[controller] Enabling reminders (%s, quiet %s)", describe_schedule(settings.schedule), settings.quiet_hours
        )
        try:
            return await self._rebuild(settings)
        finally:
            await self._register_background(settings)

    async def disable(self) -> None:
        self._logger.info("[controller] Disabling reminders")
        set_notifications_enabled(self._store, False)
        await self._task_host.unregister()
        await self._host.cancel_all()
        self.buffer.clear_state()
        await self.publish_health()

    async def reschedule(self, settings: NotifierSettings) -> datetime | None:
        """Persist ``settings`` and rebuild the buffer when reminders are enabled.

        Safe to call on every settings edit. The new settings always take
        effect: the debounce lease is released first, so only background
        top-ups are ever skipped for running inside the interval.
        """
        self._warn_if_invalid(settings)
        save_settings(self._store, settings)
        if not self.enabled:
            self._logger.debug("[controller] Settings saved; reminders disabled")
            return None
        try:
            return await self._rebuild(settings)
        finally:
            await self._register_background(settings)

    async def ensure_running(self) -> None:
        """Re-arm the periodic check and top the buffer up after a restart."""
        if not self.enabled:
            return
        settings = self.settings()
        if settings is None:
            return
        await self._register_background(settings)
        await self.run_background_check()

    async def get_next_fire_instant(self) -> datetime | None:
        pending = await self.buffer.pending_reminders()
        return pending[0].fire_at if pending else None

    async def health(self) -> BufferHealth:
        settings = self.settings()
        pending = await self.buffer.pending_reminders()
        return BufferHealth(
            enabled=self.enabled,
            pending_count=len(pending),
            buffer_target=settings.min_buffer if settings else 0,
            last_replenish=self.buffer.last_replenish,
            last_scheduled=self.buffer.last_scheduled,
            next_fire=pending[0].fire_at if pending else None,
            background_interval_minutes=compute_background_interval(settings) if settings else None,
            background_history=read_history(self._store),
        )

    async def run_background_check(self) -> RunResult:
        result = await self.runner.run()
        self._logger.info("[controller] Background check finished: %s", result)
        await self.publish_health()
        return result

    async def publish_health(self) -> None:
        if not self._on_health:
            return
        try:
            self._on_health(await self.health())
        except Exception:  # pylint: disable=broad-except
            self._logger.exception("[controller] Failed to publish buffer health")

    async def shutdown(self) -> None:
        await self._task_host.unregister()

    async def _rebuild(self, settings: NotifierSettings) -> datetime | None:
        self.buffer.release_lease()
        try:
            last = await self.buffer.schedule_buffer(settings, settings.min_buffer)
        except ReplenishError as exc:
            self._logger.error("[controller] Scheduling failed (%d scheduled): %s", exc.scheduled, exc)
            raise
        finally:
            await self.publish_health()
        return last

    async def _register_background(self, settings: NotifierSettings) -> None:
        await self._task_host.register(compute_background_interval(settings), self.run_background_check)

    def _warn_if_invalid(self, settings: NotifierSettings) -> None:
        if not is_valid_schedule(settings.schedule):
            self._logger.warning(
                "[controller] Schedule %s is below the supported minimum interval; scheduling anyway",
                describe_schedule(settings.schedule),
            )
