"""
Buffer replenishment

The host cannot wake the notifier, so a rolling buffer of notifications is
pre-registered ahead of time. The buffer manager tops it up from the last
scheduled instant (additive) or rebuilds it from scratch, and keeps a single
"tripwire" notification just after the final reminder that asks the user to
reopen the app if replenishment ever stops.

Both the foreground and background contexts call into this module; a durable
debounce lease keeps them from scheduling over each other.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable
from datetime import datetime, timedelta

from mindful.config import NotifierSettings
from mindful.datetime_utils import as_aware, local_now
from mindful.durable_store import DebounceLease, DurableStore, read_instant, write_instant
from mindful.notifications import NotificationError, NotificationHost, PendingNotification
from mindful.reminders import ReminderPicker, make_picker
from mindful.scheduler import FireTimeScheduler

LOGGER = logging.getLogger(__name__)

LAST_SCHEDULED_KEY = "last_scheduled"
LAST_SCHEDULE_ATTEMPT_KEY = "last_schedule_attempt"
WARNING_NOTIFICATION_ID_KEY = "warning_notification_id"
LAST_REPLENISH_KEY = "last_replenish"

DEFAULT_LEASE_INTERVAL = timedelta(seconds=5)
TRIPWIRE_DELAY = timedelta(seconds=20)

TRIPWIRE_BODY = "Please tap to open the app to continue scheduling mindfulness reminders"
QUIET_END_TITLE = "Quiet hours have ended"

PickerFactory = Callable[[NotifierSettings], ReminderPicker]


class ReplenishError(Exception):
    """Registering the buffer failed part-way; ``scheduled`` entries were kept."""

    def __init__(self, message: str, scheduled: int) -> None:
        super().__init__(message)
        self.scheduled = scheduled


class BufferManager:
    def __init__(
        self,
        host: NotificationHost,
        store: DurableStore,
        *,
        clock: Callable[[], datetime] = local_now,
        rng: random.Random | None = None,
        picker_factory: PickerFactory | None = None,
        lease_interval: timedelta = DEFAULT_LEASE_INTERVAL,
        logger: logging.Logger | None = None,
    ) -> None:
        self._host = host
        self._store = store
        self._clock = clock
        self._rng = rng or random.Random()
        self._picker_factory = picker_factory or self._default_picker
        self._lease_interval = lease_interval
        self._logger = logger or LOGGER
        self._lease = DebounceLease(store, clock=clock, logger=self._logger)

    def _default_picker(self, settings: NotifierSettings) -> ReminderPicker:
        return make_picker(settings.reminders, settings.favourite_probability, self._rng)

    @property
    def tripwire_id(self) -> str | None:
        return self._store.get(WARNING_NOTIFICATION_ID_KEY)

    @property
    def last_scheduled(self) -> datetime | None:
        return read_instant(self._store, LAST_SCHEDULED_KEY)

    @property
    def last_replenish(self) -> datetime | None:
        return read_instant(self._store, LAST_REPLENISH_KEY)

    async def pending_reminders(self) -> list[PendingNotification]:
        """Pending notifications sorted by fire instant, tripwire excluded."""
        tripwire_id = self.tripwire_id
        pending = await self._host.list_pending()
        return sorted(
            (item for item in pending if item.notification_id != tripwire_id),
            key=lambda item: item.fire_at,
        )

    async def schedule_buffer(
        self,
        settings: NotifierSettings,
        count: int,
        continue_from: datetime | None = None,
    ) -> datetime | None:
        """Register ``count`` reminders and return the last fire instant.

        Without ``continue_from`` every pending notification is cancelled first
        and the chain starts from now. With it, reminders are appended after
        that instant. Returns ``None`` when another caller holds the lease.
        """
        if not self._lease.try_acquire(LAST_SCHEDULE_ATTEMPT_KEY, self._lease_interval):
            return None

        if continue_from is None:
            self._logger.info("[buffer] Full rebuild: scheduling %d reminder(s)", count)
            await self._host.cancel_all()
            self._store.remove(WARNING_NOTIFICATION_ID_KEY)
            reference = self._clock()
        else:
            reference = as_aware(continue_from)
            self._logger.info("[buffer] Scheduling %d reminder(s) after %s", count, reference.isoformat())

        if count <= 0:
            return None

        scheduler = FireTimeScheduler(settings.schedule, settings.quiet_hours, rng=self._rng, clock=self._clock)
        bodies = self._picker_factory(settings)(count) or [""]
        scheduled = 0
        last: datetime | None = None
        try:
            for index in range(count):
                decision = scheduler.next_fire(reference)
                title = settings.title
                if decision.deferred_past_quiet and settings.quiet_hours.notify_on_quiet_end:
                    title = QUIET_END_TITLE
                await self._host.register(title, bodies[index % len(bodies)], decision.instant)
                scheduled += 1
                last = decision.instant
                reference = decision.instant
        except NotificationError as exc:
            self._logger.error("[buffer] Registration failed after %d of %d reminder(s): %s", scheduled, count, exc)
            if last is not None:
                write_instant(self._store, LAST_SCHEDULED_KEY, last)
            raise ReplenishError(f"Scheduled {scheduled} of {count} reminders: {exc}", scheduled) from exc

        write_instant(self._store, LAST_SCHEDULED_KEY, last)
        write_instant(self._store, LAST_REPLENISH_KEY, self._clock())
        self._logger.info("[buffer] Scheduled %d reminder(s); last at %s", scheduled, last.isoformat())
        await self._schedule_tripwire(settings, last)
        return last

    async def ensure_buffer(self, settings: NotifierSettings) -> datetime | None:
        """Top the buffer up to ``min_buffer``; ``None`` when nothing was scheduled."""
        pending = await self.pending_reminders()
        count = len(pending)
        if count >= settings.min_buffer:
            self._logger.debug("[buffer] Healthy: %d pending (target %d)", count, settings.min_buffer)
            return None

        continuation = pending[-1].fire_at if pending else self.last_scheduled
        if continuation is not None and continuation <= self._clock():
            self._logger.warning(
                "[buffer] Continuation %s is not in the future; rebuilding from now", continuation.isoformat()
            )
            continuation = None

        if continuation is None:
            return await self.schedule_buffer(settings, settings.min_buffer)
        return await self.schedule_buffer(settings, settings.min_buffer - count, continuation)

    def release_lease(self) -> None:
        """Let the next ``schedule_buffer`` call through regardless of the debounce interval."""
        self._lease.release(LAST_SCHEDULE_ATTEMPT_KEY)

    def clear_state(self) -> None:
        self._store.remove(LAST_SCHEDULED_KEY, LAST_SCHEDULE_ATTEMPT_KEY, WARNING_NOTIFICATION_ID_KEY)

    async def _schedule_tripwire(self, settings: NotifierSettings, last: datetime) -> None:
        try:
            previous = self.tripwire_id
            if previous:
                await self._host.cancel(previous)
                self._store.remove(WARNING_NOTIFICATION_ID_KEY)
            tripwire_id = await self._host.register(settings.title, TRIPWIRE_BODY, last + TRIPWIRE_DELAY)
        except NotificationError as exc:
            self._logger.error("[buffer] Failed to schedule tripwire notification: %s", exc)
            return
        self._store.set(WARNING_NOTIFICATION_ID_KEY, tripwire_id)
