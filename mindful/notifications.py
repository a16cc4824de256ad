"""
Notification registration primitive

NotificationHost is the boundary the scheduling core talks to: register a
notification to fire at an absolute instant, cancel one or all, and list what
is still pending.

LocalNotificationHost is an asyncio implementation for Linux hosts. The
pending set lives in a JSON file shared by every process on the machine (the
daemon and any one-shot ``--check`` run). Each mutation takes the file's
``fcntl`` lock and re-reads the file first, so no process overwrites another's
registrations. Once started, a host backs every pending notification with a
sleeping task, polls the file for entries other processes added or removed,
and hands fired notifications to an async callback (e.g. MQTT delivery).
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol
from uuid import uuid4

from mindful.datetime_utils import as_aware, deserialize_dt, local_now, serialize_dt
from mindful.durable_store import JsonFileStore

LOGGER = logging.getLogger(__name__)

PENDING_KEY = "notifications"
DEFAULT_REFRESH_SECONDS = 15.0

FireCallback = Callable[["PendingNotification"], Awaitable[None]]


class NotificationError(Exception):
    """The host refused or failed to register/cancel a notification."""


@dataclass(frozen=True, slots=True)
class PendingNotification:
    notification_id: str
    fire_at: datetime
    title: str
    body: str

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "id": self.notification_id,
            "fire_at": serialize_dt(self.fire_at),
            "title": self.title,
            "body": self.body,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> PendingNotification:
        fire_at = deserialize_dt(payload.get("fire_at"))
        if fire_at is None:
            raise ValueError(f"Invalid fire_at: {payload.get('fire_at')!r}")
        return cls(
            notification_id=str(payload["id"]),
            fire_at=fire_at,
            title=str(payload.get("title") or ""),
            body=str(payload.get("body") or ""),
        )


class NotificationHost(Protocol):
    async def register(self, title: str, body: str, fire_at: datetime) -> str: ...

    async def cancel(self, notification_id: str) -> None: ...

    async def cancel_all(self) -> None: ...

    async def list_pending(self) -> list[PendingNotification]: ...


class LocalNotificationHost:
    """Fire notifications from asyncio tasks over a pending set shared on disk."""

    def __init__(
        self,
        *,
        storage_path: Path,
        on_fire: FireCallback | None = None,
        clock: Callable[[], datetime] = local_now,
        refresh_seconds: float = DEFAULT_REFRESH_SECONDS,
        logger: logging.Logger | None = None,
    ) -> None:
        self._on_fire = on_fire
        self._clock = clock
        self._refresh_seconds = refresh_seconds
        self._logger = logger or LOGGER
        self._store = JsonFileStore(storage_path, logger=self._logger)
        self._pending: dict[str, PendingNotification] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._watcher: asyncio.Task | None = None
        self._lock = asyncio.Lock()
        self._started = False
        self.load()

    async def start(self) -> None:
        """Drop notifications missed while nothing was running, then arm the rest."""
        if self._started:
            return
        self._started = True
        async with self._lock:
            with self._store.locked():
                self.load()
                now = self._clock()
                missed = [item for item in self._pending.values() if item.fire_at <= now]
                for notification in missed:
                    self._logger.info(
                        "Dropping notification %s missed at %s", notification.notification_id, notification.fire_at
                    )
                    del self._pending[notification.notification_id]
                if missed:
                    self._persist()
                self._sync_tasks()
        self._watcher = asyncio.create_task(self._watch())

    async def stop(self) -> None:
        self._started = False
        tasks = list(self._tasks.values())
        self._tasks.clear()
        if self._watcher:
            tasks.append(self._watcher)
            self._watcher = None
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def register(self, title: str, body: str, fire_at: datetime) -> str:
        fire_at = as_aware(fire_at)
        if fire_at <= self._clock():
            raise NotificationError(f"Fire instant is not in the future: {fire_at.isoformat()}")
        notification = PendingNotification(uuid4().hex, fire_at, title, body)
        async with self._lock:
            with self._store.locked():
                self.load()
                self._pending[notification.notification_id] = notification
                self._persist()
                self._sync_tasks()
        return notification.notification_id

    async def cancel(self, notification_id: str) -> None:
        async with self._lock:
            with self._store.locked():
                self.load()
                if self._pending.pop(notification_id, None) is not None:
                    self._persist()
                self._sync_tasks()

    async def cancel_all(self) -> None:
        async with self._lock:
            with self._store.locked():
                self.load()
                count = len(self._pending)
                self._pending.clear()
                self._persist()
                self._sync_tasks()
        self._logger.debug("Cancelled %d pending notification(s)", count)

    async def list_pending(self) -> list[PendingNotification]:
        """Notifications still due, sorted by fire instant."""
        await self.refresh()
        now = self._clock()
        return sorted(
            (item for item in self._pending.values() if item.fire_at > now),
            key=lambda item: item.fire_at,
        )

    async def refresh(self) -> None:
        """Pick up registrations and cancellations made by other processes."""
        async with self._lock:
            with self._store.locked():
                self.load()
                self._sync_tasks()

    def load(self) -> None:
        """Replace the in-memory pending set with the file's contents."""
        self._pending.clear()
        items = self._store.get(PENDING_KEY, [])
        if not isinstance(items, list):
            self._logger.warning("Ignoring malformed pending set in %s", self._store.path)
            return
        for item in items:
            try:
                notification = PendingNotification.from_dict(item)
            except (AttributeError, KeyError, ValueError):
                self._logger.debug("Skipping invalid pending notification: %s", item, exc_info=True)
                continue
            self._pending[notification.notification_id] = notification

    def _persist(self) -> None:
        self._store.set(PENDING_KEY, [item.to_json_dict() for item in self._pending.values()])

    def _sync_tasks(self) -> None:
        if not self._started:
            return
        for notification_id in list(self._tasks):
            if notification_id not in self._pending:
                self._tasks.pop(notification_id).cancel()
        for notification in self._pending.values():
            if notification.notification_id not in self._tasks:
                self._tasks[notification.notification_id] = asyncio.create_task(self._wait_and_fire(notification))

    async def _watch(self) -> None:
        while True:
            await asyncio.sleep(self._refresh_seconds)
            try:
                await self.refresh()
            except OSError as exc:
                self._logger.warning("Failed to refresh pending notifications: %s", exc)

    async def _wait_and_fire(self, notification: PendingNotification) -> None:
        notification_id = notification.notification_id
        delay = (notification.fire_at - self._clock()).total_seconds()
        if delay > 0:
            try:
                await asyncio.sleep(delay)
            except asyncio.CancelledError:
                return
        async with self._lock:
            with self._store.locked():
                self.load()
                self._tasks.pop(notification_id, None)
                if self._pending.pop(notification_id, None) is None:
                    return
                self._persist()
        self._logger.info("Notification fired: %s", notification.body)
        if self._on_fire:
            try:
                await self._on_fire(notification)
            except Exception:  # pylint: disable=broad-except
                self._logger.exception("Notification delivery callback failed")
