"""
Background replenishment

BackgroundRunner is the headless entry point: it rebuilds settings from the
durable store (there is no in-memory state to rely on), then asks the buffer
manager to top the buffer up. It never raises; the outcome is reported as
``"success"`` or ``"failed"``.

AsyncioPeriodicTask runs a callback on a fixed interval until unregistered.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, Literal, Protocol

from mindful.buffer import BufferManager
from mindful.config import NotifierSettings, load_settings, notifications_enabled
from mindful.datetime_utils import deserialize_dt, local_now, serialize_dt
from mindful.durable_store import DurableStore
from mindful.scheduler import MIN_INTERVAL_MINUTES, average_interval_minutes
from mindful.utils import clamp

LOGGER = logging.getLogger(__name__)

BACKGROUND_HISTORY_KEY = "background_history"
MAX_HISTORY = 10

MAX_BACKGROUND_INTERVAL_MINUTES = 480

RunResult = Literal["success", "failed"]
TaskCallback = Callable[[], Awaitable[Any]]


def compute_background_interval(settings: NotifierSettings) -> int:
    """Minutes between background checks: half the buffer's lifetime, clamped."""
    lifetime = (settings.min_buffer / 2) * average_interval_minutes(settings.schedule)
    return round(clamp(lifetime, MIN_INTERVAL_MINUTES, MAX_BACKGROUND_INTERVAL_MINUTES))


def read_history(store: DurableStore) -> list[datetime]:
    raw = store.get(BACKGROUND_HISTORY_KEY) or []
    history = [deserialize_dt(item) for item in raw] if isinstance(raw, list) else []
    return [item for item in history if item is not None]


class BackgroundRunner:
    def __init__(
        self,
        store: DurableStore,
        buffer_manager: BufferManager,
        *,
        clock: Callable[[], datetime] = local_now,
        logger: logging.Logger | None = None,
    ) -> None:
        self._store = store
        self._buffer = buffer_manager
        self._clock = clock
        self._logger = logger or LOGGER

    async def run(self) -> RunResult:
        try:
            self._record_invocation()
            settings = load_settings(self._store, self._logger)
            if settings is None:
                self._logger.error("[background] No usable settings; skipping replenishment")
                return "failed"
            if not notifications_enabled(self._store):
                self._logger.debug("[background] Notifications disabled; nothing to do")
                return "success"
            last = await self._buffer.ensure_buffer(settings)
        except Exception:  # pylint: disable=broad-except
            self._logger.exception("[background] Replenishment failed")
            return "failed"
        if last is not None:
            self._logger.info("[background] Buffer replenished through %s", last.isoformat())
        return "success"

    def _record_invocation(self) -> None:
        with self._store.locked():
            raw = self._store.get(BACKGROUND_HISTORY_KEY) or []
            history = list(raw) if isinstance(raw, list) else []
            history.append(serialize_dt(self._clock()))
            self._store.set(BACKGROUND_HISTORY_KEY, history[-MAX_HISTORY:])


class PeriodicTaskHost(Protocol):
    async def register(self, interval_minutes: int, callback: TaskCallback) -> None: ...

    async def unregister(self) -> None: ...

    def is_registered(self) -> bool: ...


class AsyncioPeriodicTask:
    """Run ``callback`` every ``interval_minutes`` on the running event loop."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or LOGGER
        self._runner: asyncio.Task | None = None
        self._stop_event = asyncio.Event()
        self.interval_minutes: int | None = None

    def is_registered(self) -> bool:
        return self._runner is not None and not self._runner.done()

    async def register(self, interval_minutes: int, callback: TaskCallback) -> None:
        await self.unregister()
        self.interval_minutes = max(1, interval_minutes)
        self._stop_event = asyncio.Event()
        self._runner = asyncio.create_task(self._run_loop(self.interval_minutes * 60, callback, self._stop_event))
        self._logger.info("[background] Periodic check registered every %d minute(s)", self.interval_minutes)

    async def unregister(self) -> None:
        self._stop_event.set()
        runner = self._runner
        self._runner = None
        self.interval_minutes = None
        if runner:
            runner.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await runner

    async def _run_loop(self, interval_seconds: float, callback: TaskCallback, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
            except TimeoutError:
                pass
            else:
                return
            try:
                await callback()
            except Exception:  # pylint: disable=broad-except
                self._logger.exception("[background] Periodic callback failed; continuing")
