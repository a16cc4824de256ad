"""Durable key/value state shared by the foreground and background contexts.

The JSON file store is safe to use from several processes: every operation
runs under an exclusive ``fcntl`` lock on a sibling ``.lock`` file, and writes
go to a temporary file that atomically replaces the live file. ``locked()``
holds the lock across several operations so read-modify-write sequences (such
as the debounce lease) are atomic between processes.

``flock`` blocks the calling thread, including from coroutines. Every locked
section is a few small reads and writes with no ``await`` inside; move the
locking onto ``asyncio.to_thread`` if that stops being true.
"""

from __future__ import annotations

import contextlib
import copy
import fcntl
import json
import logging
import threading
from collections.abc import Callable, Iterator
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Protocol

from mindful.datetime_utils import deserialize_dt, local_now, serialize_dt

LOGGER = logging.getLogger(__name__)

LOCK_FILE_SUFFIX = ".lock"


class DurableStore(Protocol):
    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def remove(self, *keys: str) -> None: ...

    def locked(self) -> contextlib.AbstractContextManager[None]: ...


class MemoryStore:
    """In-process store; state lives only as long as the object."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(initial or {})
        self._lock = threading.RLock()

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return copy.deepcopy(self._data.get(key, default))

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = copy.deepcopy(value)

    def remove(self, *keys: str) -> None:
        with self._lock:
            for key in keys:
                self._data.pop(key, None)

    @contextlib.contextmanager
    def locked(self) -> Iterator[None]:
        with self._lock:
            yield

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return copy.deepcopy(self._data)


class JsonFileStore:
    """Key/value store persisted as a single JSON object on disk."""

    def __init__(self, path: Path, logger: logging.Logger | None = None) -> None:
        self._path = path
        self._lock_path = Path(str(path) + LOCK_FILE_SUFFIX)
        self._logger = logger or LOGGER
        self._thread_lock = threading.RLock()
        self._depth = 0
        self._lock_fd = None

    @property
    def path(self) -> Path:
        return self._path

    @contextlib.contextmanager
    def locked(self) -> Iterator[None]:
        """Hold the cross-process lock; re-entrant within one process."""
        with self._thread_lock:
            if self._depth == 0:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                self._lock_fd = open(self._lock_path, "w")
                fcntl.flock(self._lock_fd.fileno(), fcntl.LOCK_EX)
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
                if self._depth == 0 and self._lock_fd is not None:
                    try:
                        fcntl.flock(self._lock_fd.fileno(), fcntl.LOCK_UN)
                    finally:
                        self._lock_fd.close()
                        self._lock_fd = None

    def get(self, key: str, default: Any = None) -> Any:
        with self.locked():
            return self._read().get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self.locked():
            data = self._read()
            data[key] = value
            self._write(data)

    def remove(self, *keys: str) -> None:
        with self.locked():
            data = self._read()
            changed = False
            for key in keys:
                if key in data:
                    data.pop(key)
                    changed = True
            if changed:
                self._write(data)

    def snapshot(self) -> dict[str, Any]:
        with self.locked():
            return self._read()

    def _read(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            self._logger.warning("Failed to read state file %s: %s", self._path, exc)
            return {}
        if not isinstance(data, dict):
            self._logger.warning("Ignoring non-object state file %s", self._path)
            return {}
        return data

    def _write(self, data: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")
        tmp_path.replace(self._path)


def read_instant(store: DurableStore, key: str) -> datetime | None:
    return deserialize_dt(store.get(key))


def write_instant(store: DurableStore, key: str, value: datetime) -> None:
    store.set(key, serialize_dt(value))


class DebounceLease:
    """Durable timestamp lease guarding against concurrent scheduling.

    ``try_acquire`` succeeds when no attempt was recorded within
    ``min_interval``; success records the current time. A caller that is
    refused must skip its run entirely.
    """

    def __init__(
        self,
        store: DurableStore,
        *,
        clock: Callable[[], datetime] = local_now,
        logger: logging.Logger | None = None,
    ) -> None:
        self._store = store
        self._clock = clock
        self._logger = logger or LOGGER

    def try_acquire(self, key: str, min_interval: timedelta) -> bool:
        with self._store.locked():
            now = self._clock()
            last_attempt = read_instant(self._store, key)
            if last_attempt is not None:
                elapsed = now - last_attempt
                # A timestamp from the future (clock moved back) does not block forever.
                if timedelta(0) <= elapsed < min_interval:
                    self._logger.info(
                        "[lease] Debounced: last attempt %.1fs ago (minimum interval %.1fs)",
                        elapsed.total_seconds(),
                        min_interval.total_seconds(),
                    )
                    return False
            write_instant(self._store, key, now)
            return True

    def release(self, key: str) -> None:
        self._store.remove(key)
