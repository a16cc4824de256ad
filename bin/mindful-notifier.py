#!/usr/bin/env python3
"""Mindful notifier daemon."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
from collections.abc import Awaitable
from typing import Any

from mindful.buffer import ReplenishError
from mindful.config import NotifierConfig, NotifierSettings, SettingsError, load_settings
from mindful.controller import SchedulingContext
from mindful.durable_store import JsonFileStore
from mindful.mqtt import NotifierMqtt
from mindful.notifications import LocalNotificationHost, PendingNotification

LOGGER = logging.getLogger("mindful-notifier")


class MindfulNotifier:
    def __init__(self, config: NotifierConfig) -> None:
        self.config = config
        self.store = JsonFileStore(config.store_path)
        self.mqtt = NotifierMqtt(config.mqtt, logger=logging.getLogger("mindful.mqtt"))
        self.host = LocalNotificationHost(storage_path=config.pending_path, on_fire=self._deliver)
        self.context = SchedulingContext(self.host, self.store, on_health=self.mqtt.publish_health)
        self._loop: asyncio.AbstractEventLoop | None = None

    async def run(self) -> None:
        self._loop = asyncio.get_running_loop()
        self.mqtt.connect()
        self.mqtt.subscribe_commands(self._handle_command)
        await self.host.start()
        if load_settings(self.store) is None:
            LOGGER.info("No stored settings; enabling with defaults from the environment")
            await self._safe(self.context.enable(self.config.defaults))
        else:
            await self.context.ensure_running()

    async def check_once(self) -> bool:
        self.mqtt.connect()
        try:
            return await self.context.run_background_check() == "success"
        finally:
            self.mqtt.disconnect()

    async def shutdown(self) -> None:
        await self.context.shutdown()
        await self.host.stop()
        self.mqtt.disconnect()

    async def _deliver(self, notification: PendingNotification) -> None:
        self.mqtt.publish_notification(notification)

    def _handle_command(self, data: dict[str, Any]) -> None:
        if self._loop:
            asyncio.run_coroutine_threadsafe(self._process_command(data), self._loop)

    async def _process_command(self, data: dict[str, Any]) -> None:
        command = data["command"]
        LOGGER.info("Received %s command", command)
        if command == "disable":
            await self.context.disable()
            return
        if command == "check":
            await self.context.run_background_check()
            return
        settings = self._command_settings(data)
        if settings is None:
            return
        if command == "enable":
            await self._safe(self.context.enable(settings))
        else:
            await self._safe(self.context.reschedule(settings))

    def _command_settings(self, data: dict[str, Any]) -> NotifierSettings | None:
        raw = data.get("settings")
        if raw is None:
            return load_settings(self.store) or self.config.defaults
        try:
            return NotifierSettings.from_dict(raw)
        except SettingsError as exc:
            LOGGER.error("Rejected settings in command: %s", exc)
            return None

    @staticmethod
    async def _safe(operation: Awaitable[Any]) -> None:
        try:
            await operation
        except ReplenishError as exc:
            LOGGER.error("Scheduling failed; %d reminder(s) registered: %s", exc.scheduled, exc)


async def main() -> int:
    parser = argparse.ArgumentParser(description="Quiet-hours-aware mindfulness reminder daemon")
    parser.add_argument("--log-level", default="INFO")
    parser.add_argument("--check", action="store_true", help="Run one background replenishment check and exit")
    args = parser.parse_args()
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO))

    config = NotifierConfig.from_env()
    notifier = MindfulNotifier(config)

    if args.check:
        return 0 if await notifier.check_once() else 1

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def _handle_signal(signum: int) -> None:
        LOGGER.info("Received signal %s, shutting down", signum)
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _handle_signal, sig)

    run_task = asyncio.create_task(notifier.run())
    await stop_event.wait()
    await notifier.shutdown()
    run_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await run_task
    return 0


if __name__ == "__main__":
    try:
        raise SystemExit(asyncio.run(main()))
    except KeyboardInterrupt:
        pass
