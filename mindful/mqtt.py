"""MQTT transport for delivered reminders, buffer-health telemetry and remote commands.

Topics hang off ``MqttConfig.topic_base``:

- ``<base>/notification``: one JSON message per fired reminder (QoS 1)
- ``<base>/buffer/state``: retained JSON snapshot of buffer health
- ``<base>/command``: ``enable``, ``disable``, ``reschedule`` or ``check``,
  either as a bare word or as ``{"command": ..., "settings": {...}}``
"""

from __future__ import annotations

import json
import logging
import ssl
import threading
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import paho.mqtt.client as mqtt

from .config import MqttConfig

if TYPE_CHECKING:
    from .controller import BufferHealth
    from .notifications import PendingNotification

COMMANDS = ("enable", "disable", "reschedule", "check")

CommandHandler = Callable[[dict[str, Any]], None]


def parse_command(payload: str) -> dict[str, Any] | None:
    """Normalise a command payload to a dict with a known ``command``; ``None`` if unusable."""
    text = payload.strip()
    if text.lower() in COMMANDS:
        return {"command": text.lower()}
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None
    command = str(data.get("command") or "").strip().lower()
    if command not in COMMANDS:
        return None
    return {**data, "command": command}


class NotifierMqtt:
    def __init__(self, config: MqttConfig, logger: logging.Logger | None = None) -> None:
        self.config = config
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._lock = threading.Lock()

    def connect(self) -> None:
        if not self.config.host:
            self._logger.debug("[mqtt] MQTT host not configured; reminders will not leave this host")
            return
        with self._lock:
            if self._client is not None:
                return
            client = mqtt.Client(
                callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
                client_id=f"mindful-notifier-{self.config.topic_base}",
                clean_session=True,
            )
            if self.config.username:
                client.username_pw_set(self.config.username, self.config.password or "")
            if self.config.tls_enabled:
                tls_kwargs: dict[str, object] = {"tls_version": ssl.PROTOCOL_TLS_CLIENT}
                if self.config.ca_cert:
                    tls_kwargs["ca_certs"] = self.config.ca_cert
                if self.config.cert:
                    tls_kwargs["certfile"] = self.config.cert
                if self.config.key:
                    tls_kwargs["keyfile"] = self.config.key
                client.tls_set(**tls_kwargs)
            try:
                client.connect(self.config.host, self.config.port, keepalive=30)
            except (OSError, ValueError) as exc:
                self._logger.warning("[mqtt] Failed to connect to %s:%s: %s", self.config.host, self.config.port, exc)
                return
            client.loop_start()
            self._client = client
            self._logger.info("[mqtt] Connected to %s:%s", self.config.host, self.config.port)

    def disconnect(self) -> None:
        with self._lock:
            client = self._client
            self._client = None
        if client:
            client.loop_stop()
            client.disconnect()

    def is_connected(self) -> bool:
        client = self._client
        return bool(client and client.is_connected())

    def publish_notification(self, notification: PendingNotification) -> None:
        """Hand a fired reminder to whatever displays it."""
        payload = notification.to_json_dict()
        self._publish(self.config.notification_topic, payload, qos=1)

    def publish_health(self, health: BufferHealth) -> None:
        self._publish(self.config.buffer_state_topic, health.to_dict(), retain=True)

    def subscribe_commands(self, on_command: CommandHandler) -> bool:
        """Route valid commands to ``on_command``; returns False when not connected."""
        client = self._client
        if not client:
            return False
        topic = self.config.command_topic

        def _callback(_client, _userdata, message):  # type: ignore[no-untyped-def]
            text = message.payload.decode("utf-8", errors="ignore")
            command = parse_command(text)
            if command is None:
                self._logger.warning("[mqtt] Ignoring unrecognised command: %s", text)
                return
            try:
                on_command(command)
            except Exception as exc:  # pylint: disable=broad-except
                self._logger.error("[mqtt] Command handler failed for '%s': %s", command["command"], exc, exc_info=True)

        result, _mid = client.subscribe(topic, qos=1)
        if result != mqtt.MQTT_ERR_SUCCESS:
            self._logger.warning("[mqtt] Failed to subscribe to topic: %s (rc=%s)", topic, result)
        client.message_callback_add(topic, _callback)
        return True

    def _publish(self, topic: str, payload: dict[str, Any], *, retain: bool = False, qos: int = 0) -> None:
        client = self._client
        if not client:
            self._logger.debug("[mqtt] Not connected; dropping message for %s", topic)
            return
        try:
            client.publish(topic, payload=json.dumps(payload), qos=qos, retain=retain)
        except (OSError, ValueError) as exc:
            self._logger.warning("[mqtt] Failed to publish to %s: %s", topic, exc)
