"""Internal MQTT runtime for receiving receiver reports."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, cast

import paho.mqtt.client as mqtt

from blepresence.config import MqttSettings
from blepresence.exceptions import ReportError


@dataclass(frozen=True)
class MqttEvent:
    """Decoded MQTT report message."""

    topic: str
    receiver_id: str | None
    payload: dict[str, Any]


def receiver_from_topic(topic: str, pattern: str) -> str | None:
    """Return the topic level matched by the single-level wildcard in *pattern*.

    ``receiver_from_topic("ble/hall/report", "ble/+/report") == "hall"``.
    Returns ``None`` if the pattern has no ``+`` or the topic does not match.
    """
    topic_levels = topic.split("/")
    pattern_levels = pattern.split("/")
    if "+" not in pattern_levels:
        return None
    if len(topic_levels) != len(pattern_levels) and pattern_levels[-1] != "#":
        return None

    captured: str | None = None
    for index, level in enumerate(pattern_levels):
        if level == "#":
            break
        if index >= len(topic_levels):
            return None
        if level == "+":
            if captured is None:
                captured = topic_levels[index]
            continue
        if level != topic_levels[index]:
            return None
    return captured or None


def decode_mqtt_payload(payload: bytes, *, topic: str = "") -> dict[str, Any]:
    """Parse an MQTT payload into a JSON object.

    Raises
    ------
    ReportError
        If the payload is not UTF-8 JSON or not an object.
    """
    try:
        parsed = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ReportError(f"MQTT payload is not JSON: {exc}", source=topic) from exc
    if not isinstance(parsed, dict):
        raise ReportError("MQTT payload decoded to non-object JSON", source=topic)
    return parsed


class ReportMqttRuntime:
    """Threaded paho-mqtt runtime that emits decoded reports onto an asyncio loop."""

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        settings: MqttSettings,
        on_event: Callable[[MqttEvent], None],
        logger: logging.Logger | None = None,
    ) -> None:
        self._loop = loop
        self._settings = settings
        self._on_event = on_event
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._running = False

    @property
    def is_running(self) -> bool:
        """Whether the MQTT runtime is actively running."""
        return self._running

    def handle_message(self, topic: str, payload: bytes) -> None:
        """Decode one message and hand it to the event loop.

        Called from the paho network thread.
        """
        try:
            parsed = decode_mqtt_payload(payload, topic=topic)
        except ReportError as exc:
            self._logger.warning("Dropped MQTT message on %s: %s", topic, exc)
            return
        event = MqttEvent(
            topic=topic,
            receiver_id=receiver_from_topic(topic, self._settings.topic),
            payload=parsed,
        )
        self._loop.call_soon_threadsafe(self._on_event, event)

    def start(self) -> None:
        """Connect and subscribe to the configured report topic."""
        self.stop()
        settings = self._settings
        self._logger.info(
            "MQTT report listener starting host=%s port=%s topic=%s",
            settings.host,
            settings.port,
            settings.topic,
        )

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            protocol=mqtt.MQTTv5,
        )
        client.enable_logger(self._logger)
        if settings.username:
            client.username_pw_set(settings.username, settings.password)
        if settings.tls:
            client.tls_set()

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.value != 0:
                self._logger.warning("MQTT connect failed: %s", reason_code)
                return
            self._logger.debug("MQTT connected, subscribing topic=%s", settings.topic)
            c.subscribe(settings.topic, qos=0)

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            try:
                self.handle_message(msg.topic, msg.payload)
            except Exception:
                self._logger.warning("MQTT message handling failed topic=%s", msg.topic, exc_info=True)

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if self._running:
                self._logger.warning("MQTT disconnected: %s", reason_code)

        client.on_connect = on_connect
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        client.connect(settings.host, settings.port, keepalive=settings.keepalive)
        client.loop_start()

        self._client = client
        self._running = True
        self._logger.debug("MQTT network loop started")

    def stop(self) -> None:
        """Stop and disconnect current MQTT client if running."""
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False

        if client is None:
            return
        try:
            if was_running:
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT network loop stopped")
