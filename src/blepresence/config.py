"""Tracker configuration for blepresence."""

from __future__ import annotations

import dataclasses
import os
from pathlib import Path
from typing import Any

from blepresence._constants import (
    ACTIVE_WINDOW_MS,
    DEFAULT_MQTT_TOPIC,
    DEFAULT_TAG_PREFIX,
    FRESHNESS_MS,
    REAP_INTERVAL_SECONDS,
    RETENTION_MS,
)
from blepresence.exceptions import PresenceConfigError

_ENV_PREFIX = "BLE_PRESENCE_"


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_number(env_key: str, value: str, cast: type[int] | type[float]) -> int | float:
    try:
        return cast(value)
    except ValueError as exc:
        raise PresenceConfigError(f"{env_key} must be numeric, got {value!r}") from exc


@dataclasses.dataclass(frozen=True)
class MqttSettings:
    """Broker connection used by the MQTT report listener."""

    enabled: bool = False
    host: str = "localhost"
    port: int = 1883
    username: str | None = None
    password: str | None = None
    topic: str = DEFAULT_MQTT_TOPIC
    keepalive: int = 60
    tls: bool = False


@dataclasses.dataclass(frozen=True)
class TrackerConfig:
    """Tracker configuration.

    Parameters
    ----------
    data_file : Path
        Location of the persisted registry document.
    freshness_ms : int
        Maximum detection age for it to be usable for display.
    active_window_ms : int
        Maximum detection/receiver age for "currently active" counts.
        Independent of ``freshness_ms``.
    retention_ms : int
        Age after which the reaper discards receivers and detections.
    reap_interval : float
        Seconds between reaper sweeps.
    api_token : str or None
        Bearer token required by the HTTP reset operation. When unset,
        reset is refused.
    http_host : str
        Bind address of the HTTP query API.
    http_port : int
        Port of the HTTP query API.
    tag_prefix : str
        Beacon name prefix listed by the tagged-beacons query.
    mqtt : MqttSettings
        MQTT report listener settings.
    """

    data_file: Path = Path("data/ble_data.json")
    freshness_ms: int = FRESHNESS_MS
    active_window_ms: int = ACTIVE_WINDOW_MS
    retention_ms: int = RETENTION_MS
    reap_interval: float = REAP_INTERVAL_SECONDS
    api_token: str | None = None
    http_host: str = "0.0.0.0"
    http_port: int = 8080
    tag_prefix: str = DEFAULT_TAG_PREFIX
    mqtt: MqttSettings = dataclasses.field(default_factory=MqttSettings)

    def __post_init__(self) -> None:
        for name in ("freshness_ms", "active_window_ms", "retention_ms"):
            if getattr(self, name) < 0:
                raise PresenceConfigError(f"{name} must be non-negative")
        if self.reap_interval <= 0:
            raise PresenceConfigError("reap_interval must be positive")

    @classmethod
    def from_env(cls, **overrides: Any) -> TrackerConfig:
        """Create configuration from ``BLE_PRESENCE_*`` environment variables.

        Explicit keyword arguments override environment values.

        Raises
        ------
        PresenceConfigError
            If a numeric variable cannot be parsed.
        """
        env = os.environ

        mqtt_kwargs: dict[str, Any] = {}
        _ENV_MQTT_MAP: dict[str, tuple[str, type[Any]]] = {
            "MQTT_HOST": ("host", str),
            "MQTT_PORT": ("port", int),
            "MQTT_USERNAME": ("username", str),
            "MQTT_PASSWORD": ("password", str),
            "MQTT_TOPIC": ("topic", str),
            "MQTT_KEEPALIVE": ("keepalive", int),
        }
        for suffix, (field_name, cast) in _ENV_MQTT_MAP.items():
            env_key = _ENV_PREFIX + suffix
            val = env.get(env_key)
            if val is None:
                continue
            mqtt_kwargs[field_name] = val if cast is str else _env_number(env_key, val, cast)
        mqtt_kwargs["enabled"] = _env_bool(env.get(_ENV_PREFIX + "MQTT_ENABLED"), False)
        mqtt_kwargs["tls"] = _env_bool(env.get(_ENV_PREFIX + "MQTT_TLS"), False)

        mqtt_overrides = overrides.pop("mqtt", None)
        if isinstance(mqtt_overrides, dict):
            mqtt_kwargs.update(mqtt_overrides)
        elif isinstance(mqtt_overrides, MqttSettings):
            mqtt_kwargs = dataclasses.asdict(mqtt_overrides)

        config_kwargs: dict[str, Any] = {"mqtt": MqttSettings(**mqtt_kwargs)}

        data_file = env.get(_ENV_PREFIX + "DATA_FILE")
        if data_file:
            config_kwargs["data_file"] = Path(data_file)

        _ENV_CONFIG_MAP: dict[str, tuple[str, type[Any]]] = {
            "FRESHNESS_MS": ("freshness_ms", int),
            "ACTIVE_WINDOW_MS": ("active_window_ms", int),
            "RETENTION_MS": ("retention_ms", int),
            "REAP_INTERVAL": ("reap_interval", float),
            "HTTP_PORT": ("http_port", int),
            "API_TOKEN": ("api_token", str),
            "HTTP_HOST": ("http_host", str),
            "TAG_PREFIX": ("tag_prefix", str),
        }
        for suffix, (field_name, cast) in _ENV_CONFIG_MAP.items():
            env_key = _ENV_PREFIX + suffix
            val = env.get(env_key)
            if val is None or field_name in overrides:
                continue
            config_kwargs[field_name] = val if cast is str else _env_number(env_key, val, cast)

        if "data_file" in overrides:
            overrides["data_file"] = Path(overrides["data_file"])
        config_kwargs.update(overrides)

        return cls(**config_kwargs)
