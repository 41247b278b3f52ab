"""Incoming receiver report models.

Receivers publish one report per scan batch. Two payload shapes are accepted:
a flat report, and the device event envelope where the batch lives under
``event_data``::

    {"device_id": "esp32-hall", "device_name": "Hall",
     "event_data": {"data_type": "ble_beacon_batch", "batch": 1, "total_batches": 2,
                    "beacons": [{"mac": "AA:BB:...", "name": "ESP-C3-1",
                                 "rssi": {"average": -61.5, "current": -64}, "online": true}]}}
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from blepresence.exceptions import ReportError
from blepresence.ingestion.normalize import resolve_rssi, safe_int, safe_str


class ObservedBeacon(BaseModel):
    """One beacon entry inside a receiver report.

    ``rssi`` is already collapsed to a scalar; entries without an
    ``address`` are kept here and skipped by the merger.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    address: str | None = Field(default=None, validation_alias=AliasChoices("address", "mac"))
    name: str | None = None
    rssi: int | None = Field(default=None, validation_alias=AliasChoices("rssi", "signal_strength", "signalStrength"))
    online: bool = Field(default=False, validation_alias=AliasChoices("online", "liveness"))

    @field_validator("address", "name", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str | None:
        return safe_str(value)

    @field_validator("rssi", mode="before")
    @classmethod
    def _coerce_rssi(cls, value: Any) -> int | None:
        return resolve_rssi(value)

    @field_validator("online", mode="before")
    @classmethod
    def _coerce_online(cls, value: Any) -> bool:
        return bool(value)


class ReceiverReport(BaseModel):
    """A single report (or report batch) from one receiver."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    receiver_id: str | None = Field(default=None, validation_alias=AliasChoices("receiver_id", "device_id", "receiver"))
    receiver_name: str | None = Field(default=None, validation_alias=AliasChoices("receiver_name", "device_name"))
    receiver_type: str | None = Field(default=None, validation_alias=AliasChoices("receiver_type", "device_type"))
    batch: int = 1
    total_batches: int = 1
    beacons: tuple[ObservedBeacon, ...] = Field(default=(), validation_alias=AliasChoices("beacons", "objects"))

    @model_validator(mode="before")
    @classmethod
    def _unwrap_event_data(cls, values: Any) -> Any:
        """Lift ``event_data`` batch fields to the top level."""
        if not isinstance(values, dict):
            return values
        merged = dict(values)
        event_data = values.get("event_data")
        if isinstance(event_data, Mapping):
            for key in ("beacons", "batch", "total_batches"):
                if key in event_data and key not in values:
                    merged[key] = event_data[key]
        merged.pop("event_data", None)
        return merged

    @field_validator("receiver_id", "receiver_name", "receiver_type", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str | None:
        return safe_str(value)

    @field_validator("batch", "total_batches", mode="before")
    @classmethod
    def _coerce_batch(cls, value: Any) -> int:
        return safe_int(value) or 1

    @field_validator("beacons", mode="before")
    @classmethod
    def _coerce_beacons(cls, value: Any) -> Any:
        if value is None:
            return ()
        if not isinstance(value, (list, tuple)):
            return ()
        # Non-object entries have no address; keep them so they are counted as skipped.
        return [item if isinstance(item, Mapping) else {} for item in value]

    @classmethod
    def from_payload(cls, payload: Any, *, receiver_id: str | None = None, source: str = "") -> ReceiverReport:
        """Build a report from a decoded JSON payload.

        ``receiver_id`` is used when the payload does not name its receiver
        (for example when it is implied by the MQTT topic).

        Raises
        ------
        ReportError
            If the payload is not a JSON object or cannot be validated.
        """
        if not isinstance(payload, Mapping):
            raise ReportError(f"report payload must be an object, got {type(payload).__name__}", source=source)
        try:
            report = cls.model_validate(dict(payload))
        except ValidationError as exc:
            raise ReportError(f"invalid report payload: {exc.error_count()} error(s)", source=source) from exc
        fallback_id = safe_str(receiver_id)
        if report.receiver_id is None and fallback_id:
            report = report.model_copy(update={"receiver_id": fallback_id})
        return report
