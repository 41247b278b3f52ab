"""Registry record models and the persisted document shape.

The persisted document looks like::

    {
      "devices": {"<receiver_id>": {"name", "type", "update", "batch", "total_batches"}},
      "beacons": {"<address>": {"name", "first_seen",
                  "detections": {"<receiver_id>": {"receiver_name", "rssi", "online", "update_time"}}}}
    }

All timestamps are epoch milliseconds.
"""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from blepresence._constants import DEFAULT_RECEIVER_TYPE
from blepresence.ingestion.normalize import resolve_rssi, safe_int, safe_str

_RECORD_CONFIG = ConfigDict(extra="ignore", populate_by_name=True)


class ReceiverRecord(BaseModel):
    """A fixed observation point (ESP32 scanner)."""

    model_config = _RECORD_CONFIG

    name: str | None = None
    type: str = DEFAULT_RECEIVER_TYPE
    update: int = 0
    batch: int = 1
    total_batches: int = 1

    @field_validator("update", mode="before")
    @classmethod
    def _coerce_update(cls, value: Any) -> int:
        return safe_int(value) or 0

    @field_validator("batch", "total_batches", mode="before")
    @classmethod
    def _coerce_batch(cls, value: Any) -> int:
        return safe_int(value) or 1

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_type(cls, value: Any) -> str:
        return safe_str(value) or DEFAULT_RECEIVER_TYPE

    @field_validator("name", mode="before")
    @classmethod
    def _coerce_name(cls, value: Any) -> str | None:
        return safe_str(value)


class DetectionRecord(BaseModel):
    """One receiver's latest observation of one beacon.

    ``last_update`` is the ``YYYY/M/D H:M:S`` local-time string written by an
    older producer; it is only consulted when ``update_time`` is absent.
    """

    model_config = _RECORD_CONFIG

    receiver_name: str | None = Field(default=None, validation_alias=AliasChoices("receiver_name", "receiver"))
    rssi: int | None = None
    online: bool = False
    update_time: int | None = None
    last_seen: int | None = None
    last_update: str | None = None

    @field_validator("rssi", mode="before")
    @classmethod
    def _coerce_rssi(cls, value: Any) -> int | None:
        return resolve_rssi(value)

    @field_validator("online", mode="before")
    @classmethod
    def _coerce_online(cls, value: Any) -> bool:
        return bool(value)

    @field_validator("update_time", "last_seen", mode="before")
    @classmethod
    def _coerce_timestamp(cls, value: Any) -> int | None:
        return safe_int(value)

    @field_validator("receiver_name", "last_update", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str | None:
        return safe_str(value)


class BeaconRecord(BaseModel):
    """A tracked beacon and its per-receiver detections."""

    model_config = _RECORD_CONFIG

    name: str | None = None
    first_seen: int = 0
    detections: dict[str, DetectionRecord] = Field(default_factory=dict)

    @field_validator("first_seen", mode="before")
    @classmethod
    def _coerce_first_seen(cls, value: Any) -> int:
        return safe_int(value) or 0

    @field_validator("name", mode="before")
    @classmethod
    def _coerce_name(cls, value: Any) -> str | None:
        return safe_str(value)


class RegistryDocument(BaseModel):
    """Whole-registry document as persisted and exported."""

    model_config = _RECORD_CONFIG

    devices: dict[str, ReceiverRecord] = Field(default_factory=dict)
    beacons: dict[str, BeaconRecord] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _fill_missing_sections(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        filled = dict(values)
        for key in ("devices", "beacons"):
            if filled.get(key) is None:
                filled[key] = {}
        return filled

    @classmethod
    def empty(cls) -> RegistryDocument:
        return cls()

    @property
    def is_empty(self) -> bool:
        return not self.devices and not self.beacons

    def to_json_dict(self) -> dict[str, Any]:
        """Dump to the persisted JSON shape (``None`` fields omitted)."""
        return self.model_dump(mode="json", exclude_none=True)
