"""Read-only views returned by queries, ingestion and the reaper."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from blepresence.models.registry import BeaconRecord

_VIEW_CONFIG = ConfigDict(frozen=True, extra="forbid")


class RankedReceiver(BaseModel):
    """A receiver currently seeing a beacon, as ranked by signal strength."""

    model_config = _VIEW_CONFIG

    receiver_id: str
    name: str
    rssi: int
    online: bool
    last_update_time: int
    last_update: str


class BeaconMatch(BaseModel):
    """Result of a beacon lookup by address or name."""

    model_config = _VIEW_CONFIG

    address: str
    beacon: BeaconRecord


class BeaconReceivers(BaseModel):
    model_config = _VIEW_CONFIG

    address: str
    name: str | None
    display_name: str
    first_seen: int
    receivers: tuple[RankedReceiver, ...]
    timestamp: int


class StatusSummary(BaseModel):
    """Aggregate receiver/beacon counts.

    ``*_active`` counts use the active window, not the freshness threshold.
    """

    model_config = _VIEW_CONFIG

    receiver_total: int
    receiver_active: int
    beacon_total: int
    beacon_active: int
    active_window: int
    timestamp: int


class ActiveBeacon(BaseModel):
    """A beacon with at least one online detection inside the active window."""

    model_config = _VIEW_CONFIG

    address: str
    name: str | None
    receivers: tuple[RankedReceiver, ...]
    strongest_rssi: int


class BeaconOverview(BaseModel):
    model_config = _VIEW_CONFIG

    address: str
    name: str | None
    active_receivers: int
    strongest_rssi: int
    newest_update: int
    is_active: bool


class DetectionDetail(BaseModel):
    model_config = _VIEW_CONFIG

    receiver_id: str
    name: str
    rssi: int
    online: bool
    last_update_time: int | None
    age_ms: int | None
    is_recent: bool
    signal_level: str


class RssiStats(BaseModel):
    model_config = _VIEW_CONFIG

    average: float
    strongest: int
    weakest: int
    samples: int


class BeaconDetail(BaseModel):
    model_config = _VIEW_CONFIG

    address: str
    name: str | None
    first_seen: int
    detections: tuple[DetectionDetail, ...]
    recent_rssi: RssiStats | None = None


class Statistics(BaseModel):
    model_config = _VIEW_CONFIG

    receiver_total: int
    receiver_active: int
    beacon_total: int
    beacon_active: int
    multi_receiver_beacons: int
    single_receiver_beacons: int
    rssi: RssiStats | None = None
    timestamp: int


class IngestResult(BaseModel):
    """Outcome of merging one receiver report."""

    model_config = _VIEW_CONFIG

    accepted: bool
    receiver_id: str | None = None
    merged: int = 0
    skipped: int = 0
    persisted: bool = False
    error: str | None = None
    reason: str | None = None


class SweepResult(BaseModel):
    """Outcome of one reaper sweep."""

    model_config = _VIEW_CONFIG

    receivers_removed: tuple[str, ...] = ()
    detections_removed: int = 0
    beacons_removed: tuple[str, ...] = ()
    persisted: bool = False
    error: str | None = None

    @property
    def removed(self) -> int:
        return len(self.receivers_removed) + self.detections_removed + len(self.beacons_removed)


class ResetResult(BaseModel):
    model_config = _VIEW_CONFIG

    persisted: bool
    error: str | None = None
    cleared_at: int = Field(default=0)
