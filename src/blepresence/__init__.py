"""blepresence - presence tracking for BLE beacons seen by fixed receivers."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("blepresence")
except PackageNotFoundError:
    __version__ = "0+local"

from blepresence.config import MqttSettings, TrackerConfig
from blepresence.exceptions import (
    PersistenceError,
    PresenceConfigError,
    PresenceError,
    ReportError,
)
from blepresence.ingestion.merge import IngestionMerger
from blepresence.models import (
    BeaconRecord,
    DetectionRecord,
    IngestResult,
    ObservedBeacon,
    RankedReceiver,
    ReceiverRecord,
    ReceiverReport,
    RegistryDocument,
    StatusSummary,
    SweepResult,
)
from blepresence.query import QueryService
from blepresence.reaper import Reaper
from blepresence.state.registry import Registry
from blepresence.storage import JsonFileStore, PersistenceAdapter
from blepresence.tracker import PresenceTracker

__all__ = [
    "__version__",
    "BeaconRecord",
    "DetectionRecord",
    "IngestResult",
    "IngestionMerger",
    "JsonFileStore",
    "MqttSettings",
    "ObservedBeacon",
    "PersistenceAdapter",
    "PersistenceError",
    "PresenceConfigError",
    "PresenceError",
    "PresenceTracker",
    "QueryService",
    "RankedReceiver",
    "Reaper",
    "ReceiverRecord",
    "ReceiverReport",
    "Registry",
    "RegistryDocument",
    "ReportError",
    "StatusSummary",
    "SweepResult",
    "TrackerConfig",
]
