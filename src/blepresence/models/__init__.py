"""Data models for registry records, receiver reports and query views."""

from blepresence.models.registry import BeaconRecord, DetectionRecord, ReceiverRecord, RegistryDocument
from blepresence.models.report import ObservedBeacon, ReceiverReport
from blepresence.models.views import (
    ActiveBeacon,
    BeaconDetail,
    BeaconMatch,
    BeaconOverview,
    BeaconReceivers,
    DetectionDetail,
    IngestResult,
    RankedReceiver,
    ResetResult,
    RssiStats,
    Statistics,
    StatusSummary,
    SweepResult,
)

__all__ = [
    "ActiveBeacon",
    "BeaconDetail",
    "BeaconMatch",
    "BeaconOverview",
    "BeaconReceivers",
    "BeaconRecord",
    "DetectionDetail",
    "DetectionRecord",
    "IngestResult",
    "ObservedBeacon",
    "RankedReceiver",
    "ReceiverRecord",
    "ReceiverReport",
    "RegistryDocument",
    "ResetResult",
    "RssiStats",
    "Statistics",
    "StatusSummary",
    "SweepResult",
]
