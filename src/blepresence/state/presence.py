"""Presence resolution: which receivers see a beacon, strongest first."""

from __future__ import annotations

from blepresence._constants import RSSI_FLOOR
from blepresence.ingestion.normalize import decode_unicode
from blepresence.models.registry import BeaconRecord
from blepresence.models.views import RankedReceiver
from blepresence.state.policy import DEFAULT_FRESHNESS_MS, format_timestamp, is_within, resolve_timestamp


def ranked_receivers(
    beacon: BeaconRecord | None,
    now: int,
    threshold_ms: int = DEFAULT_FRESHNESS_MS,
) -> list[RankedReceiver]:
    """Receivers whose detection of *beacon* is fresh, by descending RSSI.

    RSSI is a proximity proxy only. The sort is stable, so equal readings
    keep registry order. Detections without a reading rank at the floor.
    """
    if beacon is None:
        return []

    receivers: list[RankedReceiver] = []
    for receiver_id, detection in beacon.detections.items():
        timestamp = resolve_timestamp(detection)
        if timestamp is None or not is_within(timestamp, now, threshold_ms):
            continue
        receivers.append(
            RankedReceiver(
                receiver_id=receiver_id,
                name=decode_unicode(detection.receiver_name) or receiver_id,
                rssi=detection.rssi if detection.rssi is not None else RSSI_FLOOR,
                online=detection.online,
                last_update_time=timestamp,
                last_update=format_timestamp(timestamp),
            )
        )

    receivers.sort(key=lambda item: item.rssi, reverse=True)
    return receivers
