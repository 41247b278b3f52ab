"""Retention sweep.

The retention threshold bounds storage growth only. It is much coarser than
the freshness/active thresholds and does not decide what is "visible".
"""

from __future__ import annotations

import logging

from blepresence._constants import RETENTION_MS
from blepresence.models.views import SweepResult
from blepresence.state.policy import is_expired, resolve_timestamp
from blepresence.state.registry import Registry

_logger = logging.getLogger(__name__)


class Reaper:
    """Evicts receivers, detections and beacons older than the retention threshold."""

    def __init__(self, registry: Registry, *, retention_ms: int = RETENTION_MS) -> None:
        self._registry = registry
        self._retention_ms = retention_ms

    @property
    def retention_ms(self) -> int:
        return self._retention_ms

    def sweep(self, now: int) -> SweepResult:
        """Run one sweep at *now*.

        Detections that cannot be dated are treated as expired. A beacon is
        removed once it has no detections left.
        """
        receivers_removed: list[str] = []
        for receiver_id, receiver in self._registry.all_receivers().items():
            if is_expired(receiver.update, now, self._retention_ms):
                self._registry.remove_receiver(receiver_id)
                receivers_removed.append(receiver_id)

        detections_removed = 0
        beacons_removed: list[str] = []
        for address, beacon in self._registry.all_beacons().items():
            for receiver_id, detection in beacon.detections.items():
                if is_expired(resolve_timestamp(detection), now, self._retention_ms):
                    if self._registry.remove_detection(address, receiver_id):
                        detections_removed += 1
            if self._registry.remove_beacon_if_empty(address):
                beacons_removed.append(address)

        result = SweepResult(
            receivers_removed=tuple(receivers_removed),
            detections_removed=detections_removed,
            beacons_removed=tuple(beacons_removed),
        )
        if result.removed:
            _logger.info(
                "Sweep removed %d receivers, %d detections, %d beacons",
                len(receivers_removed),
                detections_removed,
                len(beacons_removed),
            )
        return result
