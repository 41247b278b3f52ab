"""Report ingestion.

Folds one receiver report into the registry. Persisting the result is the
caller's job (see :class:`blepresence.tracker.PresenceTracker`), so that the
merge itself stays synchronous and cannot be interrupted halfway.
"""

from __future__ import annotations

import logging

from blepresence.models.registry import DetectionRecord
from blepresence.models.report import ReceiverReport
from blepresence.models.views import IngestResult
from blepresence.state.registry import Registry

_logger = logging.getLogger(__name__)


class IngestionMerger:
    """Merges receiver reports into a :class:`Registry`.

    Replaying the same report only refreshes timestamps: detections are
    keyed by (beacon address, receiver ID) and overwritten in place.
    """

    def __init__(self, registry: Registry) -> None:
        self._registry = registry

    def ingest(self, report: ReceiverReport, now: int) -> IngestResult:
        receiver_id = report.receiver_id
        if not receiver_id:
            _logger.warning("Rejected report without receiver id (%d beacon entries)", len(report.beacons))
            return IngestResult(accepted=False, reason="missing receiver id", skipped=len(report.beacons))

        receiver = self._registry.upsert_receiver(
            receiver_id,
            now=now,
            name=report.receiver_name,
            type=report.receiver_type,
            batch=report.batch,
            total_batches=report.total_batches,
        )

        merged = 0
        skipped = 0
        for entry in report.beacons:
            if not entry.address:
                skipped += 1
                continue
            self._registry.ensure_beacon(entry.address, now=now, name=entry.name)
            self._registry.upsert_detection(
                entry.address,
                receiver_id,
                DetectionRecord(receiver_name=receiver.name, rssi=entry.rssi, online=entry.online),
                now=now,
            )
            merged += 1

        if skipped:
            _logger.warning("Receiver %s: skipped %d beacon entries without address", receiver_id, skipped)

        batch_info = f" (batch {report.batch}/{report.total_batches})" if report.total_batches > 1 else ""
        _logger.debug("Receiver %s reported %d beacons%s", receiver.name, merged, batch_info)

        return IngestResult(accepted=True, receiver_id=receiver_id, merged=merged, skipped=skipped)
