from __future__ import annotations

from typing import Any

import pytest

from blepresence.exceptions import ReportError
from blepresence.ingestion.merge import IngestionMerger
from blepresence.models.report import ReceiverReport
from blepresence.state.presence import ranked_receivers
from blepresence.state.registry import Registry


def _report(receiver: str | None, beacons: list[dict[str, Any]], **extra: Any) -> ReceiverReport:
    payload: dict[str, Any] = {"beacons": beacons, **extra}
    if receiver is not None:
        payload["device_id"] = receiver
    return ReceiverReport.from_payload(payload)


def _detection_count(registry: Registry) -> int:
    return sum(len(b.detections) for b in registry.all_beacons().values())


def test_two_receivers_rank_by_signal_strength() -> None:
    registry = Registry()
    merger = IngestionMerger(registry)

    merger.ingest(
        ReceiverReport.from_payload(
            {"receiver": "R1", "objects": [{"address": "AA:BB", "name": "X", "signalStrength": -55, "liveness": True}]}
        ),
        1000,
    )
    merger.ingest(
        ReceiverReport.from_payload(
            {"receiver": "R2", "objects": [{"address": "AA:BB", "signalStrength": -70, "liveness": True}]}
        ),
        1500,
    )

    ranked = ranked_receivers(registry.get_beacon("AA:BB"), 2000, 15_000)
    assert [(r.receiver_id, r.rssi) for r in ranked] == [("R1", -55), ("R2", -70)]
    # Both stale at t=20000.
    assert ranked_receivers(registry.get_beacon("AA:BB"), 20_000, 15_000) == []


def test_replaying_a_report_only_refreshes_timestamps() -> None:
    registry = Registry()
    merger = IngestionMerger(registry)
    report = _report("R1", [{"mac": "AA:01", "rssi": -60, "online": True}, {"mac": "AA:02", "rssi": -80}])

    merger.ingest(report, 1_000)
    merger.ingest(report, 90_000)

    assert _detection_count(registry) == 2
    beacon = registry.get_beacon("AA:01")
    assert beacon is not None
    assert list(beacon.detections) == ["R1"]
    assert beacon.detections["R1"].update_time == 90_000
    assert beacon.first_seen == 1_000


def test_report_without_receiver_is_rejected_without_mutation() -> None:
    registry = Registry()
    merger = IngestionMerger(registry)

    result = merger.ingest(_report(None, [{"mac": "AA:01", "rssi": -60}]), 1_000)

    assert not result.accepted
    assert result.reason == "missing receiver id"
    assert registry.all_receivers() == {}
    assert registry.all_beacons() == {}


def test_blank_receiver_id_is_rejected() -> None:
    registry = Registry()

    result = IngestionMerger(registry).ingest(_report("   ", [{"mac": "AA:01"}]), 1_000)

    assert not result.accepted
    assert registry.receiver_count == 0


def test_entries_without_address_are_skipped_individually() -> None:
    registry = Registry()

    result = IngestionMerger(registry).ingest(
        _report("R1", [{"name": "no-mac", "rssi": -50}, {"mac": "AA:01", "rssi": -60}, "garbage"]),
        1_000,
    )

    assert result.accepted
    assert result.merged == 1
    assert result.skipped == 2
    assert list(registry.all_beacons()) == ["AA:01"]


def test_structured_rssi_is_normalized_before_storage() -> None:
    registry = Registry()

    IngestionMerger(registry).ingest(
        _report(
            "R1",
            [
                {"mac": "AA:01", "rssi": {"average": -61.4, "current": -70}},
                {"mac": "AA:02", "rssi": {"current": -72}},
                {"mac": "AA:03", "rssi": {}},
            ],
        ),
        1_000,
    )

    beacons = registry.all_beacons()
    assert beacons["AA:01"].detections["R1"].rssi == -61
    assert beacons["AA:02"].detections["R1"].rssi == -72
    assert beacons["AA:03"].detections["R1"].rssi is None


def test_name_is_overwritten_only_when_supplied() -> None:
    registry = Registry()
    merger = IngestionMerger(registry)

    merger.ingest(_report("R1", [{"mac": "AA:01", "name": "ESP-C3-1"}]), 1_000)
    merger.ingest(_report("R1", [{"mac": "AA:01"}]), 2_000)
    assert registry.get_beacon("AA:01").name == "ESP-C3-1"  # type: ignore[union-attr]

    merger.ingest(_report("R2", [{"mac": "AA:01", "name": "ESP-C3-9"}]), 3_000)
    beacon = registry.get_beacon("AA:01")
    assert beacon is not None
    assert beacon.name == "ESP-C3-9"
    assert beacon.first_seen == 1_000


def test_receiver_defaults_and_detection_receiver_name() -> None:
    registry = Registry()
    merger = IngestionMerger(registry)

    merger.ingest(_report("esp-hall", [{"mac": "AA:01", "rssi": -60, "online": True}]), 1_000)
    merger.ingest(
        _report("esp-lab", [{"mac": "AA:01", "rssi": -65}], device_name="Lab", device_type="ESP32-S3"),
        1_000,
    )

    hall = registry.get_receiver("esp-hall")
    assert hall is not None
    assert (hall.name, hall.type, hall.update, hall.batch, hall.total_batches) == ("esp-hall", "ESP32", 1_000, 1, 1)
    lab = registry.get_receiver("esp-lab")
    assert lab is not None
    assert (lab.name, lab.type) == ("Lab", "ESP32-S3")

    detections = registry.get_beacon("AA:01").detections  # type: ignore[union-attr]
    assert detections["esp-hall"].receiver_name == "esp-hall"
    assert detections["esp-lab"].receiver_name == "Lab"
    assert detections["esp-hall"].online is True
    assert detections["esp-lab"].online is False


def test_empty_report_refreshes_receiver() -> None:
    registry = Registry()

    result = IngestionMerger(registry).ingest(_report("R1", [], batch=2, total_batches=3), 5_000)

    assert result.accepted
    receiver = registry.get_receiver("R1")
    assert receiver is not None
    assert (receiver.update, receiver.batch, receiver.total_batches) == (5_000, 2, 3)


def test_event_envelope_is_unwrapped() -> None:
    report = ReceiverReport.from_payload(
        {
            "device_id": "esp-hall",
            "device_name": "Hall",
            "event_data": {
                "data_type": "ble_beacon_batch",
                "batch": 2,
                "total_batches": 4,
                "beacons": [{"mac": "AA:01", "name": "ESP-C3-1", "rssi": {"average": -58}, "online": True}],
            },
        }
    )

    assert report.receiver_id == "esp-hall"
    assert report.receiver_name == "Hall"
    assert (report.batch, report.total_batches) == (2, 4)
    assert report.beacons[0].address == "AA:01"
    assert report.beacons[0].rssi == -58
    assert not hasattr(report, "raw")


def test_from_payload_uses_fallback_receiver_id() -> None:
    report = ReceiverReport.from_payload({"beacons": []}, receiver_id="from-topic")
    assert report.receiver_id == "from-topic"

    named = ReceiverReport.from_payload({"device_id": "own", "beacons": []}, receiver_id="from-topic")
    assert named.receiver_id == "own"


def test_from_payload_rejects_non_objects() -> None:
    with pytest.raises(ReportError):
        ReceiverReport.from_payload(["not", "a", "report"])


def test_unknown_top_level_keys_are_ignored() -> None:
    registry = Registry()

    result = IngestionMerger(registry).ingest(
        ReceiverReport.from_payload({"device_id": "R1", "raw": "fw-1.2", "beacons": [{"mac": "AA:01", "rssi": -60}]}),
        1_000,
    )

    assert result.accepted
    assert result.merged == 1
