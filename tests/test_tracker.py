from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

import pytest

from blepresence._mqtt import MqttEvent
from blepresence.config import TrackerConfig
from blepresence.exceptions import PersistenceError
from blepresence.models.registry import RegistryDocument
from blepresence.models.report import ReceiverReport
from blepresence.storage import JsonFileStore
from blepresence.tracker import PresenceTracker


class _Clock:
    def __init__(self, now: int = 1_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


class _MemoryStore:
    def __init__(self, document: RegistryDocument | None = None) -> None:
        self.document = document or RegistryDocument.empty()
        self.loads = 0
        self.saves = 0

    def load(self) -> RegistryDocument:
        self.loads += 1
        return self.document.model_copy(deep=True)

    def save(self, document: RegistryDocument) -> None:
        self.saves += 1
        self.document = document.model_copy(deep=True)


class _FailingStore(_MemoryStore):
    def save(self, document: RegistryDocument) -> None:
        self.saves += 1
        raise PersistenceError("disk full", path="/nowhere")


def _payload(receiver: str, *beacons: dict[str, Any]) -> dict[str, Any]:
    return {"device_id": receiver, "beacons": list(beacons)}


@pytest.mark.asyncio
async def test_ingest_persists_and_is_queryable() -> None:
    store = _MemoryStore()
    clock = _Clock(1_000)
    tracker = PresenceTracker(store=store, clock=clock)

    result = await tracker.ingest_payload(
        _payload("R1", {"mac": "AA:01", "name": "ESP-C3-1", "rssi": -55, "online": True}), source="test"
    )

    assert result.accepted
    assert result.persisted
    assert result.error is None
    assert store.loads == 1
    assert store.saves == 1
    assert "AA:01" in store.document.beacons

    clock.now = 2_000
    view = tracker.beacon_receivers("ESP-C3-1")
    assert view is not None
    assert [r.receiver_id for r in view.receivers] == ["R1"]
    assert tracker.status().beacon_active == 1


@pytest.mark.asyncio
async def test_persisted_state_is_loaded_once() -> None:
    store = _MemoryStore(
        RegistryDocument.model_validate({"devices": {"R1": {"name": "Hall", "update": 900}}, "beacons": {}})
    )
    tracker = PresenceTracker(store=store, clock=_Clock(1_000))

    await asyncio.gather(tracker.ensure_loaded(), tracker.ensure_loaded())
    await tracker.ensure_loaded()

    assert store.loads == 1
    assert tracker.status().receiver_total == 1


@pytest.mark.asyncio
async def test_concurrent_replays_keep_one_detection() -> None:
    store = _MemoryStore()
    tracker = PresenceTracker(store=store, clock=_Clock(1_000))
    report = ReceiverReport.from_payload(_payload("R1", {"mac": "AA:01", "rssi": -60}))

    results = await asyncio.gather(*(tracker.ingest(report) for _ in range(10)))

    assert all(r.accepted and r.persisted for r in results)
    snapshot = tracker.snapshot()
    assert list(snapshot.beacons) == ["AA:01"]
    assert list(snapshot.beacons["AA:01"].detections) == ["R1"]
    assert store.saves == 10


@pytest.mark.asyncio
async def test_failed_write_keeps_merged_state() -> None:
    store = _FailingStore()
    tracker = PresenceTracker(store=store, clock=_Clock(1_000))

    result = await tracker.ingest_payload(_payload("R1", {"mac": "AA:01", "rssi": -60}))

    assert result.accepted
    assert not result.persisted
    assert result.error == "disk full"
    assert tracker.snapshot().beacons["AA:01"].detections["R1"].rssi == -60


@pytest.mark.asyncio
async def test_rejected_reports_are_not_persisted() -> None:
    store = _MemoryStore()
    tracker = PresenceTracker(store=store, clock=_Clock(1_000))

    missing = await tracker.ingest_payload({"beacons": [{"mac": "AA:01"}]})
    malformed = await tracker.ingest_payload(["not", "an", "object"], source="test")

    assert not missing.accepted
    assert missing.reason == "missing receiver id"
    assert not malformed.accepted
    assert malformed.reason
    assert store.saves == 0
    assert tracker.snapshot().is_empty


@pytest.mark.asyncio
async def test_sweep_persists_only_when_something_was_removed() -> None:
    store = _MemoryStore()
    clock = _Clock(1_000)
    tracker = PresenceTracker(TrackerConfig(retention_ms=60_000), store=store, clock=clock)
    await tracker.ingest_payload(_payload("R1", {"mac": "AA:01", "rssi": -60}))

    quiet = await tracker.sweep()
    assert quiet.removed == 0
    assert store.saves == 1

    clock.now = 1_000 + 60_001
    swept = await tracker.sweep()
    assert swept.receivers_removed == ("R1",)
    assert swept.beacons_removed == ("AA:01",)
    assert swept.persisted
    assert store.saves == 2
    assert store.document.is_empty


@pytest.mark.asyncio
async def test_reset_clears_and_persists() -> None:
    store = _MemoryStore()
    clock = _Clock(5_000)
    tracker = PresenceTracker(store=store, clock=clock)
    await tracker.ingest_payload(_payload("R1", {"mac": "AA:01", "rssi": -60}))

    result = await tracker.reset()

    assert result.persisted
    assert result.cleared_at == 5_000
    assert tracker.snapshot().is_empty
    assert store.document.is_empty


@pytest.mark.asyncio
async def test_mqtt_event_uses_topic_receiver() -> None:
    tracker = PresenceTracker(store=_MemoryStore(), clock=_Clock(1_000))
    event = MqttEvent(
        topic="ble/esp-hall/report",
        receiver_id="esp-hall",
        payload={"event_data": {"data_type": "ble_beacon_batch", "beacons": [{"mac": "AA:01", "rssi": -58}]}},
    )

    result = await tracker._handle_mqtt_event(event)  # type: ignore[attr-defined]

    assert result is not None
    assert result.accepted
    assert result.receiver_id == "esp-hall"


@pytest.mark.asyncio
async def test_mqtt_event_of_other_type_is_ignored() -> None:
    store = _MemoryStore()
    tracker = PresenceTracker(store=store, clock=_Clock(1_000))
    event = MqttEvent(
        topic="ble/esp-hall/report",
        receiver_id="esp-hall",
        payload={"event_data": {"data_type": "heartbeat"}},
    )

    assert await tracker._handle_mqtt_event(event) is None  # type: ignore[attr-defined]
    assert store.saves == 0


@pytest.mark.asyncio
async def test_scheduled_mqtt_events_are_awaited_on_stop() -> None:
    store = _MemoryStore()
    tracker = PresenceTracker(store=store, clock=_Clock(1_000))
    await tracker.start()

    tracker._on_mqtt_event(  # type: ignore[attr-defined]
        MqttEvent(topic="ble/R1/report", receiver_id="R1", payload={"beacons": [{"mac": "AA:01"}]})
    )
    await tracker.stop()

    assert store.saves == 1
    assert "AA:01" in store.document.beacons


@pytest.mark.asyncio
async def test_background_reaper_runs_periodically() -> None:
    store = _MemoryStore()
    clock = _Clock(1_000)
    config = TrackerConfig(retention_ms=10, reap_interval=0.01)

    async with PresenceTracker(config, store=store, clock=clock) as tracker:
        await tracker.ingest_payload(_payload("R1", {"mac": "AA:01", "rssi": -60}))
        clock.now = 5_000
        for _ in range(100):
            if tracker.snapshot().is_empty:
                break
            await asyncio.sleep(0.01)

        assert tracker.snapshot().is_empty


@pytest.mark.asyncio
async def test_default_store_writes_configured_file(tmp_path: Path) -> None:
    path = tmp_path / "data" / "ble_data.json"
    tracker = PresenceTracker(TrackerConfig(data_file=path), clock=_Clock(1_000))

    result = await tracker.ingest_payload(_payload("R1", {"mac": "AA:01", "rssi": -60}))

    assert result.persisted
    assert path.exists()


@pytest.mark.asyncio
async def test_lone_surrogate_in_report_does_not_break_persistence(tmp_path: Path) -> None:
    store = JsonFileStore(tmp_path / "ble_data.json")
    tracker = PresenceTracker(store=store, clock=_Clock(1_000))
    payload = json.loads('{"device_id": "R1", "beacons": [{"mac": "AA:01", "name": "\\ud800", "rssi": -60}]}')

    first = await tracker.ingest_payload(payload)
    second = await tracker.ingest_payload(_payload("R2", {"mac": "AA:02", "rssi": -70}))

    assert first.accepted and first.persisted
    assert second.accepted and second.persisted
    persisted = store.load()
    assert persisted.beacons["AA:01"].name == "\ufffd"
    assert set(persisted.beacons) == {"AA:01", "AA:02"}


class _BrokenStore(_MemoryStore):
    def __init__(self) -> None:
        super().__init__()
        self.broken = False
        self.failures = 0

    def save(self, document: RegistryDocument) -> None:
        if self.broken:
            self.failures += 1
            raise RuntimeError("store exploded")
        super().save(document)


@pytest.mark.asyncio
async def test_background_reaper_survives_unexpected_errors(caplog: pytest.LogCaptureFixture) -> None:
    store = _BrokenStore()
    clock = _Clock(1_000)
    config = TrackerConfig(retention_ms=10, reap_interval=0.01)

    with caplog.at_level(logging.WARNING, logger="blepresence.tracker"):
        async with PresenceTracker(config, store=store, clock=clock) as tracker:
            await tracker.ingest_payload(_payload("R1", {"mac": "AA:01", "rssi": -60}))
            store.broken = True
            clock.now = 5_000
            for _ in range(100):
                if store.failures:
                    break
                await asyncio.sleep(0.01)
            assert store.failures == 1

            store.broken = False
            await tracker.ingest_payload(_payload("R2", {"mac": "AA:02", "rssi": -60}))
            clock.now = 10_000
            for _ in range(100):
                if store.document.is_empty:
                    break
                await asyncio.sleep(0.01)

            assert store.document.is_empty

    assert any("Reaper sweep failed" in record.getMessage() for record in caplog.records)
