"""High-level async presence tracker."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable
from typing import Any

from blepresence._mqtt import MqttEvent, ReportMqttRuntime
from blepresence.config import TrackerConfig
from blepresence.exceptions import PersistenceError, ReportError
from blepresence.ingestion.merge import IngestionMerger
from blepresence.ingestion.mqtt import build_report_from_event
from blepresence.models.registry import RegistryDocument
from blepresence.models.report import ReceiverReport
from blepresence.models.views import (
    ActiveBeacon,
    BeaconDetail,
    BeaconOverview,
    BeaconReceivers,
    IngestResult,
    ResetResult,
    Statistics,
    StatusSummary,
    SweepResult,
)
from blepresence.query import QueryService
from blepresence.reaper import Reaper
from blepresence.state.registry import Registry
from blepresence.storage import JsonFileStore, PersistenceAdapter

_logger = logging.getLogger(__name__)


def _now_ms() -> int:
    """Current epoch timestamp in milliseconds."""
    return int(time.time() * 1000)


class PresenceTracker:
    """Owns the registry and serializes every mutation of it.

    Ingest, sweep and reset run under one :class:`asyncio.Lock`, including
    the whole-document write that follows them. The write runs in the
    default executor and is the only suspension point. Queries are
    synchronous, take no lock, and see the latest merged state.

    Usage::

        async with PresenceTracker(TrackerConfig.from_env()) as tracker:
            await tracker.ingest(report)
            tracker.status()
    """

    def __init__(
        self,
        config: TrackerConfig | None = None,
        *,
        store: PersistenceAdapter | None = None,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._config = config or TrackerConfig()
        self._store: PersistenceAdapter = store if store is not None else JsonFileStore(self._config.data_file)
        self._clock = clock
        self._registry = Registry()
        self._merger = IngestionMerger(self._registry)
        self._reaper = Reaper(self._registry, retention_ms=self._config.retention_ms)
        self._query = QueryService(
            self._registry,
            freshness_ms=self._config.freshness_ms,
            active_window_ms=self._config.active_window_ms,
        )
        self._lock = asyncio.Lock()
        self._loaded = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self._reap_task: asyncio.Task[None] | None = None
        self._mqtt_runtime: ReportMqttRuntime | None = None
        self._pending: set[asyncio.Task[Any]] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> PresenceTracker:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    async def start(self) -> None:
        """Load persisted state and start the reaper (and MQTT, if enabled)."""
        self._loop = asyncio.get_running_loop()
        await self.ensure_loaded()
        if self._reap_task is None:
            self._reap_task = self._loop.create_task(self._reap_loop(), name="blepresence-reaper")
        if self._config.mqtt.enabled:
            await self._start_mqtt()

    async def stop(self) -> None:
        await self._stop_mqtt()
        task = self._reap_task
        self._reap_task = None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        self._loop = None

    async def ensure_loaded(self) -> None:
        """Load the persisted document once. Unusable documents load as empty."""
        if self._loaded:
            return
        async with self._lock:
            if self._loaded:
                return
            loop = asyncio.get_running_loop()
            document = await loop.run_in_executor(None, self._store.load)
            self._registry.load_document(document)
            self._loaded = True
            _logger.info(
                "Registry loaded: %d receivers, %d beacons",
                self._registry.receiver_count,
                self._registry.beacon_count,
            )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def ingest(self, report: ReceiverReport) -> IngestResult:
        """Merge one report and persist the registry."""
        await self.ensure_loaded()
        async with self._lock:
            result = self._merger.ingest(report, self._clock())
            if not result.accepted:
                return result
            error = await self._persist()
        return result.model_copy(update={"persisted": error is None, "error": error})

    async def ingest_payload(self, payload: Any, *, receiver_id: str | None = None, source: str = "") -> IngestResult:
        """Parse a raw JSON report payload and ingest it."""
        try:
            report = ReceiverReport.from_payload(payload, receiver_id=receiver_id, source=source)
        except ReportError as exc:
            _logger.warning("Rejected report payload from %s: %s", source or "unknown source", exc)
            return IngestResult(accepted=False, reason=str(exc))
        return await self.ingest(report)

    async def sweep(self) -> SweepResult:
        """Run one retention sweep and persist if anything was removed."""
        await self.ensure_loaded()
        async with self._lock:
            result = self._reaper.sweep(self._clock())
            if not result.removed:
                return result
            error = await self._persist()
        return result.model_copy(update={"persisted": error is None, "error": error})

    async def reset(self) -> ResetResult:
        """Drop every receiver and beacon. Authorization is the caller's concern."""
        await self.ensure_loaded()
        async with self._lock:
            self._registry.clear()
            error = await self._persist()
        _logger.info("Registry reset")
        return ResetResult(persisted=error is None, error=error, cleared_at=self._clock())

    async def _persist(self) -> str | None:
        """Write the current registry; return an error message on failure.

        A failed write leaves the in-memory registry as merged.
        """
        document = self._registry.to_document()
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._store.save, document)
        except (PersistenceError, OSError) as exc:
            _logger.warning("Registry write failed: %s", exc)
            return str(exc)
        return None

    async def _reap_loop(self) -> None:
        interval = self._config.reap_interval
        while True:
            await asyncio.sleep(interval)
            try:
                await self.sweep()
            except Exception:
                _logger.warning("Reaper sweep failed", exc_info=True)

    # ------------------------------------------------------------------
    # MQTT
    # ------------------------------------------------------------------

    async def _start_mqtt(self) -> None:
        loop = self._loop or asyncio.get_running_loop()
        runtime = ReportMqttRuntime(
            loop=loop,
            settings=self._config.mqtt,
            on_event=self._on_mqtt_event,
            logger=_logger,
        )
        try:
            await loop.run_in_executor(None, runtime.start)
        except (OSError, ValueError):
            _logger.warning("MQTT report listener failed to start", exc_info=True)
            return
        self._mqtt_runtime = runtime

    async def _stop_mqtt(self) -> None:
        runtime = self._mqtt_runtime
        self._mqtt_runtime = None
        if runtime is None:
            return
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, runtime.stop)
        except OSError:
            _logger.debug("MQTT runtime stop failed", exc_info=True)

    def _on_mqtt_event(self, event: MqttEvent) -> None:
        loop = self._loop or asyncio.get_running_loop()
        task = loop.create_task(self._handle_mqtt_event(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _handle_mqtt_event(self, event: MqttEvent) -> IngestResult | None:
        try:
            report = build_report_from_event(event)
        except ReportError as exc:
            _logger.warning("Rejected MQTT report on %s: %s", event.topic, exc)
            return None
        if report is None:
            return None
        return await self.ingest(report)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def config(self) -> TrackerConfig:
        return self._config

    @property
    def query(self) -> QueryService:
        return self._query

    def now(self) -> int:
        return self._clock()

    def status(self) -> StatusSummary:
        return self._query.status_summary(self._clock())

    def statistics(self) -> Statistics:
        return self._query.statistics(self._clock())

    def beacon_receivers(self, identity: str) -> BeaconReceivers | None:
        return self._query.beacon_receivers(identity, self._clock())

    def tagged_beacons(self, prefix: str | None = None) -> list[BeaconReceivers]:
        return self._query.tagged_beacons(self._clock(), prefix or self._config.tag_prefix)

    def active_beacons(self) -> list[ActiveBeacon]:
        return self._query.active_beacons(self._clock())

    def beacon_overview(self) -> list[BeaconOverview]:
        return self._query.beacon_overview(self._clock())

    def beacon_detail(self, fragment: str) -> BeaconDetail | None:
        return self._query.beacon_detail(fragment, self._clock())

    def list_all(self) -> dict[str, Any]:
        return self._query.list_all()

    def snapshot(self) -> RegistryDocument:
        return self._query.snapshot()
