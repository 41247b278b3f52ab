"""Read-only queries over the registry.

Nothing here mutates the registry; every result is a copy or a derived view.
"""

from __future__ import annotations

import re
from typing import Any

from blepresence._constants import DEFAULT_TAG_PREFIX, RSSI_FLOOR, signal_level
from blepresence.ingestion.normalize import decode_tree, decode_unicode
from blepresence.models.registry import BeaconRecord, DetectionRecord, RegistryDocument
from blepresence.models.views import (
    ActiveBeacon,
    BeaconDetail,
    BeaconMatch,
    BeaconOverview,
    BeaconReceivers,
    DetectionDetail,
    RankedReceiver,
    RssiStats,
    Statistics,
    StatusSummary,
)
from blepresence.state.policy import (
    DEFAULT_ACTIVE_WINDOW_MS,
    DEFAULT_FRESHNESS_MS,
    format_timestamp,
    is_active,
    is_within,
    resolve_timestamp,
)
from blepresence.state.presence import ranked_receivers
from blepresence.state.registry import Registry

_TAG_NUMBER_RE = re.compile(r"ESP-C3-(\d+)")


def display_name(beacon_name: str | None) -> str:
    """Friendly label for a beacon: ``ESP-C3-7`` becomes ``Beacon 7``."""
    if not beacon_name:
        return "Unknown beacon"
    match = _TAG_NUMBER_RE.search(beacon_name)
    if match:
        return f"Beacon {match.group(1)}"
    return beacon_name


def _rssi(detection: DetectionRecord) -> int:
    return detection.rssi if detection.rssi is not None else RSSI_FLOOR


def _rssi_stats(values: list[int]) -> RssiStats | None:
    if not values:
        return None
    return RssiStats(
        average=round(sum(values) / len(values), 1),
        strongest=max(values),
        weakest=min(values),
        samples=len(values),
    )


class QueryService:
    """Query operations used by the HTTP layer and other consumers.

    ``freshness_ms`` governs which receivers are shown for a beacon;
    ``active_window_ms`` governs the "currently active" counts. They are
    independent settings.
    """

    def __init__(
        self,
        registry: Registry,
        *,
        freshness_ms: int = DEFAULT_FRESHNESS_MS,
        active_window_ms: int = DEFAULT_ACTIVE_WINDOW_MS,
    ) -> None:
        self._registry = registry
        self._freshness_ms = freshness_ms
        self._active_window_ms = active_window_ms

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def find_beacon(self, identity: str) -> BeaconMatch | None:
        """Look up by address, then by exact name.

        Names are not unique; the first match in registry order wins.
        """
        address = identity
        beacon = self._registry.get_beacon(identity)
        if beacon is None:
            found = self._registry.find_address_by_name(identity)
            if found is None:
                return None
            address = found
            beacon = self._registry.get_beacon(found)
        if beacon is None:
            return None
        return BeaconMatch(address=address, beacon=beacon)

    def beacon_receivers(self, identity: str, now: int) -> BeaconReceivers | None:
        """Fresh receivers for one beacon, strongest first, or ``None`` if unknown."""
        match = self.find_beacon(identity)
        if match is None:
            return None
        return self._beacon_receivers(match.address, match.beacon, now)

    def _beacon_receivers(self, address: str, beacon: BeaconRecord, now: int) -> BeaconReceivers:
        return BeaconReceivers(
            address=address,
            name=beacon.name,
            display_name=display_name(beacon.name),
            first_seen=beacon.first_seen,
            receivers=tuple(ranked_receivers(beacon, now, self._freshness_ms)),
            timestamp=now,
        )

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    def status_summary(self, now: int) -> StatusSummary:
        receivers = self._registry.all_receivers()
        beacons = self._registry.all_beacons()
        receiver_active = sum(1 for r in receivers.values() if is_within(r.update, now, self._active_window_ms))
        beacon_active = sum(
            1
            for beacon in beacons.values()
            if any(is_active(d, now, self._active_window_ms) for d in beacon.detections.values())
        )
        return StatusSummary(
            receiver_total=len(receivers),
            receiver_active=receiver_active,
            beacon_total=len(beacons),
            beacon_active=beacon_active,
            active_window=self._active_window_ms,
            timestamp=now,
        )

    def statistics(self, now: int) -> Statistics:
        """Status counts plus receiver coverage and RSSI spread of active detections."""
        summary = self.status_summary(now)
        multi = 0
        single = 0
        samples: list[int] = []
        for beacon in self._registry.all_beacons().values():
            active = [d for d in beacon.detections.values() if is_active(d, now, self._active_window_ms)]
            if not active:
                continue
            samples.extend(_rssi(d) for d in active)
            if len(active) > 1:
                multi += 1
            else:
                single += 1
        return Statistics(
            receiver_total=summary.receiver_total,
            receiver_active=summary.receiver_active,
            beacon_total=summary.beacon_total,
            beacon_active=summary.beacon_active,
            multi_receiver_beacons=multi,
            single_receiver_beacons=single,
            rssi=_rssi_stats(samples),
            timestamp=now,
        )

    def snapshot(self) -> RegistryDocument:
        return self._registry.to_document()

    def list_all(self) -> dict[str, Any]:
        """Whole registry as plain JSON data with legacy escaped text decoded.

        Each detection additionally carries a human-readable ``last_update``.
        """
        exported = self.snapshot().to_json_dict()
        for beacon in exported["beacons"].values():
            for detection in beacon.get("detections", {}).values():
                timestamp = resolve_timestamp(DetectionRecord.model_validate(detection))
                detection["last_update"] = format_timestamp(timestamp)
        decoded = decode_tree(exported)
        assert isinstance(decoded, dict)  # noqa: S101
        return decoded

    # ------------------------------------------------------------------
    # Beacon listings
    # ------------------------------------------------------------------

    def tagged_beacons(self, now: int, prefix: str = DEFAULT_TAG_PREFIX) -> list[BeaconReceivers]:
        """Beacons named ``<prefix>...`` that at least one receiver currently sees."""
        results: list[BeaconReceivers] = []
        for address, beacon in self._registry.all_beacons().items():
            if not beacon.name or not beacon.name.startswith(prefix) or not beacon.detections:
                continue
            view = self._beacon_receivers(address, beacon, now)
            if view.receivers:
                results.append(view)
        results.sort(key=lambda item: max(r.rssi for r in item.receivers), reverse=True)
        return results

    def active_beacons(self, now: int) -> list[ActiveBeacon]:
        """Beacons with online detections inside the active window, strongest first."""
        results: list[ActiveBeacon] = []
        for address, beacon in self._registry.all_beacons().items():
            receivers: list[RankedReceiver] = []
            for receiver_id, detection in beacon.detections.items():
                if not is_active(detection, now, self._active_window_ms):
                    continue
                timestamp = resolve_timestamp(detection)
                assert timestamp is not None  # noqa: S101
                receivers.append(
                    RankedReceiver(
                        receiver_id=receiver_id,
                        name=decode_unicode(detection.receiver_name) or receiver_id,
                        rssi=_rssi(detection),
                        online=detection.online,
                        last_update_time=timestamp,
                        last_update=format_timestamp(timestamp),
                    )
                )
            if not receivers:
                continue
            receivers.sort(key=lambda item: item.rssi, reverse=True)
            results.append(
                ActiveBeacon(
                    address=address,
                    name=beacon.name,
                    receivers=tuple(receivers),
                    strongest_rssi=receivers[0].rssi,
                )
            )
        results.sort(key=lambda item: item.strongest_rssi, reverse=True)
        return results

    def beacon_overview(self, now: int) -> list[BeaconOverview]:
        """Every beacon with its active coverage; active beacons first."""
        results: list[BeaconOverview] = []
        for address, beacon in self._registry.all_beacons().items():
            active_receivers = 0
            strongest = RSSI_FLOOR
            newest = 0
            for detection in beacon.detections.values():
                if is_active(detection, now, self._active_window_ms):
                    active_receivers += 1
                    strongest = max(strongest, _rssi(detection))
                timestamp = resolve_timestamp(detection)
                if timestamp is not None and timestamp > newest:
                    newest = timestamp
            results.append(
                BeaconOverview(
                    address=address,
                    name=beacon.name,
                    active_receivers=active_receivers,
                    strongest_rssi=strongest,
                    newest_update=newest,
                    is_active=active_receivers > 0,
                )
            )
        results.sort(key=lambda item: (item.is_active, item.strongest_rssi), reverse=True)
        return results

    def beacon_detail(self, fragment: str, now: int) -> BeaconDetail | None:
        """Full detection history of the first beacon whose name contains *fragment*.

        Recent detections (inside the active window, regardless of the online
        flag) come first by RSSI, older ones follow newest first.
        """
        fragment = fragment.strip()
        if not fragment:
            return None
        for address, beacon in self._registry.all_beacons().items():
            if beacon.name and fragment in beacon.name:
                break
        else:
            return None

        details: list[DetectionDetail] = []
        for receiver_id, detection in beacon.detections.items():
            timestamp = resolve_timestamp(detection)
            age = now - timestamp if timestamp is not None else None
            rssi = _rssi(detection)
            details.append(
                DetectionDetail(
                    receiver_id=receiver_id,
                    name=decode_unicode(detection.receiver_name) or receiver_id,
                    rssi=rssi,
                    online=detection.online,
                    last_update_time=timestamp,
                    age_ms=age,
                    is_recent=is_within(timestamp, now, self._active_window_ms),
                    signal_level=signal_level(rssi),
                )
            )

        recent = sorted((d for d in details if d.is_recent), key=lambda d: d.rssi, reverse=True)
        older = sorted((d for d in details if not d.is_recent), key=lambda d: d.last_update_time or 0, reverse=True)
        return BeaconDetail(
            address=address,
            name=beacon.name,
            first_seen=beacon.first_seen,
            detections=tuple(recent + older),
            recent_rssi=_rssi_stats([d.rssi for d in recent]),
        )
