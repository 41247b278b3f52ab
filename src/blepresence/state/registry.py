"""In-memory registry of receivers, beacons and detections.

This is the only component that holds mutable tracking state. Everything
handed out is a deep copy; callers never get references into the registry.
"""

from __future__ import annotations

from blepresence._constants import DEFAULT_RECEIVER_TYPE
from blepresence.models.registry import BeaconRecord, DetectionRecord, ReceiverRecord, RegistryDocument


class Registry:
    """Receivers keyed by ID, beacons keyed by address.

    Iteration order is insertion order. Overwriting an existing detection
    keeps its position, so ranking ties stay stable across refreshes.
    """

    def __init__(self) -> None:
        self._receivers: dict[str, ReceiverRecord] = {}
        self._beacons: dict[str, BeaconRecord] = {}

    @classmethod
    def from_document(cls, document: RegistryDocument) -> Registry:
        registry = cls()
        registry.load_document(document)
        return registry

    def load_document(self, document: RegistryDocument) -> None:
        """Replace the whole registry content with a copy of *document*."""
        copied = document.model_copy(deep=True)
        self._receivers = dict(copied.devices)
        self._beacons = dict(copied.beacons)

    def to_document(self) -> RegistryDocument:
        """Deep copy of the whole registry in persisted-document form."""
        return RegistryDocument(devices=self._receivers, beacons=self._beacons).model_copy(deep=True)

    def clear(self) -> None:
        self._receivers.clear()
        self._beacons.clear()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def upsert_receiver(
        self,
        receiver_id: str,
        *,
        now: int,
        name: str | None = None,
        type: str | None = None,  # noqa: A002
        batch: int = 1,
        total_batches: int = 1,
    ) -> ReceiverRecord:
        """Create or refresh a receiver. Missing name/type fall back to defaults."""
        record = ReceiverRecord(
            name=name or receiver_id,
            type=type or DEFAULT_RECEIVER_TYPE,
            update=now,
            batch=batch,
            total_batches=total_batches,
        )
        self._receivers[receiver_id] = record
        return record.model_copy()

    def ensure_beacon(self, address: str, *, now: int, name: str | None = None) -> BeaconRecord:
        """Create the beacon on first sight; afterwards only a supplied name is applied.

        ``first_seen`` is set once and never changed.
        """
        beacon = self._beacons.get(address)
        if beacon is None:
            beacon = BeaconRecord(name=name, first_seen=now)
            self._beacons[address] = beacon
        elif name:
            beacon.name = name
        return beacon.model_copy(deep=True)

    def upsert_detection(self, address: str, receiver_id: str, detection: DetectionRecord, *, now: int) -> None:
        """Store *detection* as the single detection for (address, receiver_id).

        Creates the beacon if needed. The stored record is stamped with *now*.
        """
        beacon = self._beacons.get(address)
        if beacon is None:
            beacon = BeaconRecord(first_seen=now)
            self._beacons[address] = beacon
        beacon.detections[receiver_id] = detection.model_copy(
            update={"update_time": now, "last_seen": now, "last_update": None}
        )

    def remove_receiver(self, receiver_id: str) -> bool:
        return self._receivers.pop(receiver_id, None) is not None

    def remove_detection(self, address: str, receiver_id: str) -> bool:
        beacon = self._beacons.get(address)
        if beacon is None:
            return False
        return beacon.detections.pop(receiver_id, None) is not None

    def remove_beacon_if_empty(self, address: str) -> bool:
        beacon = self._beacons.get(address)
        if beacon is None or beacon.detections:
            return False
        del self._beacons[address]
        return True

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_beacon(self, address: str) -> BeaconRecord | None:
        beacon = self._beacons.get(address)
        return beacon.model_copy(deep=True) if beacon is not None else None

    def find_address_by_name(self, name: str) -> str | None:
        """Address of the first beacon (registry order) named exactly *name*."""
        for address, beacon in self._beacons.items():
            if beacon.name == name:
                return address
        return None

    def get_receiver(self, receiver_id: str) -> ReceiverRecord | None:
        receiver = self._receivers.get(receiver_id)
        return receiver.model_copy() if receiver is not None else None

    def all_beacons(self) -> dict[str, BeaconRecord]:
        return {address: beacon.model_copy(deep=True) for address, beacon in self._beacons.items()}

    def all_receivers(self) -> dict[str, ReceiverRecord]:
        return {receiver_id: receiver.model_copy() for receiver_id, receiver in self._receivers.items()}

    @property
    def beacon_count(self) -> int:
        return len(self._beacons)

    @property
    def receiver_count(self) -> int:
        return len(self._receivers)
