"""Internal constants shared across the library."""

#: Maximum age (ms) for a detection to be usable for display.
FRESHNESS_MS = 15_000

#: Maximum age (ms) for a detection or receiver to count as currently active.
ACTIVE_WINDOW_MS = 10_000

#: Maximum age (ms) before the reaper discards a receiver or detection.
RETENTION_MS = 30 * 60 * 1000

#: Seconds between two reaper sweeps.
REAP_INTERVAL_SECONDS = 30 * 60

#: RSSI assumed for a detection that carries no usable reading.
RSSI_FLOOR = -100

DEFAULT_RECEIVER_TYPE = "ESP32"
DEFAULT_TAG_PREFIX = "ESP-C3-"
DEFAULT_MQTT_TOPIC = "ble/+/report"
REPORT_DATA_TYPE = "ble_beacon_batch"

# ------------------------------------------------------------------
# Signal level buckets (dBm, inclusive lower bounds)
# ------------------------------------------------------------------

_SIGNAL_LEVELS: tuple[tuple[int, str], ...] = (
    (-60, "strong"),
    (-70, "medium"),
    (-80, "weak"),
)


def signal_level(rssi: int | None) -> str:
    """Bucket an RSSI reading into a coarse proximity label."""
    if rssi is None:
        return "very weak"
    for bound, label in _SIGNAL_LEVELS:
        if rssi >= bound:
            return label
    return "very weak"
