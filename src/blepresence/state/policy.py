"""Staleness policy.

Two thresholds are used for different purposes and are never collapsed:

- *freshness*: a detection is usable for display (ranked receivers),
- *active window*: a detection or receiver counts as currently active.

A third, much coarser *retention* threshold is used only by the reaper.
All comparisons are inclusive: an age equal to the threshold still passes.
"""

from __future__ import annotations

from datetime import datetime

from blepresence._constants import ACTIVE_WINDOW_MS, FRESHNESS_MS
from blepresence.ingestion.normalize import safe_int
from blepresence.models.registry import DetectionRecord

DEFAULT_FRESHNESS_MS = FRESHNESS_MS
DEFAULT_ACTIVE_WINDOW_MS = ACTIVE_WINDOW_MS


def parse_legacy_timestamp(text: str | None) -> int | None:
    """Parse ``YYYY/M/D H:M:S`` (local time, no offset) into epoch ms.

    Returns ``None`` when the text is missing or malformed.
    """
    if not text:
        return None
    try:
        date_part, time_part = text.strip().split()
        year, month, day = (int(part) for part in date_part.split("/"))
        hour, minute, second = (int(part) for part in time_part.split(":"))
        parsed = datetime(year, month, day, hour, minute, second)
    except (ValueError, TypeError):
        return None
    return int(parsed.timestamp() * 1000)


def format_timestamp(timestamp_ms: int | None) -> str:
    """Render epoch ms as local ``YYYY/M/D HH:MM:SS`` (the legacy pattern)."""
    if timestamp_ms is None:
        return ""
    try:
        moment = datetime.fromtimestamp(timestamp_ms / 1000)
    except (OverflowError, OSError, ValueError):
        return ""
    return f"{moment.year}/{moment.month}/{moment.day} {moment:%H:%M:%S}"


def resolve_timestamp(detection: DetectionRecord | None) -> int | None:
    """Observation time of *detection* in epoch ms.

    The numeric ``update_time`` wins; the legacy ``last_update`` string is
    the fallback. ``None`` means the detection cannot be dated.
    """
    if detection is None:
        return None
    if detection.update_time:
        return detection.update_time
    return parse_legacy_timestamp(detection.last_update)


def is_within(timestamp_ms: int | None, now: int, threshold_ms: int) -> bool:
    """Whether *timestamp_ms* is at most *threshold_ms* old at *now*."""
    ts = safe_int(timestamp_ms)
    if ts is None:
        return False
    return (now - ts) <= threshold_ms


def is_fresh(detection: DetectionRecord | None, now: int, threshold_ms: int = DEFAULT_FRESHNESS_MS) -> bool:
    """Whether *detection* is usable for display. Undatable detections are stale."""
    return is_within(resolve_timestamp(detection), now, threshold_ms)


def is_active(
    detection: DetectionRecord | None,
    now: int,
    window_ms: int = DEFAULT_ACTIVE_WINDOW_MS,
    *,
    require_online: bool = True,
) -> bool:
    """Whether *detection* counts as currently active.

    By default the receiver-asserted ``online`` flag must also be set.
    """
    if detection is None:
        return False
    if require_online and not detection.online:
        return False
    return is_within(resolve_timestamp(detection), now, window_ms)


def is_expired(timestamp_ms: int | None, now: int, retention_ms: int) -> bool:
    """Reaper test: older than *retention_ms*, or undatable."""
    return not is_within(timestamp_ms, now, retention_ms)
