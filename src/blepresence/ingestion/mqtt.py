"""MQTT ingestion helpers.

Translates decoded MQTT messages into receiver reports.
"""

from __future__ import annotations

from collections.abc import Mapping

from blepresence._constants import REPORT_DATA_TYPE
from blepresence._mqtt import MqttEvent
from blepresence.models.report import ReceiverReport


def is_report_event(payload: Mapping[str, object]) -> bool:
    """Whether a device event envelope carries a beacon batch.

    Flat reports (no ``event_data``) always qualify; envelopes must either
    omit ``data_type`` or declare ``ble_beacon_batch``.
    """
    event_data = payload.get("event_data")
    if not isinstance(event_data, Mapping):
        return True
    data_type = event_data.get("data_type")
    return data_type is None or data_type == REPORT_DATA_TYPE


def build_report_from_event(event: MqttEvent) -> ReceiverReport | None:
    """Build a report from an MQTT event, or ``None`` for other event types.

    The receiver ID captured from the topic is used when the payload has none.

    Raises
    ------
    ReportError
        If the payload cannot be validated as a report.
    """
    if not is_report_event(event.payload):
        return None
    return ReceiverReport.from_payload(event.payload, receiver_id=event.receiver_id, source=event.topic)
