"""Ingestion layer.

Adapters that receive receiver reports (MQTT, HTTP), normalize them, and
merge them into the registry.
"""

__all__: list[str] = []
