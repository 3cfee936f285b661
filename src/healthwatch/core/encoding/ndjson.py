"""NDJSON encoder for alerts, health events, samples and security entries.

Field names follow the domain models and enum values are written verbatim
(``critical``, ``acknowledged``, ...), so existing consumers keep parsing
them.
"""

import json
from collections.abc import Callable, Iterable
from typing import Any, TypeVar

from healthwatch.core.models import (
    HealthAlert,
    HealthEvent,
    MetricSample,
    SecurityLogEntry,
)

T = TypeVar("T")


def alert_to_dict(alert: HealthAlert) -> dict[str, Any]:
    return {
        "id": alert.id,
        "type": str(alert.type),
        "level": str(alert.level),
        "state": str(alert.state),
        "service_name": alert.service_name,
        "message": alert.message,
        "triggered_at": alert.triggered_at,
        "acknowledged_at": alert.acknowledged_at,
        "resolved_at": alert.resolved_at,
        "updated_at": alert.updated_at,
        "metadata": alert.metadata,
    }


def health_event_to_dict(event: HealthEvent) -> dict[str, Any]:
    return {
        "service_name": event.service_name,
        "status": str(event.status),
        "value": event.value,
        "timestamp": event.timestamp,
        "error": event.error,
        "previous_status": str(event.previous_status) if event.previous_status else None,
    }


def sample_to_dict(sample: MetricSample) -> dict[str, Any]:
    return {
        "metric_type": sample.metric_type,
        "timestamp": sample.timestamp,
        "value": sample.value,
        "tags": sample.tags,
    }


def security_entry_to_dict(entry: SecurityLogEntry) -> dict[str, Any]:
    return {
        "id": entry.id,
        "event_type": entry.event_type,
        "severity": str(entry.severity),
        "description": entry.description,
        "actor": entry.actor,
        "ip_address": entry.ip_address,
        "user_agent": entry.user_agent,
        "metadata": entry.metadata,
        "status": str(entry.status),
        "created_at": entry.created_at,
    }


def encode_ndjson(items: Iterable[T], to_dict: Callable[[T], dict[str, Any]]) -> str:
    """Encode items to newline-delimited JSON.

    Args:
        items: Domain objects to encode.
        to_dict: Converts one item into a JSON-compatible dict.

    Returns:
        NDJSON string with one JSON object per line.
        Empty string if there are no items.
    """
    lines = [json.dumps(to_dict(item)) for item in items]
    if not lines:
        return ""
    return "\n".join(lines) + "\n"


def encode_alerts(alerts: Iterable[HealthAlert]) -> str:
    return encode_ndjson(alerts, alert_to_dict)


def encode_health_events(events: Iterable[HealthEvent]) -> str:
    return encode_ndjson(events, health_event_to_dict)


def encode_samples(samples: Iterable[MetricSample]) -> str:
    return encode_ndjson(samples, sample_to_dict)


def encode_security_entries(entries: Iterable[SecurityLogEntry]) -> str:
    return encode_ndjson(entries, security_entry_to_dict)
