"""Tests for NDJSON encoding."""

import json

import pytest

from healthwatch.core.encoding.ndjson import (
    encode_alerts,
    encode_health_events,
    encode_ndjson,
    encode_samples,
    encode_security_entries,
)
from healthwatch.core.models import (
    AlertLevel,
    AlertType,
    HealthAlert,
    HealthEvent,
    HealthStatus,
    MetricSample,
    SecurityLogEntry,
    Severity,
)


@pytest.mark.core
class TestNdjsonEncoder:
    """Tests for the NDJSON encoders."""

    def test_empty_input_is_empty_string(self) -> None:
        assert encode_alerts([]) == ""
        assert encode_ndjson([], dict) == ""

    def test_one_object_per_line_with_trailing_newline(self) -> None:
        samples = [
            MetricSample("cpu", 1.0, 0.5, {"host": "a"}),
            MetricSample("cpu", 2.0, 0.7),
        ]

        body = encode_samples(samples)

        assert body.endswith("\n")
        lines = body.splitlines()
        assert len(lines) == 2
        assert json.loads(lines[0]) == {
            "metric_type": "cpu",
            "timestamp": 1.0,
            "value": 0.5,
            "tags": {"host": "a"},
        }

    def test_alert_fields_and_enum_values_are_verbatim(self) -> None:
        alert = HealthAlert(
            id="a1",
            type=AlertType.HEALTH,
            level=AlertLevel.CRITICAL,
            service_name="api",
            message="api is critical",
            triggered_at=10.0,
            acknowledged_at=11.0,
            metadata={"occurrences": 1},
        )

        obj = json.loads(encode_alerts([alert]))

        assert obj["level"] == "critical"
        assert obj["type"] == "health"
        assert obj["state"] == "acknowledged"
        assert obj["resolved_at"] is None
        assert obj["metadata"] == {"occurrences": 1}

    def test_health_event(self) -> None:
        event = HealthEvent("api", HealthStatus.UNKNOWN, None, 5.0, error="timeout")

        obj = json.loads(encode_health_events([event]))

        assert obj == {
            "service_name": "api",
            "status": "unknown",
            "value": None,
            "timestamp": 5.0,
            "error": "timeout",
            "previous_status": None,
        }

    def test_security_entry(self) -> None:
        entry = SecurityLogEntry(
            "auth_failure", Severity.WARNING, "bad password", actor="bob", id="s1", created_at=3.0
        )

        obj = json.loads(encode_security_entries([entry]))

        assert obj["severity"] == "warning"
        assert obj["status"] == "pending"
        assert obj["actor"] == "bob"
        assert obj["created_at"] == 3.0
