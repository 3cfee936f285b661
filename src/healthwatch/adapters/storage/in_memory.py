"""In-memory storage adapters for metrics, alerts and the security log."""

from collections.abc import AsyncIterable, Mapping
from dataclasses import replace

from healthwatch.core.models import (
    HealthAlert,
    MetricSample,
    MetricType,
    ReviewStatus,
    SecurityLogEntry,
    TimeRange,
)


def _sample_matches(
    sample: MetricSample,
    metric_type: str,
    time_range: TimeRange | None,
    tags: Mapping[str, str] | None,
) -> bool:
    if sample.metric_type != metric_type:
        return False
    if time_range is not None and not time_range.contains(sample.timestamp):
        return False
    if tags and any(sample.tags.get(label) != value for label, value in tags.items()):
        return False
    return True


class InMemoryMetricRepository:
    """In-memory implementation of MetricRepositoryPort.

    Stores samples in a list. Suitable for testing and
    low-volume applications where persistence is not required.
    """

    def __init__(self) -> None:
        self._types: dict[str, MetricType] = {}
        self._samples: list[MetricSample] = []

    async def save_type(self, metric_type: MetricType) -> None:
        self._types[metric_type.name] = metric_type

    async def get_type(self, name: str) -> MetricType | None:
        return self._types.get(name)

    async def list_types(self) -> AsyncIterable[MetricType]:
        for name in sorted(self._types):
            yield self._types[name]

    async def append(self, sample: MetricSample) -> None:
        """Append a metric sample to storage."""
        self._samples.append(sample)

    async def read_samples(
        self,
        metric_type: str,
        time_range: TimeRange | None = None,
        tags: Mapping[str, str] | None = None,
    ) -> AsyncIterable[MetricSample]:
        """Read samples ordered by timestamp, insertion order for ties."""
        matching = [s for s in self._samples if _sample_matches(s, metric_type, time_range, tags)]
        for sample in sorted(matching, key=lambda s: s.timestamp):
            yield sample

    async def delete_before(self, timestamp: float) -> int:
        before = len(self._samples)
        self._samples = [s for s in self._samples if s.timestamp >= timestamp]
        return before - len(self._samples)

    async def count(self) -> int:
        """Return total number of stored samples."""
        return len(self._samples)


class InMemoryAlertRepository:
    """In-memory implementation of AlertRepositoryPort."""

    def __init__(self) -> None:
        self._alerts: dict[str, HealthAlert] = {}

    async def save(self, alert: HealthAlert) -> None:
        self._alerts[alert.id] = alert

    async def get(self, alert_id: str) -> HealthAlert | None:
        return self._alerts.get(alert_id)

    async def find_active(self, service_name: str, alert_type: str) -> HealthAlert | None:
        for alert in self._alerts.values():
            if alert.is_active and alert.key == (service_name, alert_type):
                return alert
        return None

    async def read(self) -> AsyncIterable[HealthAlert]:
        """Read alerts ordered by triggered_at descending."""
        for alert in sorted(self._alerts.values(), key=lambda a: a.triggered_at, reverse=True):
            yield alert


class InMemorySecurityLogRepository:
    """In-memory implementation of SecurityLogRepositoryPort."""

    def __init__(self) -> None:
        self._entries: list[SecurityLogEntry] = []

    async def append(self, entry: SecurityLogEntry) -> None:
        self._entries.append(entry)

    async def get(self, entry_id: str) -> SecurityLogEntry | None:
        for entry in self._entries:
            if entry.id == entry_id:
                return entry
        return None

    async def set_status(self, entry_id: str, status: ReviewStatus) -> bool:
        for index, entry in enumerate(self._entries):
            if entry.id == entry_id:
                self._entries[index] = replace(entry, status=status)
                return True
        return False

    async def read(self, time_range: TimeRange | None = None) -> AsyncIterable[SecurityLogEntry]:
        """Read entries ordered by created_at descending, newest appended first on ties."""
        matching = [
            e for e in self._entries
            if time_range is None or time_range.contains(e.created_at or 0.0)
        ]
        for entry in reversed(sorted(matching, key=lambda e: e.created_at or 0.0)):
            yield entry
