"""Port interfaces for storage and other collaborators.

These protocols define the contracts that adapters must implement.
The core domain depends only on these interfaces, not concrete implementations.
Storage adapters raise StorageUnavailableError when the backend fails.
"""

from collections.abc import AsyncIterable, Mapping
from typing import Protocol, runtime_checkable

from healthwatch.core.events import AlertEvent
from healthwatch.core.models import (
    HealthAlert,
    MetricSample,
    MetricType,
    ReviewStatus,
    SecurityLogEntry,
    TimeRange,
)


@runtime_checkable
class MetricRepositoryPort(Protocol):
    """Port for metric type and sample persistence.

    Examples: InMemoryMetricRepository, RingBufferMetricRepository,
    SQLiteMetricRepository.
    """

    async def save_type(self, metric_type: MetricType) -> None:
        """Insert or replace a metric type definition."""
        ...

    async def get_type(self, name: str) -> MetricType | None:
        """Return the metric type with the given name, or None."""
        ...

    def list_types(self) -> AsyncIterable[MetricType]:
        """Iterate all metric types ordered by name."""
        ...

    async def append(self, sample: MetricSample) -> None:
        """Append a sample. Never rejects duplicate timestamps."""
        ...

    def read_samples(
        self,
        metric_type: str,
        time_range: TimeRange | None = None,
        tags: Mapping[str, str] | None = None,
    ) -> AsyncIterable[MetricSample]:
        """Read samples of one metric type.

        Args:
            metric_type: Metric type name.
            time_range: Half-open ``[start, end)`` bound on timestamps.
            tags: Samples must carry every given label with the given value.

        Returns:
            AsyncIterable of samples ordered by timestamp ascending,
            insertion order for equal timestamps.
        """
        ...

    async def delete_before(self, timestamp: float) -> int:
        """Delete samples with timestamp < given value. Returns the count."""
        ...


@runtime_checkable
class AlertRepositoryPort(Protocol):
    """Port for alert persistence.

    ``save`` is the single write of a state transition and must be atomic.
    """

    async def save(self, alert: HealthAlert) -> None:
        """Insert or replace an alert by id."""
        ...

    async def get(self, alert_id: str) -> HealthAlert | None:
        """Return the alert with the given id, or None."""
        ...

    async def find_active(self, service_name: str, alert_type: str) -> HealthAlert | None:
        """Return the unresolved alert for a (service_name, type) key, or None."""
        ...

    def read(self) -> AsyncIterable[HealthAlert]:
        """Iterate all alerts ordered by triggered_at descending."""
        ...


@runtime_checkable
class SecurityLogRepositoryPort(Protocol):
    """Port for the append-only security log."""

    async def append(self, entry: SecurityLogEntry) -> None:
        """Append an entry that already carries id and created_at."""
        ...

    async def get(self, entry_id: str) -> SecurityLogEntry | None:
        """Return the entry with the given id, or None."""
        ...

    async def set_status(self, entry_id: str, status: ReviewStatus) -> bool:
        """Update the review status. Returns False if the entry is unknown."""
        ...

    def read(self, time_range: TimeRange | None = None) -> AsyncIterable[SecurityLogEntry]:
        """Iterate entries ordered by created_at descending."""
        ...


@runtime_checkable
class ClockPort(Protocol):
    """Source of the current time."""

    def now(self) -> float:
        """Return the current Unix timestamp in seconds."""
        ...


@runtime_checkable
class EventPublisherPort(Protocol):
    """Outbound channel for alert lifecycle events (notifications, queues)."""

    async def publish(self, event: AlertEvent) -> None:
        """Publish one event."""
        ...
