"""Core domain models for monitoring data."""

import math
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from healthwatch.core.validation import ValidationRule

# Samples, tags and metadata stay JSON-compatible so storage and wire
# encoders can round-trip them.
SampleValue = float | int | str | bool
Tags = dict[str, str]
GroupKey = tuple[str | None, ...]
TagPredicate = Callable[[str | None], bool]


class DataType(StrEnum):
    NUMERIC = "numeric"
    STRING = "string"
    BOOLEAN = "boolean"


class AggregationMethod(StrEnum):
    SUM = "sum"
    AVG = "avg"
    MIN = "min"
    MAX = "max"
    COUNT = "count"
    PERCENTILE = "percentile"


class HealthStatus(StrEnum):
    OK = "ok"
    WARNING = "warning"
    CRITICAL = "critical"
    UNKNOWN = "unknown"


class AlertLevel(StrEnum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class AlertState(StrEnum):
    OPEN = "open"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"


class AlertType(StrEnum):
    HEALTH = "health"
    METRIC = "metric"
    SECURITY = "security"


class Severity(StrEnum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class ReviewStatus(StrEnum):
    PENDING = "pending"
    REVIEWED = "reviewed"
    ACTIONED = "actioned"


@dataclass(frozen=True)
class TimeRange:
    """Half-open time interval ``[start, end)``.

    Attributes:
        start: Inclusive lower bound (Unix seconds), or None for unbounded.
        end: Exclusive upper bound (Unix seconds), or None for unbounded.
    """

    start: float | None = None
    end: float | None = None

    def contains(self, timestamp: float) -> bool:
        if self.start is not None and timestamp < self.start:
            return False
        if self.end is not None and timestamp >= self.end:
            return False
        return True


@dataclass(frozen=True)
class MetricType:
    """Definition of a metric that samples are recorded under.

    Attributes:
        name: Unique identifier (e.g., latency_ms).
        data_type: Shape every sample value must have.
        description: Human readable description.
        unit: Unit of measurement (e.g., ms, percent).
        validation_rules: Rules each sample value must satisfy.
        aggregation_methods: Method names aggregations may use.
    """

    name: str
    data_type: DataType
    description: str = ""
    unit: str = ""
    validation_rules: tuple[ValidationRule, ...] = ()
    aggregation_methods: frozenset[str] = frozenset()


@dataclass(frozen=True)
class MetricSample:
    """A single recorded observation.

    Attributes:
        metric_type: Name of the MetricType this sample belongs to.
        timestamp: Unix timestamp in seconds.
        value: The observed value, typed per the metric's data type.
        tags: Dimension labels used for filtering and grouping.
    """

    metric_type: str
    timestamp: float
    value: SampleValue
    tags: Tags = field(default_factory=dict)


@dataclass(frozen=True)
class AggregationSpec:
    """Declarative description of a windowed aggregation.

    Attributes:
        id: Identifier used for caching and single-flight.
        metric_type: Name of the aggregated metric type.
        method: Aggregation method.
        window: Window length in seconds.
        group_by: Ordered tag labels forming the group key.
        filters: Tag label to predicate; samples must pass all of them.
        optional_labels: group_by labels allowed to be missing (key holds None).
        percentile: Percentile rank in (0, 100] for the percentile method.
        min_samples: Minimum samples a percentile group requires, if any.
    """

    id: str
    metric_type: str
    method: AggregationMethod
    window: float
    group_by: tuple[str, ...] = ()
    filters: dict[str, TagPredicate] = field(default_factory=dict)
    optional_labels: frozenset[str] = frozenset()
    percentile: float | None = None
    min_samples: int | None = None

    @property
    def method_name(self) -> str:
        """Method name as written by users, e.g. ``avg`` or ``p95``."""
        if self.method is AggregationMethod.PERCENTILE and self.percentile is not None:
            return f"p{self.percentile:g}"
        return str(self.method)


@dataclass(frozen=True)
class AggregationResult:
    """Cached output of an aggregation over one window."""

    spec_id: str
    values: dict[GroupKey, float | None]
    window_start: float
    window_end: float
    computed_at: float

    def is_fresh(self, now: float, window: float) -> bool:
        return now < self.computed_at + window


@dataclass(frozen=True)
class MetricStatistics:
    """Summary statistics over a set of numeric samples."""

    count: int
    sum: float
    avg: float
    min: float | None
    max: float | None


@dataclass(frozen=True)
class WindowComparison:
    """An aggregate for the current window next to the previous window."""

    current: dict[GroupKey, float | None]
    previous: dict[GroupKey, float | None]
    absolute_change: dict[GroupKey, float]
    percentage_change: dict[GroupKey, float]


@dataclass(frozen=True)
class DistributionBucket:
    """Equal-width histogram bucket; ``upper`` is inclusive for the last one."""

    lower: float
    upper: float
    count: int


@dataclass(frozen=True)
class HealthEvent:
    """Result of one health evaluation.

    Attributes:
        service_name: Name of the evaluated service.
        status: Classified health status.
        value: Numeric probe signal, None when the probe failed.
        timestamp: Unix timestamp of the evaluation.
        error: Failure description when status is unknown.
        previous_status: Last known status before this evaluation.
    """

    service_name: str
    status: HealthStatus
    value: float | None
    timestamp: float
    error: str | None = None
    previous_status: HealthStatus | None = None

    @property
    def is_transition(self) -> bool:
        return self.status != self.previous_status


@dataclass(frozen=True)
class SystemHealth:
    """Roll-up of all registered services."""

    overall_status: HealthStatus
    events: list[HealthEvent] = field(default_factory=list)


@dataclass(frozen=True)
class HealthAlert:
    """An alert and its lifecycle timestamps.

    The state is derived: resolved once ``resolved_at`` is set, acknowledged
    once ``acknowledged_at`` is set, open otherwise.
    """

    id: str
    type: str
    level: AlertLevel
    service_name: str
    message: str
    triggered_at: float
    acknowledged_at: float | None = None
    resolved_at: float | None = None
    updated_at: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def state(self) -> AlertState:
        if self.resolved_at is not None:
            return AlertState.RESOLVED
        if self.acknowledged_at is not None:
            return AlertState.ACKNOWLEDGED
        return AlertState.OPEN

    @property
    def is_active(self) -> bool:
        return self.resolved_at is None

    @property
    def key(self) -> tuple[str, str]:
        return (self.service_name, self.type)


@dataclass(frozen=True)
class SecurityLogEntry:
    """A security-relevant event.

    Attributes:
        event_type: Category (e.g., auth_failure, permission_denied).
        severity: info, warning or critical.
        description: Human readable description.
        actor: Reference to the acting user, if known.
        ip_address: Source address, if known.
        user_agent: Client user agent, if known.
        metadata: Additional structured fields.
        status: Review status; the only field that changes after append.
        id: Assigned by the audit log on append.
        created_at: Assigned by the audit log on append when missing.
    """

    event_type: str
    severity: Severity
    description: str
    actor: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    status: ReviewStatus = ReviewStatus.PENDING
    id: str | None = None
    created_at: float | None = None


def is_finite_number(value: object) -> bool:
    """True for int/float values that are not bool, NaN or infinite."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)
