"""Health checks, metric aggregation and alerting for monitored services."""

from healthwatch.adapters.clock import ManualClock, SystemClock
from healthwatch.adapters.events import InMemoryEventChannel
from healthwatch.adapters.logging import AuditLogHandler
from healthwatch.adapters.storage import (
    InMemoryAlertRepository,
    InMemoryMetricRepository,
    InMemorySecurityLogRepository,
    RingBufferMetricRepository,
    SQLiteAlertRepository,
    SQLiteMetricRepository,
    SQLiteSecurityLogRepository,
)
from healthwatch.core import (
    Aggregator,
    AlertManager,
    HealthEvaluator,
    MetricStore,
    MonitoringEngine,
    MonitorSettings,
    SecurityAuditLog,
)
from healthwatch.core.exceptions import (
    DuplicateTypeError,
    HealthwatchError,
    InsufficientDataError,
    InvalidStateError,
    NotFoundError,
    StorageUnavailableError,
    UnknownTypeError,
    UnsupportedMethodError,
    ValidationError,
)
from healthwatch.core.logs import get_logger
from healthwatch.core.models import (
    AlertLevel,
    AlertState,
    AlertType,
    DataType,
    HealthAlert,
    HealthEvent,
    HealthStatus,
    MetricSample,
    MetricType,
    ReviewStatus,
    SecurityLogEntry,
    Severity,
    TimeRange,
)
from healthwatch.factory import build_in_memory_engine, build_sqlite_engine

__all__ = [
    "Aggregator",
    "AlertLevel",
    "AlertManager",
    "AlertState",
    "AlertType",
    "AuditLogHandler",
    "DataType",
    "DuplicateTypeError",
    "HealthAlert",
    "HealthEvaluator",
    "HealthEvent",
    "HealthStatus",
    "HealthwatchError",
    "InMemoryAlertRepository",
    "InMemoryEventChannel",
    "InMemoryMetricRepository",
    "InMemorySecurityLogRepository",
    "InsufficientDataError",
    "InvalidStateError",
    "ManualClock",
    "MetricSample",
    "MetricStore",
    "MetricType",
    "MonitorSettings",
    "MonitoringEngine",
    "NotFoundError",
    "ReviewStatus",
    "RingBufferMetricRepository",
    "SQLiteAlertRepository",
    "SQLiteMetricRepository",
    "SQLiteSecurityLogRepository",
    "SecurityAuditLog",
    "SecurityLogEntry",
    "Severity",
    "StorageUnavailableError",
    "SystemClock",
    "TimeRange",
    "UnknownTypeError",
    "UnsupportedMethodError",
    "ValidationError",
    "build_in_memory_engine",
    "build_sqlite_engine",
    "get_logger",
]
