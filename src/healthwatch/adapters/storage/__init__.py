"""Storage adapters implementing core ports."""

from healthwatch.adapters.storage.in_memory import (
    InMemoryAlertRepository,
    InMemoryMetricRepository,
    InMemorySecurityLogRepository,
)
from healthwatch.adapters.storage.ring_buffer import RingBufferMetricRepository
from healthwatch.adapters.storage.sqlite_alerts import SQLiteAlertRepository
from healthwatch.adapters.storage.sqlite_metrics import SQLiteMetricRepository
from healthwatch.adapters.storage.sqlite_security import SQLiteSecurityLogRepository

__all__ = [
    "InMemoryAlertRepository",
    "InMemoryMetricRepository",
    "InMemorySecurityLogRepository",
    "RingBufferMetricRepository",
    "SQLiteAlertRepository",
    "SQLiteMetricRepository",
    "SQLiteSecurityLogRepository",
]
