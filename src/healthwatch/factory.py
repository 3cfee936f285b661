"""Ready-made engine assemblies."""

from healthwatch.adapters.clock import SystemClock
from healthwatch.adapters.events import InMemoryEventChannel
from healthwatch.adapters.storage import (
    InMemoryAlertRepository,
    InMemoryMetricRepository,
    InMemorySecurityLogRepository,
    RingBufferMetricRepository,
    SQLiteAlertRepository,
    SQLiteMetricRepository,
    SQLiteSecurityLogRepository,
)
from healthwatch.core.engine import MonitoringEngine, MonitorSettings
from healthwatch.core.ports import ClockPort, EventPublisherPort


def build_in_memory_engine(
    clock: ClockPort | None = None,
    publisher: EventPublisherPort | None = None,
    settings: MonitorSettings | None = None,
    max_samples: int | None = None,
) -> MonitoringEngine:
    """Engine backed by in-memory repositories.

    Args:
        clock: Defaults to SystemClock.
        publisher: Defaults to a fresh InMemoryEventChannel.
        settings: Engine settings.
        max_samples: Bound sample memory with a ring buffer of this size.
    """
    metrics = (
        RingBufferMetricRepository(max_samples)
        if max_samples is not None
        else InMemoryMetricRepository()
    )
    return MonitoringEngine(
        metrics,
        InMemoryAlertRepository(),
        InMemorySecurityLogRepository(),
        clock or SystemClock(),
        publisher=publisher if publisher is not None else InMemoryEventChannel(),
        settings=settings,
    )


def build_sqlite_engine(
    db_path: str,
    clock: ClockPort | None = None,
    publisher: EventPublisherPort | None = None,
    settings: MonitorSettings | None = None,
) -> MonitoringEngine:
    """Engine whose repositories share one SQLite database file.

    Call ``await engine.close()`` when done.
    """
    return MonitoringEngine(
        SQLiteMetricRepository(db_path),
        SQLiteAlertRepository(db_path),
        SQLiteSecurityLogRepository(db_path),
        clock or SystemClock(),
        publisher=publisher if publisher is not None else InMemoryEventChannel(),
        settings=settings,
    )
