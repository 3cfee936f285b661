"""Shared test fixtures for all test modules."""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest

from healthwatch.adapters.clock import ManualClock
from healthwatch.adapters.events import InMemoryEventChannel
from healthwatch.adapters.storage.in_memory import (
    InMemoryAlertRepository,
    InMemoryMetricRepository,
    InMemorySecurityLogRepository,
)
from healthwatch.core.aggregator import Aggregator
from healthwatch.core.alerts import AlertManager
from healthwatch.core.engine import MonitoringEngine, MonitorSettings
from healthwatch.core.metric_store import MetricStore
from healthwatch.factory import build_in_memory_engine

try:
    import httpx
except ImportError:
    httpx = None

# Fixed start time so assertions can use literal timestamps
T0 = 1_700_000_000.0


@pytest.fixture
def clock() -> ManualClock:
    """A manual clock starting at T0."""
    return ManualClock(T0)


@pytest.fixture
def metric_repository() -> InMemoryMetricRepository:
    return InMemoryMetricRepository()


@pytest.fixture
def alert_repository() -> InMemoryAlertRepository:
    return InMemoryAlertRepository()


@pytest.fixture
def security_repository() -> InMemorySecurityLogRepository:
    return InMemorySecurityLogRepository()


@pytest.fixture
def channel() -> InMemoryEventChannel:
    """Event channel recording every published alert event."""
    return InMemoryEventChannel()


@pytest.fixture
def metric_store(metric_repository: InMemoryMetricRepository, clock: ManualClock) -> MetricStore:
    return MetricStore(metric_repository, clock)


@pytest.fixture
def aggregator(metric_store: MetricStore, clock: ManualClock) -> Aggregator:
    return Aggregator(metric_store, clock)


@pytest.fixture
def alert_manager(
    alert_repository: InMemoryAlertRepository,
    clock: ManualClock,
    channel: InMemoryEventChannel,
) -> AlertManager:
    return AlertManager(alert_repository, clock, publisher=channel)


@pytest.fixture
def engine(clock: ManualClock, channel: InMemoryEventChannel) -> MonitoringEngine:
    """In-memory engine on the manual clock."""
    return build_in_memory_engine(
        clock=clock, publisher=channel, settings=MonitorSettings(probe_timeout=0.5)
    )


@pytest.fixture
def sqlite_db_path(tmp_path: Path) -> str:
    """Provide a temporary database path for SQLite storage tests."""
    return str(tmp_path / "healthwatch.db")


@pytest.fixture
def asgi_test_client():
    """Factory fixture that creates an httpx.AsyncClient for ASGI testing.

    Usage:
        async def test_something(asgi_test_client):
            async with asgi_test_client(app) as client:
                response = await client.get("/endpoint")
    """
    if httpx is None:
        pytest.skip("httpx not installed")

    def _get_client(app):
        """Return an AsyncClient context manager for the given app."""
        return httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app), base_url="http://test"
        )

    return _get_client


@pytest.fixture
async def sqlite_engine(sqlite_db_path: str, clock: ManualClock) -> AsyncGenerator[MonitoringEngine]:
    """File-backed SQLite engine, closed after the test."""
    from healthwatch.factory import build_sqlite_engine

    engine = build_sqlite_engine(sqlite_db_path, clock=clock)
    yield engine
    await engine.close()
