"""Composition of the monitoring components.

MonitoringEngine wires MetricStore, Aggregator, HealthEvaluator,
AlertManager and SecurityAuditLog from explicit collaborators. It holds no
global state, so tests build as many independent engines as they need.
"""

from collections.abc import Mapping
from dataclasses import dataclass

from healthwatch.core.aggregator import Aggregator
from healthwatch.core.alerts import AlertManager
from healthwatch.core.health import (
    DEFAULT_FAILURE_METRIC,
    DEFAULT_PROBE_TIMEOUT,
    HealthEvaluator,
)
from healthwatch.core.logs import get_logger
from healthwatch.core.metric_store import MetricStore
from healthwatch.core.models import (
    AggregationResult,
    AggregationSpec,
    GroupKey,
    HealthAlert,
    SystemHealth,
)
from healthwatch.core.ports import (
    AlertRepositoryPort,
    ClockPort,
    EventPublisherPort,
    MetricRepositoryPort,
    SecurityLogRepositoryPort,
)
from healthwatch.core.security_log import SecurityAuditLog
from healthwatch.core.thresholds import Comparison, ThresholdSet

logger = get_logger(__name__)


@dataclass(frozen=True)
class MonitorSettings:
    """Engine-wide configuration.

    Attributes:
        probe_timeout: Default probe timeout in seconds.
        alert_on_unknown: Raise warning alerts for ``unknown`` health.
        failure_metric: Metric type recording failed probes.
        sample_retention: Max sample age in seconds for ``run_due``;
            None keeps samples forever.
    """

    probe_timeout: float = DEFAULT_PROBE_TIMEOUT
    alert_on_unknown: bool = False
    failure_metric: str = DEFAULT_FAILURE_METRIC
    sample_retention: float | None = None


class MonitoringEngine:
    """The five monitoring components sharing one set of adapters."""

    def __init__(
        self,
        metric_repository: MetricRepositoryPort,
        alert_repository: AlertRepositoryPort,
        security_repository: SecurityLogRepositoryPort,
        clock: ClockPort,
        publisher: EventPublisherPort | None = None,
        settings: MonitorSettings | None = None,
    ) -> None:
        self.settings = settings or MonitorSettings()
        self.clock = clock
        self.metric_store = MetricStore(metric_repository, clock)
        self.aggregator = Aggregator(self.metric_store, clock)
        self.alerts = AlertManager(
            alert_repository,
            clock,
            publisher=publisher,
            alert_on_unknown=self.settings.alert_on_unknown,
        )
        self.health = HealthEvaluator(
            clock,
            metric_store=self.metric_store,
            default_timeout=self.settings.probe_timeout,
            failure_metric=self.settings.failure_metric,
        )
        self.health.add_listener(self.alerts.on_health_event)
        self.security_log = SecurityAuditLog(security_repository, clock, self.alerts)
        self._repositories = (metric_repository, alert_repository, security_repository)
        self._alerted: dict[str, set[GroupKey]] = {}
        self._checked: dict[str, tuple[AggregationResult, ThresholdSet]] = {}

    async def check_aggregation(
        self,
        spec: AggregationSpec,
        thresholds: Mapping[str, str | Comparison] | ThresholdSet | Comparison | str,
    ) -> list[HealthAlert]:
        """Compare every group of an aggregation against thresholds.

        Groups alerted on by an earlier check that no longer appear in the
        window are treated as non-breaching and auto-resolve. A cached
        result already checked against the same thresholds is not checked
        again, so it never counts as a repeated breach.

        Returns:
            Alerts opened, updated or resolved by this check.
        """
        parsed = ThresholdSet.from_mapping(thresholds)
        result = await self.aggregator.get_or_compute(spec)
        checked = self._checked.get(spec.id)
        if checked is not None and checked[0] is result and checked[1] == parsed:
            return []
        tracked = self._alerted.setdefault(spec.id, set())
        changed: list[HealthAlert] = []
        for group_key in set(result.values) | tracked:
            value = result.values.get(group_key)
            alert = await self.alerts.on_aggregation_breach(spec, group_key, value, parsed)
            if alert is None:
                tracked.discard(group_key)
                continue
            changed.append(alert)
            if alert.is_active:
                tracked.add(group_key)
            else:
                tracked.discard(group_key)
        self._checked[spec.id] = (result, parsed)
        return changed

    async def run_due(self) -> SystemHealth:
        """One scheduler tick: evaluate due services and apply retention."""
        events = [await self.health.evaluate(name) for name in self.health.due_services()]
        if self.settings.sample_retention is not None:
            await self.metric_store.apply_retention(self.settings.sample_retention)
        return SystemHealth(overall_status=self.health.overall_status(), events=events)

    async def close(self) -> None:
        """Release adapter resources (e.g. SQLite connections)."""
        closed: set[int] = set()
        for repository in self._repositories:
            close = getattr(repository, "close", None)
            if close is None or id(repository) in closed:
                continue
            closed.add(id(repository))
            await close()
        logger.debug("Monitoring engine closed")
