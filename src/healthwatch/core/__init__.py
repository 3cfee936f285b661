"""Core domain: models, ports and the monitoring components."""

from healthwatch.core.aggregator import Aggregator
from healthwatch.core.alerts import AlertManager
from healthwatch.core.engine import MonitoringEngine, MonitorSettings
from healthwatch.core.health import HealthEvaluator
from healthwatch.core.metric_store import MetricStore
from healthwatch.core.security_log import SecurityAuditLog

__all__ = [
    "Aggregator",
    "AlertManager",
    "HealthEvaluator",
    "MetricStore",
    "MonitorSettings",
    "MonitoringEngine",
    "SecurityAuditLog",
]
