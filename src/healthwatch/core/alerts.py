"""Alert lifecycle: open -> acknowledged -> resolved.

At most one unresolved alert exists per (service_name, type) key. Repeated
breaches update the open alert instead of creating another. Transitions for
one key are serialized by a per-key lock, so unrelated services never wait
on each other. Every transition is a single repository write; if that write
fails nothing changes and no event is published.
"""

import asyncio
import uuid
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from typing import Any

from healthwatch.core.events import (
    AlertAcknowledged,
    AlertEvent,
    AlertRaised,
    AlertResolved,
    AlertUpdated,
)
from healthwatch.core.exceptions import InvalidStateError, NotFoundError, ValidationError
from healthwatch.core.logs import get_logger, log_exception
from healthwatch.core.models import (
    AggregationSpec,
    AlertLevel,
    AlertState,
    AlertType,
    GroupKey,
    HealthAlert,
    HealthEvent,
    HealthStatus,
    SecurityLogEntry,
)
from healthwatch.core.ports import AlertRepositoryPort, ClockPort, EventPublisherPort
from healthwatch.core.thresholds import Comparison, ThresholdSet

logger = get_logger(__name__)

_STATUS_TO_LEVEL = {
    HealthStatus.CRITICAL: AlertLevel.CRITICAL,
    HealthStatus.WARNING: AlertLevel.WARNING,
}


def metric_alert_key(spec: AggregationSpec, group_key: GroupKey) -> str:
    """Render the alert key of an aggregation group, e.g. ``latency_ms:avg{region="eu"}``."""
    labels = ",".join(
        f'{label}="{value if value is not None else ""}"'
        for label, value in zip(spec.group_by, group_key)
    )
    base = f"{spec.metric_type}:{spec.method_name}"
    return f"{base}{{{labels}}}" if labels else base


@dataclass
class _KeyLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


def _parse_enum(enum_cls: Any, value: Any, name: str) -> Any:
    if value is None:
        return None
    try:
        return enum_cls(value)
    except ValueError as exc:
        raise ValidationError(f"invalid {name} {value!r}") from exc


class AlertManager:
    """Owns every alert state transition.

    Args:
        repository: Alert storage.
        clock: Time source.
        publisher: Receives AlertRaised/Updated/Acknowledged/Resolved events.
        alert_on_unknown: Treat an ``unknown`` health status as a warning
            breach instead of ignoring it.
    """

    def __init__(
        self,
        repository: AlertRepositoryPort,
        clock: ClockPort,
        publisher: EventPublisherPort | None = None,
        alert_on_unknown: bool = False,
    ) -> None:
        self._repository = repository
        self._clock = clock
        self._publisher = publisher
        self._alert_on_unknown = alert_on_unknown
        self._locks: dict[tuple[str, str], _KeyLock] = {}

    @asynccontextmanager
    async def _locked(self, key: tuple[str, str]) -> AsyncIterator[None]:
        """Hold the lock of one alert key.

        The lock is dropped from the table once no task holds or awaits it,
        so the table only holds keys with a transition in progress.
        """
        entry = self._locks.get(key)
        if entry is None:
            entry = self._locks[key] = _KeyLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0 and self._locks.get(key) is entry:
                del self._locks[key]

    async def _publish(self, event: AlertEvent) -> None:
        if self._publisher is None:
            return
        try:
            await self._publisher.publish(event)
        except Exception:
            # The transition is already committed.
            log_exception(
                logger, f"Failed to publish {event.name}", alert_id=event.alert.id
            )

    async def _breach(
        self,
        service_name: str,
        alert_type: str,
        level: AlertLevel,
        message: str,
        metadata: Mapping[str, Any],
    ) -> HealthAlert:
        key = (service_name, alert_type)
        async with self._locked(key):
            now = self._clock.now()
            current = await self._repository.find_active(service_name, alert_type)
            if current is None:
                alert = HealthAlert(
                    id=uuid.uuid4().hex,
                    type=alert_type,
                    level=level,
                    service_name=service_name,
                    message=message,
                    triggered_at=now,
                    updated_at=now,
                    metadata={**metadata, "occurrences": 1},
                )
                await self._repository.save(alert)
                logger.info(
                    "Alert raised for %s (%s, %s)", service_name, alert_type, level,
                    extra={"alert_id": alert.id, "service_name": service_name},
                )
                await self._publish(AlertRaised(alert))
            else:
                alert = replace(
                    current,
                    level=level,
                    message=message,
                    updated_at=now,
                    metadata={
                        **metadata,
                        "occurrences": int(current.metadata.get("occurrences", 1)) + 1,
                    },
                )
                await self._repository.save(alert)
                await self._publish(AlertUpdated(alert))
        return alert

    async def _recover(self, service_name: str, alert_type: str) -> HealthAlert | None:
        async with self._locked((service_name, alert_type)):
            current = await self._repository.find_active(service_name, alert_type)
            if current is None:
                return None
            now = self._clock.now()
            alert = replace(
                current,
                resolved_at=now,
                updated_at=now,
                metadata={**current.metadata, "resolution": "auto"},
            )
            await self._repository.save(alert)
            logger.info(
                "Alert auto-resolved for %s (%s)", service_name, alert_type,
                extra={"alert_id": alert.id, "service_name": service_name},
            )
            await self._publish(AlertResolved(alert, auto=True))
        return alert

    async def on_health_event(self, event: HealthEvent) -> HealthAlert | None:
        """Open, update or auto-resolve the health alert of a service.

        Returns:
            The alert after the transition, or None when nothing changed.
        """
        if event.status is HealthStatus.OK:
            return await self._recover(event.service_name, AlertType.HEALTH)
        if event.status is HealthStatus.UNKNOWN and not self._alert_on_unknown:
            return None
        level = _STATUS_TO_LEVEL.get(event.status, AlertLevel.WARNING)
        message = f"{event.service_name} is {event.status}"
        if event.value is not None:
            message += f" (value {event.value:g})"
        elif event.error:
            message += f": {event.error}"
        metadata: dict[str, Any] = {
            "status": str(event.status),
            "value": event.value,
            "observed_at": event.timestamp,
        }
        if event.error:
            metadata["error"] = event.error
        return await self._breach(event.service_name, AlertType.HEALTH, level, message, metadata)

    async def on_aggregation_breach(
        self,
        spec: AggregationSpec,
        group_key: GroupKey,
        value: float | None,
        threshold: Mapping[str, str | Comparison] | ThresholdSet | Comparison | str,
    ) -> HealthAlert | None:
        """Evaluate one aggregate against its threshold.

        A breaching value opens or updates the metric alert for the group; a
        value that no longer breaches (or is None) auto-resolves it.
        """
        thresholds = ThresholdSet.from_mapping(threshold)
        name = metric_alert_key(spec, group_key)
        level = thresholds.classify(value) if value is not None else None
        if level is None:
            return await self._recover(name, AlertType.METRIC)
        comparison = thresholds.comparison_for(level)
        message = f"{spec.method_name} of {spec.metric_type} is {value:g} ({comparison})"
        metadata = {
            "metric_type": spec.metric_type,
            "method": spec.method_name,
            "group": dict(zip(spec.group_by, group_key)),
            "value": value,
            "threshold": str(comparison),
            "window": spec.window,
        }
        return await self._breach(name, AlertType.METRIC, level, message, metadata)

    async def on_security_event(self, entry: SecurityLogEntry) -> HealthAlert:
        """Open or update the security alert for the entry's event type."""
        metadata = {
            "entry_id": entry.id,
            "severity": str(entry.severity),
            "actor": entry.actor,
            "ip_address": entry.ip_address,
        }
        return await self._breach(
            entry.event_type, AlertType.SECURITY, AlertLevel.CRITICAL, entry.description, metadata
        )

    async def get(self, alert_id: str) -> HealthAlert:
        """Raises NotFoundError for unknown ids."""
        alert = await self._repository.get(alert_id)
        if alert is None:
            raise NotFoundError(f"unknown alert {alert_id!r}")
        return alert

    async def acknowledge(self, alert_id: str) -> HealthAlert:
        """Acknowledge an open alert; a no-op on an acknowledged one.

        Raises:
            NotFoundError: If the alert does not exist.
            InvalidStateError: If the alert is resolved.
        """
        alert = await self.get(alert_id)
        async with self._locked(alert.key):
            current = await self.get(alert_id)
            if current.state is AlertState.RESOLVED:
                raise InvalidStateError(f"alert {alert_id} is resolved")
            if current.state is AlertState.ACKNOWLEDGED:
                return current
            updated = replace(current, acknowledged_at=self._clock.now())
            await self._repository.save(updated)
            logger.info("Alert %s acknowledged", alert_id, extra={"alert_id": alert_id})
            await self._publish(AlertAcknowledged(updated))
        return updated

    async def resolve(self, alert_id: str) -> HealthAlert:
        """Resolve an open or acknowledged alert.

        Raises:
            NotFoundError: If the alert does not exist.
            InvalidStateError: If the alert is already resolved.
        """
        alert = await self.get(alert_id)
        async with self._locked(alert.key):
            current = await self.get(alert_id)
            if current.state is AlertState.RESOLVED:
                raise InvalidStateError(f"alert {alert_id} is already resolved")
            now = self._clock.now()
            updated = replace(
                current,
                resolved_at=now,
                updated_at=now,
                metadata={**current.metadata, "resolution": "manual"},
            )
            await self._repository.save(updated)
            logger.info("Alert %s resolved", alert_id, extra={"alert_id": alert_id})
            await self._publish(AlertResolved(updated))
        return updated

    async def list_alerts(
        self,
        level: AlertLevel | str | None = None,
        service_name: str | None = None,
        type: str | None = None,
        state: AlertState | str | None = None,
    ) -> list[HealthAlert]:
        """Alerts matching every given filter, newest triggered_at first.

        Raises:
            ValidationError: On an unknown level or state.
        """
        wanted_level = _parse_enum(AlertLevel, level, "level")
        wanted_state = _parse_enum(AlertState, state, "state")
        return [
            alert
            async for alert in self._repository.read()
            if (wanted_level is None or alert.level == wanted_level)
            and (service_name is None or alert.service_name == service_name)
            and (type is None or alert.type == type)
            and (wanted_state is None or alert.state is wanted_state)
        ]

    async def active_alerts(self) -> list[HealthAlert]:
        """Unresolved alerts, newest first."""
        return [alert async for alert in self._repository.read() if alert.is_active]
