"""Service health evaluation against thresholds.

The evaluator does no scheduling of its own: an external scheduler calls
``evaluate`` (or ``evaluate_all``) per service interval and can ask
``due_services`` which services are due. Between calls the evaluator only
keeps the last known status per service, used to forward status
transitions (not steady states) to its listeners.
"""

import asyncio
import inspect
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from healthwatch.core.durations import parse_duration
from healthwatch.core.exceptions import (
    DuplicateTypeError,
    NotFoundError,
    UnknownTypeError,
    ValidationError,
)
from healthwatch.core.logs import get_logger
from healthwatch.core.metric_store import MetricStore
from healthwatch.core.models import (
    AlertLevel,
    DataType,
    HealthEvent,
    HealthStatus,
    SystemHealth,
    is_finite_number,
)
from healthwatch.core.ports import ClockPort
from healthwatch.core.thresholds import Comparison, ThresholdSet, worst_status

logger = get_logger(__name__)

DEFAULT_PROBE_TIMEOUT = 5.0
DEFAULT_FAILURE_METRIC = "health_check_failures"

ProbeSignal = float | int | bool
CheckFn = Callable[[], ProbeSignal | Awaitable[ProbeSignal]]
HealthListener = Callable[[HealthEvent], Awaitable[Any]]

# A falsy signal (False or 0) is critical when no thresholds are given.
_DEFAULT_THRESHOLDS = ThresholdSet(levels=((AlertLevel.CRITICAL, Comparison("==", 0.0)),))

_LEVEL_TO_STATUS = {
    AlertLevel.CRITICAL: HealthStatus.CRITICAL,
    AlertLevel.WARNING: HealthStatus.WARNING,
}


class ProbeError(Exception):
    """The probe returned something that is not a health signal."""


@dataclass
class ServiceRegistration:
    """A monitored service and its probe configuration."""

    name: str
    check_fn: CheckFn
    interval: float
    thresholds: ThresholdSet
    timeout: float | None = None
    last_evaluated_at: float | None = None
    # Evaluation order: number of evaluations started, and the latest one applied
    started: int = field(default=0, repr=False)
    applied: int = field(default=0, repr=False)


class HealthEvaluator:
    """Runs probes and classifies their signal into a HealthStatus.

    Args:
        clock: Time source.
        metric_store: When given, probe failures are recorded as samples of
            the ``failure_metric`` type (tags: service, reason).
        default_timeout: Probe timeout for services registered without one.
        failure_metric: Name of the metric type recording probe failures.
    """

    def __init__(
        self,
        clock: ClockPort,
        metric_store: MetricStore | None = None,
        default_timeout: float = DEFAULT_PROBE_TIMEOUT,
        failure_metric: str = DEFAULT_FAILURE_METRIC,
    ) -> None:
        self._clock = clock
        self._metric_store = metric_store
        self._default_timeout = default_timeout
        self._failure_metric = failure_metric
        self._failure_type_ready = False
        self._services: dict[str, ServiceRegistration] = {}
        self._last_status: dict[str, HealthStatus] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._listeners: list[HealthListener] = []

    def add_listener(self, listener: HealthListener) -> None:
        """Receive every status transition (e.g. AlertManager.on_health_event)."""
        self._listeners.append(listener)

    def register_service(
        self,
        name: str,
        check_fn: CheckFn,
        interval: float | str,
        thresholds: Mapping[str, str | Comparison] | ThresholdSet | None = None,
        timeout: float | str | None = None,
    ) -> ServiceRegistration:
        """Register a service probe.

        Args:
            name: Unique service name.
            check_fn: Sync or async callable returning a number or bool.
            interval: Evaluation interval for the external scheduler.
            thresholds: Level to comparison, e.g. ``{"critical": "> 500"}``.
                Defaults to ``{"critical": "== false"}``.
            timeout: Probe timeout; defaults to the evaluator's default.

        Raises:
            ValidationError: On duplicate names or malformed arguments.
        """
        if not name:
            raise ValidationError("service name must be non-empty")
        if name in self._services:
            raise ValidationError(f"service {name!r} is already registered")
        if not callable(check_fn):
            raise ValidationError("check_fn must be callable")
        parsed = ThresholdSet.from_mapping(thresholds) if thresholds else _DEFAULT_THRESHOLDS
        registration = ServiceRegistration(
            name=name,
            check_fn=check_fn,
            interval=parse_duration(interval),
            thresholds=parsed,
            timeout=parse_duration(timeout) if timeout is not None else None,
        )
        self._services[name] = registration
        self._locks[name] = asyncio.Lock()
        return registration

    def unregister_service(self, name: str) -> None:
        if self._services.pop(name, None) is None:
            raise NotFoundError(f"unknown service {name!r}")
        self._last_status.pop(name, None)
        self._locks.pop(name, None)

    def services(self) -> list[ServiceRegistration]:
        return list(self._services.values())

    def last_status(self, name: str) -> HealthStatus | None:
        return self._last_status.get(name)

    def overall_status(self) -> HealthStatus:
        """Worst last known status across services (ok when none evaluated)."""
        return worst_status(self._last_status.values())

    def due_services(self, now: float | None = None) -> list[str]:
        """Names of services whose interval elapsed since their last evaluation."""
        now = self._clock.now() if now is None else now
        return [
            reg.name
            for reg in self._services.values()
            if reg.last_evaluated_at is None or now - reg.last_evaluated_at >= reg.interval
        ]

    async def _probe(self, registration: ServiceRegistration) -> float:
        timeout = registration.timeout or self._default_timeout
        if inspect.iscoroutinefunction(registration.check_fn):
            signal = await asyncio.wait_for(registration.check_fn(), timeout)
        else:
            # Sync probes run in a worker thread so the timeout can fire.
            signal = await asyncio.wait_for(asyncio.to_thread(registration.check_fn), timeout)
            if inspect.isawaitable(signal):
                signal = await asyncio.wait_for(signal, timeout)
        if isinstance(signal, bool):
            return 1.0 if signal else 0.0
        if not is_finite_number(signal):
            raise ProbeError(f"probe returned a non-numeric signal: {signal!r}")
        return float(signal)

    def classify(self, registration: ServiceRegistration, value: float | None) -> HealthStatus:
        if value is None:
            return HealthStatus.UNKNOWN
        level = registration.thresholds.classify(value)
        return _LEVEL_TO_STATUS.get(level, HealthStatus.OK)

    async def evaluate(self, service_name: str) -> HealthEvent:
        """Run the service probe once and classify the result.

        Probe exceptions, timeouts and non-numeric signals yield status
        ``unknown``; they are recorded as a failure metric and never raised.
        Transitions are forwarded to listeners before the last known status
        advances, so a failed forward is retried on the next evaluation.

        Concurrent evaluations of one service may finish out of order. A
        result from an evaluation started before the last applied one is
        returned but neither forwarded nor stored, and so is a result for a
        service unregistered while its probe ran.

        Raises:
            NotFoundError: If the service is not registered.
        """
        registration = self._services.get(service_name)
        if registration is None:
            raise NotFoundError(f"unknown service {service_name!r}")
        lock = self._locks[service_name]
        registration.started += 1
        ticket = registration.started

        timestamp = self._clock.now()
        value: float | None = None
        error: str | None = None
        reason: str | None = None
        try:
            value = await self._probe(registration)
        except TimeoutError:
            timeout = registration.timeout or self._default_timeout
            error, reason = f"probe timed out after {timeout:g}s", "timeout"
        except Exception as exc:
            error, reason = f"{type(exc).__name__}: {exc}", "error"
        if error is not None:
            logger.warning(
                "Health check failed for %s: %s", service_name, error,
                extra={"service_name": service_name, "reason": reason},
            )

        status = self.classify(registration, value)
        async with lock:
            registered = self._services.get(service_name) is registration
            event = HealthEvent(
                service_name=service_name,
                status=status,
                value=value,
                timestamp=timestamp,
                error=error,
                previous_status=self._last_status.get(service_name) if registered else None,
            )
            if not registered or ticket < registration.applied:
                logger.debug(
                    "Discarding superseded result for %s", service_name,
                    extra={"service_name": service_name, "registered": registered},
                )
            else:
                if event.is_transition:
                    logger.info(
                        "Service %s changed %s -> %s", service_name,
                        event.previous_status or "none", status,
                        extra={"service_name": service_name},
                    )
                    for listener in self._listeners:
                        await listener(event)
                self._last_status[service_name] = status
                registration.applied = ticket
                registration.last_evaluated_at = timestamp

        if reason is not None and registered:
            await self._record_failure(service_name, reason, timestamp)
        return event

    async def evaluate_all(self) -> SystemHealth:
        """Evaluate every registered service concurrently."""
        events = await asyncio.gather(*(self.evaluate(name) for name in list(self._services)))
        return SystemHealth(
            overall_status=worst_status(e.status for e in events),
            events=list(events),
        )

    async def _record_failure(self, service_name: str, reason: str, timestamp: float) -> None:
        if self._metric_store is None:
            return
        if not self._failure_type_ready:
            try:
                await self._metric_store.get_type(self._failure_metric)
            except UnknownTypeError:
                try:
                    await self._metric_store.define_type(
                        self._failure_metric,
                        DataType.NUMERIC,
                        {"min": 0},
                        ["count", "sum"],
                        description="Failed or timed out health probes",
                    )
                except DuplicateTypeError:
                    pass
            self._failure_type_ready = True
        await self._metric_store.record(
            self._failure_metric,
            1,
            tags={"service": service_name, "reason": reason},
            timestamp=timestamp,
        )
