"""FastAPI adapter for the monitoring engine."""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from fastapi import APIRouter, HTTPException, Query, Response
from pydantic import BaseModel, Field

from healthwatch.core.encoding.ndjson import (
    alert_to_dict,
    encode_alerts,
    encode_samples,
    encode_security_entries,
    health_event_to_dict,
    sample_to_dict,
    security_entry_to_dict,
)
from healthwatch.core.engine import MonitoringEngine
from healthwatch.core.exceptions import (
    DuplicateTypeError,
    HealthwatchError,
    InvalidStateError,
    NotFoundError,
    StorageUnavailableError,
    ValidationError,
)
from healthwatch.core.models import MetricType, SecurityLogEntry, TimeRange

_NDJSON = "application/x-ndjson"


class MetricTypeIn(BaseModel):
    name: str
    data_type: str
    validation_rules: dict[str, Any] | None = None
    aggregation_methods: list[str] = Field(default_factory=list)
    description: str = ""
    unit: str = ""


class SampleIn(BaseModel):
    value: bool | int | float | str
    tags: dict[str, str] = Field(default_factory=dict)
    timestamp: float | None = None


class SecurityEventIn(BaseModel):
    event_type: str
    severity: str
    description: str
    actor: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class StatusIn(BaseModel):
    status: str


def _type_to_dict(metric_type: MetricType) -> dict[str, Any]:
    return {
        "name": metric_type.name,
        "data_type": str(metric_type.data_type),
        "description": metric_type.description,
        "unit": metric_type.unit,
        "aggregation_methods": sorted(metric_type.aggregation_methods),
    }


@contextmanager
def _http_errors() -> Iterator[None]:
    """Map core errors to HTTP status codes."""
    try:
        yield
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except (InvalidStateError, DuplicateTypeError) as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except StorageUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except HealthwatchError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _time_range(start: float | None, end: float | None) -> TimeRange | None:
    if start is None and end is None:
        return None
    return TimeRange(start=start, end=end)


def create_monitoring_router(engine: MonitoringEngine) -> APIRouter:
    """Create a FastAPI router over a MonitoringEngine.

    Args:
        engine: The engine whose components back the endpoints.

    Returns:
        APIRouter with /metrics, /health, /alerts and /security endpoints.
    """
    router = APIRouter()

    @router.post("/metrics/types", status_code=201)
    async def define_type(body: MetricTypeIn) -> dict[str, Any]:
        with _http_errors():
            metric_type = await engine.metric_store.define_type(
                body.name,
                body.data_type,
                body.validation_rules,
                body.aggregation_methods,
                description=body.description,
                unit=body.unit,
            )
        return _type_to_dict(metric_type)

    @router.get("/metrics/types")
    async def list_types() -> list[dict[str, Any]]:
        with _http_errors():
            types = await engine.metric_store.list_types()
        return [_type_to_dict(t) for t in types]

    @router.post("/metrics/{type_name}/samples", status_code=201)
    async def record_sample(type_name: str, body: SampleIn) -> dict[str, Any]:
        with _http_errors():
            sample = await engine.metric_store.record(
                type_name, body.value, tags=body.tags, timestamp=body.timestamp
            )
        return sample_to_dict(sample)

    @router.get("/metrics/{type_name}/samples")
    async def read_samples(
        type_name: str,
        start: float | None = Query(default=None),
        end: float | None = Query(default=None),
    ) -> Response:
        """Return samples in NDJSON format, oldest first."""
        with _http_errors():
            query = await engine.metric_store.query_checked(type_name, _time_range(start, end))
            samples = await query.collect()
        return Response(content=encode_samples(samples), media_type=_NDJSON)

    @router.get("/metrics/{type_name}/statistics")
    async def statistics(
        type_name: str,
        start: float | None = Query(default=None),
        end: float | None = Query(default=None),
    ) -> dict[str, Any]:
        with _http_errors():
            stats = await engine.aggregator.statistics(type_name, _time_range(start, end))
        return {
            "count": stats.count,
            "sum": stats.sum,
            "avg": stats.avg,
            "min": stats.min,
            "max": stats.max,
        }

    @router.get("/health")
    async def system_health() -> dict[str, Any]:
        services = {
            reg.name: engine.health.last_status(reg.name) for reg in engine.health.services()
        }
        return {
            "overall_status": str(engine.health.overall_status()),
            "services": {name: str(s) if s else None for name, s in services.items()},
        }

    @router.post("/health/{service_name}/evaluate")
    async def evaluate(service_name: str) -> dict[str, Any]:
        with _http_errors():
            event = await engine.health.evaluate(service_name)
        return health_event_to_dict(event)

    @router.get("/alerts")
    async def list_alerts(
        level: str | None = Query(default=None),
        service_name: str | None = Query(default=None),
        type: str | None = Query(default=None),
        state: str | None = Query(default=None),
    ) -> Response:
        """Return alerts in NDJSON format, newest first."""
        with _http_errors():
            alerts = await engine.alerts.list_alerts(
                level=level, service_name=service_name, type=type, state=state
            )
        return Response(content=encode_alerts(alerts), media_type=_NDJSON)

    @router.get("/alerts/{alert_id}")
    async def get_alert(alert_id: str) -> dict[str, Any]:
        with _http_errors():
            alert = await engine.alerts.get(alert_id)
        return alert_to_dict(alert)

    @router.post("/alerts/{alert_id}/acknowledge")
    async def acknowledge(alert_id: str) -> dict[str, Any]:
        with _http_errors():
            alert = await engine.alerts.acknowledge(alert_id)
        return alert_to_dict(alert)

    @router.post("/alerts/{alert_id}/resolve")
    async def resolve(alert_id: str) -> dict[str, Any]:
        with _http_errors():
            alert = await engine.alerts.resolve(alert_id)
        return alert_to_dict(alert)

    @router.post("/security/events", status_code=201)
    async def append_security_event(body: SecurityEventIn) -> dict[str, Any]:
        with _http_errors():
            entry = await engine.security_log.append(
                SecurityLogEntry(
                    event_type=body.event_type,
                    severity=body.severity,  # type: ignore[arg-type]
                    description=body.description,
                    actor=body.actor,
                    ip_address=body.ip_address,
                    user_agent=body.user_agent,
                    metadata=body.metadata,
                )
            )
        return security_entry_to_dict(entry)

    @router.get("/security/events")
    async def query_security_events(
        event_type: str | None = Query(default=None),
        severity: str | None = Query(default=None),
        status: str | None = Query(default=None),
        actor: str | None = Query(default=None),
        ip_address: str | None = Query(default=None),
        start: float | None = Query(default=None),
        end: float | None = Query(default=None),
    ) -> Response:
        """Return security log entries in NDJSON format, newest first."""
        filters = {
            "event_type": event_type,
            "severity": severity,
            "status": status,
            "actor": actor,
            "ip_address": ip_address,
        }
        with _http_errors():
            query = engine.security_log.query(filters, _time_range(start, end))
            entries = await query.collect()
        return Response(content=encode_security_entries(entries), media_type=_NDJSON)

    @router.patch("/security/events/{entry_id}")
    async def update_security_status(entry_id: str, body: StatusIn) -> dict[str, Any]:
        with _http_errors():
            entry = await engine.security_log.update_status(entry_id, body.status)
        return security_entry_to_dict(entry)

    return router
