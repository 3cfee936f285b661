"""Append-only security audit log."""

import uuid
from collections.abc import AsyncIterator, Mapping
from dataclasses import replace
from typing import Any

from healthwatch.core.alerts import AlertManager
from healthwatch.core.exceptions import NotFoundError, ValidationError
from healthwatch.core.logs import get_logger, log_exception
from healthwatch.core.models import ReviewStatus, SecurityLogEntry, Severity, TimeRange
from healthwatch.core.ports import ClockPort, SecurityLogRepositoryPort

logger = get_logger(__name__)

FILTER_KEYS = frozenset({"event_type", "severity", "status", "actor", "ip_address"})


def _normalize_filters(filters: Mapping[str, Any] | None) -> dict[str, str]:
    if not filters:
        return {}
    unknown = set(filters) - FILTER_KEYS
    if unknown:
        raise ValidationError(f"unsupported security log filters: {', '.join(sorted(unknown))}")
    normalized: dict[str, str] = {}
    for key, value in filters.items():
        if value is None:
            continue
        try:
            if key == "severity":
                value = Severity(value)
            elif key == "status":
                value = ReviewStatus(value)
        except ValueError as exc:
            raise ValidationError(f"invalid {key} {value!r}") from exc
        normalized[key] = str(value)
    return normalized


class SecurityLogQuery:
    """Lazy, restartable view over matching entries, newest first."""

    def __init__(
        self,
        repository: SecurityLogRepositoryPort,
        filters: dict[str, str],
        time_range: TimeRange | None,
    ) -> None:
        self._repository = repository
        self.filters = filters
        self.time_range = time_range

    async def __aiter__(self) -> AsyncIterator[SecurityLogEntry]:
        async for entry in self._repository.read(self.time_range):
            if all(
                getattr(entry, key) is not None and str(getattr(entry, key)) == expected
                for key, expected in self.filters.items()
            ):
                yield entry

    async def collect(self) -> list[SecurityLogEntry]:
        return [entry async for entry in self]


class SecurityAuditLog:
    """Records security events and escalates critical ones to alerts.

    Entries are immutable once appended except for their review status.
    """

    def __init__(
        self,
        repository: SecurityLogRepositoryPort,
        clock: ClockPort,
        alert_manager: AlertManager | None = None,
    ) -> None:
        self._repository = repository
        self._clock = clock
        self._alert_manager = alert_manager

    async def append(self, entry: SecurityLogEntry) -> SecurityLogEntry:
        """Store an entry, assigning its id and created_at.

        Critical entries are forwarded to the AlertManager. A failure to
        raise the alert is logged; the entry stays recorded.

        Raises:
            ValidationError: If event_type or severity is malformed.
            StorageUnavailableError: If the entry could not be stored.
        """
        if not entry.event_type:
            raise ValidationError("event_type must be non-empty")
        try:
            severity = Severity(entry.severity)
        except ValueError as exc:
            raise ValidationError(f"invalid severity {entry.severity!r}") from exc
        stored = replace(
            entry,
            severity=severity,
            id=entry.id or uuid.uuid4().hex,
            created_at=entry.created_at if entry.created_at is not None else self._clock.now(),
            metadata=dict(entry.metadata),
        )
        await self._repository.append(stored)
        logger.info(
            "Security event %s (%s)", stored.event_type, severity,
            extra={"entry_id": stored.id, "event_type": stored.event_type},
        )
        if severity is Severity.CRITICAL and self._alert_manager is not None:
            try:
                await self._alert_manager.on_security_event(stored)
            except Exception:
                log_exception(logger, "Failed to raise security alert", entry_id=stored.id)
        return stored

    def query(
        self,
        filters: Mapping[str, Any] | None = None,
        time_range: TimeRange | None = None,
    ) -> SecurityLogQuery:
        """Entries matching every filter, ``created_at`` descending.

        Filter keys: event_type, severity, status, actor, ip_address.

        Raises:
            ValidationError: On any other filter key or an invalid value.
        """
        return SecurityLogQuery(self._repository, _normalize_filters(filters), time_range)

    async def get(self, entry_id: str) -> SecurityLogEntry:
        entry = await self._repository.get(entry_id)
        if entry is None:
            raise NotFoundError(f"unknown security log entry {entry_id!r}")
        return entry

    async def update_status(self, entry_id: str, status: ReviewStatus | str) -> SecurityLogEntry:
        """Record a review decision on an entry.

        Raises:
            NotFoundError: If the entry does not exist.
            ValidationError: On an unknown status.
        """
        try:
            parsed = ReviewStatus(status)
        except ValueError as exc:
            raise ValidationError(f"invalid status {status!r}") from exc
        if not await self._repository.set_status(entry_id, parsed):
            raise NotFoundError(f"unknown security log entry {entry_id!r}")
        return await self.get(entry_id)
