"""SQLite storage adapter for alerts."""

import json
from collections.abc import AsyncIterable
from typing import Any

from healthwatch.adapters.storage.sqlite_base import SQLiteStorageBase, _safe_json_loads
from healthwatch.core.models import AlertLevel, HealthAlert

_ALERTS_SCHEMA = """
CREATE TABLE IF NOT EXISTS alerts (
    id TEXT PRIMARY KEY,
    type TEXT NOT NULL,
    level TEXT NOT NULL,
    service_name TEXT NOT NULL,
    message TEXT NOT NULL,
    triggered_at REAL NOT NULL,
    acknowledged_at REAL,
    resolved_at REAL,
    updated_at REAL,
    metadata TEXT NOT NULL DEFAULT '{}'
);
CREATE INDEX IF NOT EXISTS idx_alerts_key ON alerts(service_name, type, resolved_at);
CREATE INDEX IF NOT EXISTS idx_alerts_triggered ON alerts(triggered_at);
"""

_COLUMNS = (
    "id, type, level, service_name, message, triggered_at,"
    " acknowledged_at, resolved_at, updated_at, metadata"
)

_UPSERT_ALERT = f"""
INSERT OR REPLACE INTO alerts ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""

_SELECT_ALERTS = f"SELECT {_COLUMNS} FROM alerts"


def _alert_from_row(row: Any) -> HealthAlert:
    return HealthAlert(
        id=row[0],
        type=row[1],
        level=AlertLevel(row[2]),
        service_name=row[3],
        message=row[4],
        triggered_at=row[5],
        acknowledged_at=row[6],
        resolved_at=row[7],
        updated_at=row[8],
        metadata=_safe_json_loads(row[9]),
    )


class SQLiteAlertRepository(SQLiteStorageBase):
    """SQLite implementation of AlertRepositoryPort.

    ``save`` is a single INSERT OR REPLACE, so every alert transition is
    committed atomically or not at all.
    """

    _schema = _ALERTS_SCHEMA

    async def save(self, alert: HealthAlert) -> None:
        await self._execute(
            _UPSERT_ALERT,
            (
                alert.id,
                str(alert.type),
                str(alert.level),
                alert.service_name,
                alert.message,
                alert.triggered_at,
                alert.acknowledged_at,
                alert.resolved_at,
                alert.updated_at,
                json.dumps(alert.metadata),
            ),
        )

    async def get(self, alert_id: str) -> HealthAlert | None:
        row = await self._fetchone(_SELECT_ALERTS + " WHERE id = ?", (alert_id,))
        return _alert_from_row(row) if row else None

    async def find_active(self, service_name: str, alert_type: str) -> HealthAlert | None:
        row = await self._fetchone(
            _SELECT_ALERTS
            + " WHERE service_name = ? AND type = ? AND resolved_at IS NULL"
            + " ORDER BY triggered_at DESC LIMIT 1",
            (service_name, alert_type),
        )
        return _alert_from_row(row) if row else None

    async def read(self) -> AsyncIterable[HealthAlert]:
        """Read alerts ordered by triggered_at descending."""
        async for row in self._iterate(_SELECT_ALERTS + " ORDER BY triggered_at DESC, rowid DESC"):
            yield _alert_from_row(row)
