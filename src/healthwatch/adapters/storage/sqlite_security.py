"""SQLite storage adapter for the security audit log."""

import json
from collections.abc import AsyncIterable
from typing import Any

from healthwatch.adapters.storage.sqlite_base import SQLiteStorageBase, _safe_json_loads
from healthwatch.core.models import ReviewStatus, SecurityLogEntry, Severity, TimeRange

_SECURITY_SCHEMA = """
CREATE TABLE IF NOT EXISTS security_log (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    event_type TEXT NOT NULL,
    severity TEXT NOT NULL,
    description TEXT NOT NULL,
    actor TEXT,
    ip_address TEXT,
    user_agent TEXT,
    metadata TEXT NOT NULL DEFAULT '{}',
    status TEXT NOT NULL,
    created_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_security_log_created ON security_log(created_at);
"""

_COLUMNS = (
    "id, event_type, severity, description, actor, ip_address,"
    " user_agent, metadata, status, created_at"
)

_INSERT_ENTRY = f"""
INSERT INTO security_log ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""

_SELECT_ENTRIES = f"SELECT {_COLUMNS} FROM security_log"


def _entry_from_row(row: Any) -> SecurityLogEntry:
    return SecurityLogEntry(
        id=row[0],
        event_type=row[1],
        severity=Severity(row[2]),
        description=row[3],
        actor=row[4],
        ip_address=row[5],
        user_agent=row[6],
        metadata=_safe_json_loads(row[7]),
        status=ReviewStatus(row[8]),
        created_at=row[9],
    )


class SQLiteSecurityLogRepository(SQLiteStorageBase):
    """SQLite implementation of SecurityLogRepositoryPort."""

    _schema = _SECURITY_SCHEMA

    async def append(self, entry: SecurityLogEntry) -> None:
        await self._execute(
            _INSERT_ENTRY,
            (
                entry.id,
                entry.event_type,
                str(entry.severity),
                entry.description,
                entry.actor,
                entry.ip_address,
                entry.user_agent,
                json.dumps(entry.metadata),
                str(entry.status),
                entry.created_at,
            ),
        )

    async def get(self, entry_id: str) -> SecurityLogEntry | None:
        row = await self._fetchone(_SELECT_ENTRIES + " WHERE id = ?", (entry_id,))
        return _entry_from_row(row) if row else None

    async def set_status(self, entry_id: str, status: ReviewStatus) -> bool:
        updated = await self._execute(
            "UPDATE security_log SET status = ? WHERE id = ?", (str(status), entry_id)
        )
        return updated > 0

    async def read(self, time_range: TimeRange | None = None) -> AsyncIterable[SecurityLogEntry]:
        """Read entries ordered by created_at descending."""
        query = _SELECT_ENTRIES + " WHERE 1 = 1"
        params: list[Any] = []
        if time_range is not None and time_range.start is not None:
            query += " AND created_at >= ?"
            params.append(time_range.start)
        if time_range is not None and time_range.end is not None:
            query += " AND created_at < ?"
            params.append(time_range.end)
        query += " ORDER BY created_at DESC, seq DESC"
        async for row in self._iterate(query, tuple(params)):
            yield _entry_from_row(row)
