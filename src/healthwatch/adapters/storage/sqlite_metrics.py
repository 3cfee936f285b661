"""SQLite storage adapter for metric types and samples."""

import json
from collections.abc import AsyncIterable, Mapping
from typing import Any

from healthwatch.adapters.storage.sqlite_base import SQLiteStorageBase, _safe_json_loads
from healthwatch.core.models import DataType, MetricSample, MetricType, TimeRange
from healthwatch.core.validation import rule_from_dict, rule_to_dict

_METRICS_SCHEMA = """
CREATE TABLE IF NOT EXISTS metric_types (
    name TEXT PRIMARY KEY,
    data_type TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    unit TEXT NOT NULL DEFAULT '',
    validation_rules TEXT NOT NULL DEFAULT '[]',
    aggregation_methods TEXT NOT NULL DEFAULT '[]'
);
CREATE TABLE IF NOT EXISTS metric_samples (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    metric_type TEXT NOT NULL,
    timestamp REAL NOT NULL,
    value TEXT NOT NULL,
    tags TEXT NOT NULL DEFAULT '{}'
);
CREATE INDEX IF NOT EXISTS idx_metric_samples_type_ts
    ON metric_samples(metric_type, timestamp);
"""

_UPSERT_TYPE = """
INSERT OR REPLACE INTO metric_types
    (name, data_type, description, unit, validation_rules, aggregation_methods)
VALUES (?, ?, ?, ?, ?, ?)
"""

_SELECT_TYPE_COLUMNS = """
SELECT name, data_type, description, unit, validation_rules, aggregation_methods
FROM metric_types
"""

_INSERT_SAMPLE = """
INSERT INTO metric_samples (metric_type, timestamp, value, tags) VALUES (?, ?, ?, ?)
"""

_DELETE_SAMPLES_BEFORE = """
DELETE FROM metric_samples WHERE timestamp < ?
"""


def _type_from_row(row: Any) -> MetricType:
    return MetricType(
        name=row[0],
        data_type=DataType(row[1]),
        description=row[2],
        unit=row[3],
        validation_rules=tuple(rule_from_dict(r) for r in json.loads(row[4])),
        aggregation_methods=frozenset(json.loads(row[5])),
    )


class SQLiteMetricRepository(SQLiteStorageBase):
    """SQLite implementation of MetricRepositoryPort.

    Sample values are stored JSON-encoded so numbers, strings and booleans
    come back with their original Python type. Uses WAL mode for
    concurrent access; :memory: databases keep one persistent connection.

    Types with predicate validation rules cannot be saved here.
    """

    _schema = _METRICS_SCHEMA

    async def save_type(self, metric_type: MetricType) -> None:
        rules = json.dumps([rule_to_dict(r) for r in metric_type.validation_rules])
        await self._execute(
            _UPSERT_TYPE,
            (
                metric_type.name,
                str(metric_type.data_type),
                metric_type.description,
                metric_type.unit,
                rules,
                json.dumps(sorted(metric_type.aggregation_methods)),
            ),
        )

    async def get_type(self, name: str) -> MetricType | None:
        row = await self._fetchone(_SELECT_TYPE_COLUMNS + " WHERE name = ?", (name,))
        return _type_from_row(row) if row else None

    async def list_types(self) -> AsyncIterable[MetricType]:
        async for row in self._iterate(_SELECT_TYPE_COLUMNS + " ORDER BY name"):
            yield _type_from_row(row)

    async def append(self, sample: MetricSample) -> None:
        """Write a metric sample to storage."""
        await self._execute(
            _INSERT_SAMPLE,
            (
                sample.metric_type,
                sample.timestamp,
                json.dumps(sample.value),
                json.dumps(sample.tags),
            ),
        )

    async def read_samples(
        self,
        metric_type: str,
        time_range: TimeRange | None = None,
        tags: Mapping[str, str] | None = None,
    ) -> AsyncIterable[MetricSample]:
        """Read samples ordered by timestamp ascending, then insertion order."""
        query = "SELECT timestamp, value, tags FROM metric_samples WHERE metric_type = ?"
        params: list[Any] = [metric_type]
        if time_range is not None and time_range.start is not None:
            query += " AND timestamp >= ?"
            params.append(time_range.start)
        if time_range is not None and time_range.end is not None:
            query += " AND timestamp < ?"
            params.append(time_range.end)
        query += " ORDER BY timestamp ASC, id ASC"
        async for row in self._iterate(query, tuple(params)):
            sample_tags = _safe_json_loads(row[2])
            if tags and any(sample_tags.get(k) != v for k, v in tags.items()):
                continue
            yield MetricSample(
                metric_type=metric_type,
                timestamp=row[0],
                value=json.loads(row[1]),
                tags=sample_tags,
            )

    async def delete_before(self, timestamp: float) -> int:
        """Delete metric samples with timestamp < given value."""
        return await self._execute(_DELETE_SAMPLES_BEFORE, (timestamp,))

    async def count(self) -> int:
        """Return total number of metric samples in storage."""
        row = await self._fetchone("SELECT COUNT(*) FROM metric_samples")
        return row[0] if row else 0
