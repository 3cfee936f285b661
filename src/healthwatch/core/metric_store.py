"""Metric type definitions and append-only sample storage."""

import asyncio
from collections.abc import AsyncIterator, Iterable, Mapping
from typing import Any

from healthwatch.core.exceptions import DuplicateTypeError, UnknownTypeError, ValidationError
from healthwatch.core.logs import get_logger
from healthwatch.core.models import (
    AggregationMethod,
    DataType,
    MetricSample,
    MetricType,
    SampleValue,
    TimeRange,
    is_finite_number,
)
from healthwatch.core.ports import ClockPort, MetricRepositoryPort
from healthwatch.core.validation import ValidationRule, apply_rules, parse_rules

logger = get_logger(__name__)


def normalize_method_name(method: str) -> str:
    """Lowercase a method name and check it is known.

    Accepts the AggregationMethod values plus the ``pNN`` percentile
    shorthand (e.g. ``p95``).

    Raises:
        ValidationError: If the name is not a known method.
    """
    name = str(method).strip().lower()
    if name in {m.value for m in AggregationMethod}:
        return name
    if name.startswith("p"):
        try:
            rank = float(name[1:])
        except ValueError:
            pass
        else:
            if 0 < rank <= 100:
                return name
    raise ValidationError(f"unknown aggregation method {method!r}")


def _check_data_type(data_type: DataType, value: Any) -> None:
    if data_type is DataType.NUMERIC:
        ok = is_finite_number(value)
    elif data_type is DataType.BOOLEAN:
        ok = isinstance(value, bool)
    else:
        ok = isinstance(value, str)
    if not ok:
        raise ValidationError(f"expected a {data_type} value, got {value!r}")


def _check_tags(tags: Mapping[str, Any]) -> dict[str, str]:
    for label, tag_value in tags.items():
        if not isinstance(label, str) or not label:
            raise ValidationError(f"tag labels must be non-empty strings, got {label!r}")
        if not isinstance(tag_value, str):
            raise ValidationError(f"tag {label!r} must have a string value, got {tag_value!r}")
    return dict(tags)


class SampleQuery:
    """Lazy, restartable view over the samples of one metric type.

    Every ``async for`` re-reads storage, so iterating twice observes
    samples recorded in between. Samples are ordered by timestamp ascending.
    """

    def __init__(
        self,
        repository: MetricRepositoryPort,
        metric_type: str,
        time_range: TimeRange | None,
        tag_filter: Mapping[str, str] | None,
    ) -> None:
        self._repository = repository
        self.metric_type = metric_type
        self.time_range = time_range
        self.tag_filter = dict(tag_filter) if tag_filter else None

    def __aiter__(self) -> AsyncIterator[MetricSample]:
        return aiter(
            self._repository.read_samples(self.metric_type, self.time_range, self.tag_filter)
        )

    async def collect(self) -> list[MetricSample]:
        """Read the whole sequence into a list."""
        return [sample async for sample in self]


class MetricStore:
    """Owns metric types and their samples.

    Types are immutable once defined, except that their allowed aggregation
    methods can be extended. Samples are validated against the type's data
    type and rules before anything is written.
    """

    def __init__(self, repository: MetricRepositoryPort, clock: ClockPort) -> None:
        self._repository = repository
        self._clock = clock
        self._define_lock = asyncio.Lock()

    async def define_type(
        self,
        name: str,
        data_type: DataType | str,
        validation_rules: Mapping[str, Any] | Iterable[ValidationRule] | None = None,
        aggregation_methods: Iterable[str] = (),
        description: str = "",
        unit: str = "",
    ) -> MetricType:
        """Define a new metric type.

        Raises:
            DuplicateTypeError: If a type with this name exists.
            ValidationError: On a bad name, data type, rule or method.
        """
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("metric type name must be a non-empty string")
        try:
            parsed_type = DataType(data_type)
        except ValueError as exc:
            raise ValidationError(f"unknown data type {data_type!r}") from exc
        metric_type = MetricType(
            name=name,
            data_type=parsed_type,
            description=description,
            unit=unit,
            validation_rules=parse_rules(validation_rules),
            aggregation_methods=frozenset(normalize_method_name(m) for m in aggregation_methods),
        )
        async with self._define_lock:
            if await self._repository.get_type(name) is not None:
                raise DuplicateTypeError(name)
            await self._repository.save_type(metric_type)
        logger.info("Defined metric type %s", name, extra={"metric_type": name})
        return metric_type

    async def extend_aggregation_methods(self, name: str, methods: Iterable[str]) -> MetricType:
        """Allow additional aggregation methods on an existing type.

        Raises:
            UnknownTypeError: If the type does not exist.
            ValidationError: On unknown method names.
        """
        added = frozenset(normalize_method_name(m) for m in methods)
        async with self._define_lock:
            current = await self.get_type(name)
            if added <= current.aggregation_methods:
                return current
            updated = MetricType(
                name=current.name,
                data_type=current.data_type,
                description=current.description,
                unit=current.unit,
                validation_rules=current.validation_rules,
                aggregation_methods=current.aggregation_methods | added,
            )
            await self._repository.save_type(updated)
        return updated

    async def get_type(self, name: str) -> MetricType:
        """Return the named type.

        Raises:
            UnknownTypeError: If the type does not exist.
        """
        metric_type = await self._repository.get_type(name)
        if metric_type is None:
            raise UnknownTypeError(name)
        return metric_type

    async def list_types(self) -> list[MetricType]:
        return [t async for t in self._repository.list_types()]

    async def record(
        self,
        type_name: str,
        value: SampleValue,
        tags: Mapping[str, str] | None = None,
        timestamp: float | None = None,
    ) -> MetricSample:
        """Validate and append a sample.

        Raises:
            UnknownTypeError: If the type does not exist.
            ValidationError: If the value, tags or timestamp are invalid.
        """
        metric_type = await self.get_type(type_name)
        _check_data_type(metric_type.data_type, value)
        apply_rules(metric_type.validation_rules, value)
        clean_tags = _check_tags(tags or {})
        if timestamp is None:
            timestamp = self._clock.now()
        elif not is_finite_number(timestamp):
            raise ValidationError(f"timestamp must be a finite number, got {timestamp!r}")
        sample = MetricSample(
            metric_type=type_name,
            timestamp=float(timestamp),
            value=value,
            tags=clean_tags,
        )
        await self._repository.append(sample)
        return sample

    def query(
        self,
        type_name: str,
        time_range: TimeRange | None = None,
        tag_filter: Mapping[str, str] | None = None,
    ) -> SampleQuery:
        """Return a lazy, restartable, time-ordered view of samples.

        The type is not checked until iteration; use ``query_checked`` to fail
        fast on unknown types.
        """
        return SampleQuery(self._repository, type_name, time_range, tag_filter)

    async def query_checked(
        self,
        type_name: str,
        time_range: TimeRange | None = None,
        tag_filter: Mapping[str, str] | None = None,
    ) -> SampleQuery:
        """Like ``query`` but raises UnknownTypeError for a missing type."""
        await self.get_type(type_name)
        return self.query(type_name, time_range, tag_filter)

    async def apply_retention(self, max_age: float) -> int:
        """Delete samples older than ``now - max_age`` seconds."""
        cutoff = self._clock.now() - max_age
        deleted = await self._repository.delete_before(cutoff)
        if deleted:
            logger.info("Retention removed %d samples", deleted, extra={"cutoff": cutoff})
        return deleted
