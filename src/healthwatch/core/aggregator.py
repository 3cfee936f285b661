"""Windowed aggregation over stored metric samples.

Windows are half-open: ``[as_of - window, as_of)``, so a sample exactly at
a boundary is counted in exactly one of two adjacent windows.
"""

import asyncio
import math
import uuid
from collections.abc import Iterable, Mapping
from typing import Any

from healthwatch.core.durations import parse_duration
from healthwatch.core.exceptions import (
    InsufficientDataError,
    UnsupportedMethodError,
    ValidationError,
)
from healthwatch.core.logs import get_logger
from healthwatch.core.metric_store import MetricStore, normalize_method_name
from healthwatch.core.models import (
    AggregationMethod,
    AggregationResult,
    AggregationSpec,
    DataType,
    DistributionBucket,
    GroupKey,
    MetricStatistics,
    MetricType,
    TagPredicate,
    TimeRange,
    WindowComparison,
)
from healthwatch.core.ports import ClockPort

logger = get_logger(__name__)

_NUMERIC_METHODS = frozenset(
    {
        AggregationMethod.SUM,
        AggregationMethod.AVG,
        AggregationMethod.MIN,
        AggregationMethod.MAX,
        AggregationMethod.PERCENTILE,
    }
)


def nearest_rank_percentile(sorted_values: list[float], percentile: float) -> float:
    """Nearest-rank percentile of an ascending, non-empty list."""
    rank = max(1, math.ceil(percentile / 100 * len(sorted_values)))
    return sorted_values[rank - 1]


def _make_predicate(expected: Any) -> TagPredicate:
    """Turn a filter value into a predicate on the (possibly missing) tag value."""
    if callable(expected):
        return expected
    if isinstance(expected, str):
        return lambda tag: tag == expected
    if isinstance(expected, Iterable):
        allowed = frozenset(expected)
        return lambda tag: tag in allowed
    raise ValidationError(f"unsupported filter {expected!r}")


def _parse_method(method: str, percentile: float | None) -> tuple[AggregationMethod, float | None]:
    name = normalize_method_name(method)
    if name in {m.value for m in AggregationMethod}:
        parsed = AggregationMethod(name)
        if parsed is AggregationMethod.PERCENTILE:
            if percentile is None or not 0 < percentile <= 100:
                raise ValidationError("percentile aggregation needs a rank in (0, 100]")
            return parsed, float(percentile)
        return parsed, None
    # pNN shorthand
    return AggregationMethod.PERCENTILE, float(name[1:])


def _method_allowed(metric_type: MetricType, method: AggregationMethod, rank: float | None) -> bool:
    allowed = metric_type.aggregation_methods
    if method is AggregationMethod.PERCENTILE:
        return "percentile" in allowed or f"p{rank:g}" in allowed
    return method.value in allowed


class Aggregator:
    """Computes and caches windowed aggregations.

    Cached results stay valid while ``now < computed_at + window``.
    ``get_or_compute`` is single-flight per spec: concurrent callers share
    one computation.
    """

    def __init__(self, metric_store: MetricStore, clock: ClockPort) -> None:
        self._store = metric_store
        self._clock = clock
        self._specs: dict[str, AggregationSpec] = {}
        self._cache: dict[str, AggregationResult] = {}
        self._inflight: dict[tuple[str, float], asyncio.Future[AggregationResult]] = {}

    async def define_aggregation(
        self,
        metric_type: str | MetricType,
        method: str,
        window: float | str,
        group_by: Iterable[str] = (),
        filters: Mapping[str, Any] | None = None,
        optional_labels: Iterable[str] = (),
        percentile: float | None = None,
        min_samples: int | None = None,
    ) -> AggregationSpec:
        """Register an aggregation spec. No result is computed yet.

        Args:
            metric_type: Type name or MetricType.
            method: sum, avg, min, max, count, percentile or pNN (e.g. p95).
            window: Seconds, or a duration string such as "60s" or "1h".
            group_by: Ordered tag labels forming the group key.
            filters: Label to expected value, collection of values, or
                predicate called with the tag value (None if missing).
            optional_labels: group_by labels that may be missing on a sample.
            percentile: Rank for the plain ``percentile`` method.
            min_samples: Minimum group size for percentile aggregations.

        Raises:
            UnknownTypeError: If the metric type does not exist.
            UnsupportedMethodError: If the type does not allow the method.
            ValidationError: On malformed arguments.
        """
        type_name = metric_type.name if isinstance(metric_type, MetricType) else metric_type
        definition = await self._store.get_type(type_name)
        parsed_method, rank = _parse_method(method, percentile)
        if not _method_allowed(definition, parsed_method, rank):
            raise UnsupportedMethodError(
                f"method {method!r} is not allowed for metric type {type_name!r}"
            )
        if definition.data_type is DataType.STRING and parsed_method in _NUMERIC_METHODS:
            raise UnsupportedMethodError(
                f"method {method!r} needs numeric samples; {type_name!r} is a string metric"
            )
        labels = tuple(group_by)
        optional = frozenset(optional_labels)
        if not optional <= set(labels):
            raise ValidationError("optional labels must be part of group_by")
        if min_samples is not None:
            if parsed_method is not AggregationMethod.PERCENTILE:
                raise ValidationError("min_samples only applies to percentile aggregations")
            if min_samples < 1:
                raise ValidationError("min_samples must be at least 1")
        spec = AggregationSpec(
            id=uuid.uuid4().hex,
            metric_type=type_name,
            method=parsed_method,
            window=parse_duration(window),
            group_by=labels,
            filters={label: _make_predicate(v) for label, v in (filters or {}).items()},
            optional_labels=optional,
            percentile=rank,
            min_samples=min_samples,
        )
        self._specs[spec.id] = spec
        return spec

    def get_spec(self, spec_id: str) -> AggregationSpec | None:
        return self._specs.get(spec_id)

    def list_specs(self) -> list[AggregationSpec]:
        return list(self._specs.values())

    def _group_key(self, spec: AggregationSpec, tags: Mapping[str, str]) -> GroupKey | None:
        key: list[str | None] = []
        for label in spec.group_by:
            value = tags.get(label)
            if value is None and label not in spec.optional_labels:
                return None
            key.append(value)
        return tuple(key)

    def _reduce(self, spec: AggregationSpec, values: list[Any]) -> float | None:
        method = spec.method
        if method is AggregationMethod.COUNT:
            return float(len(values))
        if method is AggregationMethod.SUM:
            return float(sum(values))
        if method is AggregationMethod.AVG:
            return sum(values) / len(values) if values else 0.0
        if method is AggregationMethod.PERCENTILE:
            if spec.min_samples is not None and len(values) < spec.min_samples:
                raise InsufficientDataError(
                    f"{spec.method_name} of {spec.metric_type!r} needs "
                    f"{spec.min_samples} samples, got {len(values)}"
                )
            if not values:
                return None
            return nearest_rank_percentile(sorted(values), spec.percentile or 100.0)
        if not values:
            return None
        return float(min(values) if method is AggregationMethod.MIN else max(values))

    async def compute(self, spec: AggregationSpec, as_of: float) -> dict[GroupKey, float | None]:
        """Aggregate samples in ``[as_of - window, as_of)`` per group.

        Without group_by the result always holds the ``()`` key, so an empty
        window yields count 0, sum 0 and avg 0 (min, max and percentile are
        None).

        Raises:
            InsufficientDataError: If a percentile group has fewer samples
                than the spec's min_samples.
        """
        groups: dict[GroupKey, list[Any]] = {}
        if not spec.group_by:
            groups[()] = []
        window = TimeRange(start=as_of - spec.window, end=as_of)
        async for sample in self._store.query(spec.metric_type, window):
            if not all(pred(sample.tags.get(label)) for label, pred in spec.filters.items()):
                continue
            key = self._group_key(spec, sample.tags)
            if key is None:
                continue
            value = sample.value
            if spec.method is not AggregationMethod.COUNT:
                value = float(value)
            groups.setdefault(key, []).append(value)
        return {key: self._reduce(spec, values) for key, values in groups.items()}

    async def _refresh(self, spec: AggregationSpec, as_of: float) -> AggregationResult:
        values = await self.compute(spec, as_of)
        result = AggregationResult(
            spec_id=spec.id,
            values=values,
            window_start=as_of - spec.window,
            window_end=as_of,
            computed_at=as_of,
        )
        cached = self._cache.get(spec.id)
        # An older window finishing late must not replace a newer result.
        if cached is None or cached.computed_at <= as_of:
            self._cache[spec.id] = result
        logger.debug(
            "Computed %s over %s", spec.method_name, spec.metric_type,
            extra={"spec_id": spec.id, "groups": len(values)},
        )
        return result

    async def get_or_compute(self, spec: AggregationSpec) -> AggregationResult:
        """Return the cached result while fresh, otherwise recompute.

        Concurrent callers for the same spec and window start await one
        shared computation.
        """
        cached = self._cache.get(spec.id)
        now = self._clock.now()
        if cached is not None and cached.is_fresh(now, spec.window):
            return cached
        key = (spec.id, now - spec.window)
        future = self._inflight.get(key)
        if future is None:
            future = asyncio.ensure_future(self._refresh(spec, now))
            self._inflight[key] = future
            future.add_done_callback(lambda _: self._inflight.pop(key, None))
        return await asyncio.shield(future)

    def cached(self, spec: AggregationSpec) -> AggregationResult | None:
        return self._cache.get(spec.id)

    def invalidate(self, spec: AggregationSpec) -> None:
        """Drop the cached result so the next read recomputes."""
        self._cache.pop(spec.id, None)

    async def _numeric_values(
        self,
        metric_type: str,
        time_range: TimeRange | None,
        tag_filter: Mapping[str, str] | None,
    ) -> list[float]:
        definition = await self._store.get_type(metric_type)
        if definition.data_type is DataType.STRING:
            raise UnsupportedMethodError(f"{metric_type!r} is not a numeric metric")
        return [float(s.value) async for s in self._store.query(metric_type, time_range, tag_filter)]

    async def statistics(
        self,
        metric_type: str,
        time_range: TimeRange | None = None,
        tag_filter: Mapping[str, str] | None = None,
    ) -> MetricStatistics:
        """Min, max, avg, sum and count of a numeric metric."""
        values = await self._numeric_values(metric_type, time_range, tag_filter)
        total = float(sum(values))
        return MetricStatistics(
            count=len(values),
            sum=total,
            avg=total / len(values) if values else 0.0,
            min=min(values) if values else None,
            max=max(values) if values else None,
        )

    async def compare(self, spec: AggregationSpec, as_of: float) -> WindowComparison:
        """Compare the window ending at ``as_of`` with the one before it.

        Changes are 0 for groups missing a value in either window, and the
        percentage change is 0 when the previous value is 0.
        """
        current = await self.compute(spec, as_of)
        previous = await self.compute(spec, as_of - spec.window)
        absolute: dict[GroupKey, float] = {}
        percentage: dict[GroupKey, float] = {}
        for key in current.keys() | previous.keys():
            now_value, then_value = current.get(key), previous.get(key)
            if now_value is None or then_value is None:
                absolute[key] = percentage[key] = 0.0
                continue
            absolute[key] = now_value - then_value
            percentage[key] = 0.0 if then_value == 0 else (now_value - then_value) / then_value * 100
        return WindowComparison(
            current=current,
            previous=previous,
            absolute_change=absolute,
            percentage_change=percentage,
        )

    async def time_series(
        self, spec: AggregationSpec, start: float, end: float
    ) -> list[AggregationResult]:
        """Aggregate consecutive windows covering ``[start, end)``, oldest first.

        Windows are ``spec.window`` long and aligned on ``start``; a trailing
        partial window is left out. Results are not cached.

        Raises:
            ValidationError: If ``end`` is not after ``start``.
        """
        if end <= start:
            raise ValidationError("time series end must be after start")
        now = self._clock.now()
        series: list[AggregationResult] = []
        index = 1
        while start + index * spec.window <= end:
            as_of = start + index * spec.window
            series.append(
                AggregationResult(
                    spec_id=spec.id,
                    values=await self.compute(spec, as_of),
                    window_start=as_of - spec.window,
                    window_end=as_of,
                    computed_at=now,
                )
            )
            index += 1
        return series

    async def top_groups(
        self, spec: AggregationSpec, as_of: float, limit: int = 10
    ) -> list[tuple[GroupKey, float]]:
        """The ``limit`` groups with the highest aggregate, highest first.

        Groups without a value (empty min/max/percentile) are left out.
        """
        if limit < 1:
            raise ValidationError("limit must be at least 1")
        values = await self.compute(spec, as_of)
        ranked = sorted(
            ((key, value) for key, value in values.items() if value is not None),
            key=lambda item: item[1],
            reverse=True,
        )
        return ranked[:limit]

    async def distribution(
        self,
        metric_type: str,
        buckets: int = 10,
        time_range: TimeRange | None = None,
        tag_filter: Mapping[str, str] | None = None,
    ) -> list[DistributionBucket]:
        """Equal-width histogram of a numeric metric.

        Returns an empty list when there are no samples and a single bucket
        when all samples share one value.
        """
        if buckets < 1:
            raise ValidationError("buckets must be at least 1")
        values = await self._numeric_values(metric_type, time_range, tag_filter)
        if not values:
            return []
        low, high = min(values), max(values)
        if low == high:
            return [DistributionBucket(lower=low, upper=high, count=len(values))]
        width = (high - low) / buckets
        counts = [0] * buckets
        for value in values:
            counts[min(int((value - low) / width), buckets - 1)] += 1
        return [
            DistributionBucket(lower=low + i * width, upper=low + (i + 1) * width, count=count)
            for i, count in enumerate(counts)
        ]


