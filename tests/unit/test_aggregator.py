"""Tests for windowed aggregation."""

import asyncio

import pytest

from healthwatch.adapters.clock import ManualClock
from healthwatch.core.aggregator import Aggregator, nearest_rank_percentile
from healthwatch.core.exceptions import (
    InsufficientDataError,
    UnknownTypeError,
    UnsupportedMethodError,
    ValidationError,
)
from healthwatch.core.metric_store import MetricStore
from healthwatch.core.models import AggregationMethod, TimeRange

T0 = 1_700_000_000.0
ALL_METHODS = ["sum", "avg", "min", "max", "count", "percentile"]


@pytest.fixture
async def latency(metric_store: MetricStore) -> str:
    await metric_store.define_type("latency_ms", "numeric", {"min": 0}, ALL_METHODS, unit="ms")
    return "latency_ms"


@pytest.mark.core
class TestNearestRankPercentile:
    def test_p95_of_one_to_hundred(self) -> None:
        assert nearest_rank_percentile([float(v) for v in range(1, 101)], 95) == 95.0

    def test_single_value(self) -> None:
        assert nearest_rank_percentile([7.0], 50) == 7.0

    def test_p100_is_max(self) -> None:
        assert nearest_rank_percentile([1.0, 2.0, 3.0], 100) == 3.0


@pytest.mark.core
class TestDefineAggregation:
    """Tests for Aggregator.define_aggregation."""

    async def test_pnn_shorthand(self, aggregator: Aggregator, latency: str) -> None:
        spec = await aggregator.define_aggregation(latency, "p95", "5m")

        assert spec.method is AggregationMethod.PERCENTILE
        assert spec.percentile == 95.0
        assert spec.window == 300.0
        assert spec.method_name == "p95"
        assert aggregator.get_spec(spec.id) == spec
        assert aggregator.list_specs() == [spec]

    async def test_unknown_metric_type_raises(self, aggregator: Aggregator) -> None:
        with pytest.raises(UnknownTypeError):
            await aggregator.define_aggregation("missing", "avg", 60)

    async def test_method_not_allowed_raises(
        self, aggregator: Aggregator, metric_store: MetricStore
    ) -> None:
        await metric_store.define_type("cpu", "numeric", aggregation_methods=["avg"])

        with pytest.raises(UnsupportedMethodError):
            await aggregator.define_aggregation("cpu", "max", 60)

    async def test_pnn_allowed_only_for_listed_rank(
        self, aggregator: Aggregator, metric_store: MetricStore
    ) -> None:
        await metric_store.define_type("cpu", "numeric", aggregation_methods=["p95"])

        await aggregator.define_aggregation("cpu", "p95", 60)
        with pytest.raises(UnsupportedMethodError):
            await aggregator.define_aggregation("cpu", "p99", 60)

    async def test_numeric_method_on_string_metric_raises(
        self, aggregator: Aggregator, metric_store: MetricStore
    ) -> None:
        await metric_store.define_type("status", "string", aggregation_methods=["avg", "count"])

        await aggregator.define_aggregation("status", "count", 60)
        with pytest.raises(UnsupportedMethodError):
            await aggregator.define_aggregation("status", "avg", 60)

    async def test_plain_percentile_needs_a_rank(self, aggregator: Aggregator, latency: str) -> None:
        with pytest.raises(ValidationError):
            await aggregator.define_aggregation(latency, "percentile", 60)

    async def test_optional_labels_must_be_grouped(
        self, aggregator: Aggregator, latency: str
    ) -> None:
        with pytest.raises(ValidationError):
            await aggregator.define_aggregation(
                latency, "avg", 60, group_by=["region"], optional_labels=["host"]
            )

    async def test_min_samples_only_for_percentiles(
        self, aggregator: Aggregator, latency: str
    ) -> None:
        with pytest.raises(ValidationError):
            await aggregator.define_aggregation(latency, "avg", 60, min_samples=5)

    async def test_bad_window_raises(self, aggregator: Aggregator, latency: str) -> None:
        with pytest.raises(ValidationError):
            await aggregator.define_aggregation(latency, "avg", "soon")


@pytest.mark.core
class TestCompute:
    """Tests for Aggregator.compute."""

    async def test_avg_of_ten_twenty_thirty_is_twenty(
        self, aggregator: Aggregator, metric_store: MetricStore, latency: str
    ) -> None:
        for offset, value in ((30, 10), (20, 20), (10, 30)):
            await metric_store.record(latency, value, timestamp=T0 - offset)
        spec = await aggregator.define_aggregation(latency, "avg", 60)

        assert await aggregator.compute(spec, T0) == {(): 20.0}

    @pytest.mark.parametrize(
        ("method", "expected"),
        [("count", 0.0), ("sum", 0.0), ("avg", 0.0), ("min", None), ("max", None)],
    )
    async def test_empty_window(
        self, aggregator: Aggregator, latency: str, method, expected
    ) -> None:
        spec = await aggregator.define_aggregation(latency, method, 60)

        assert await aggregator.compute(spec, T0) == {(): expected}

    async def test_window_is_half_open(
        self, aggregator: Aggregator, metric_store: MetricStore, latency: str
    ) -> None:
        await metric_store.record(latency, 1, timestamp=T0 - 60)
        await metric_store.record(latency, 100, timestamp=T0)
        spec = await aggregator.define_aggregation(latency, "count", 60)

        assert await aggregator.compute(spec, T0) == {(): 1.0}
        assert await aggregator.compute(spec, T0 + 60) == {(): 1.0}

    async def test_percentile(
        self, aggregator: Aggregator, metric_store: MetricStore, latency: str
    ) -> None:
        for value in range(1, 101):
            await metric_store.record(latency, value, timestamp=T0 - 1)
        spec = await aggregator.define_aggregation(latency, "percentile", 60, percentile=95)

        assert await aggregator.compute(spec, T0) == {(): 95.0}

    async def test_percentile_below_min_samples_raises(
        self, aggregator: Aggregator, metric_store: MetricStore, latency: str
    ) -> None:
        await metric_store.record(latency, 5, timestamp=T0 - 1)
        spec = await aggregator.define_aggregation(
            latency, "percentile", 60, percentile=99, min_samples=10
        )

        with pytest.raises(InsufficientDataError):
            await aggregator.compute(spec, T0)

    async def test_group_by_drops_samples_missing_a_label(
        self, aggregator: Aggregator, metric_store: MetricStore, latency: str
    ) -> None:
        await metric_store.record(latency, 10, tags={"region": "eu"}, timestamp=T0 - 1)
        await metric_store.record(latency, 30, tags={"region": "eu"}, timestamp=T0 - 1)
        await metric_store.record(latency, 50, tags={"region": "us"}, timestamp=T0 - 1)
        await metric_store.record(latency, 99, timestamp=T0 - 1)
        spec = await aggregator.define_aggregation(latency, "avg", 60, group_by=["region"])

        assert await aggregator.compute(spec, T0) == {("eu",): 20.0, ("us",): 50.0}

    async def test_optional_label_groups_missing_values_under_none(
        self, aggregator: Aggregator, metric_store: MetricStore, latency: str
    ) -> None:
        await metric_store.record(latency, 10, tags={"region": "eu", "host": "a"}, timestamp=T0 - 1)
        await metric_store.record(latency, 20, tags={"region": "eu"}, timestamp=T0 - 1)
        spec = await aggregator.define_aggregation(
            latency, "sum", 60, group_by=["region", "host"], optional_labels=["host"]
        )

        assert await aggregator.compute(spec, T0) == {("eu", "a"): 10.0, ("eu", None): 20.0}

    async def test_filters(
        self, aggregator: Aggregator, metric_store: MetricStore, latency: str
    ) -> None:
        await metric_store.record(latency, 1, tags={"region": "eu", "code": "200"}, timestamp=T0 - 1)
        await metric_store.record(latency, 2, tags={"region": "us", "code": "500"}, timestamp=T0 - 1)
        await metric_store.record(latency, 4, tags={"region": "ap", "code": "503"}, timestamp=T0 - 1)

        by_value = await aggregator.define_aggregation(latency, "sum", 60, filters={"region": "eu"})
        by_set = await aggregator.define_aggregation(
            latency, "sum", 60, filters={"region": ["us", "ap"]}
        )
        by_predicate = await aggregator.define_aggregation(
            latency, "sum", 60, filters={"code": lambda c: c is not None and c.startswith("5")}
        )

        assert await aggregator.compute(by_value, T0) == {(): 1.0}
        assert await aggregator.compute(by_set, T0) == {(): 6.0}
        assert await aggregator.compute(by_predicate, T0) == {(): 6.0}


@pytest.mark.core
class TestGetOrCompute:
    """Tests for caching and single-flight."""

    async def test_result_is_cached_while_fresh(
        self,
        aggregator: Aggregator,
        metric_store: MetricStore,
        clock: ManualClock,
        latency: str,
    ) -> None:
        spec = await aggregator.define_aggregation(latency, "count", 60)
        first = await aggregator.get_or_compute(spec)
        await metric_store.record(latency, 1, timestamp=T0)

        clock.advance(59)
        cached = await aggregator.get_or_compute(spec)
        clock.advance(1)
        fresh = await aggregator.get_or_compute(spec)

        assert cached is first
        assert fresh.values == {(): 1.0}
        assert fresh.computed_at == T0 + 60
        assert fresh.window_start == T0

    async def test_invalidate_forces_recompute(
        self, aggregator: Aggregator, metric_store: MetricStore, latency: str
    ) -> None:
        spec = await aggregator.define_aggregation(latency, "count", 60)
        await aggregator.get_or_compute(spec)
        await metric_store.record(latency, 1, timestamp=T0 - 1)

        aggregator.invalidate(spec)

        assert aggregator.cached(spec) is None
        assert (await aggregator.get_or_compute(spec)).values == {(): 1.0}

    async def test_concurrent_callers_share_one_computation(
        self,
        aggregator: Aggregator,
        monkeypatch: pytest.MonkeyPatch,
        latency: str,
    ) -> None:
        spec = await aggregator.define_aggregation(latency, "avg", 60)
        calls = 0
        original = aggregator.compute

        async def counting_compute(spec_arg, as_of):
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            return await original(spec_arg, as_of)

        monkeypatch.setattr(aggregator, "compute", counting_compute)

        first, second = await asyncio.gather(
            aggregator.get_or_compute(spec), aggregator.get_or_compute(spec)
        )

        assert calls == 1
        assert first is second

    async def test_later_window_does_not_join_earlier_computation(
        self,
        aggregator: Aggregator,
        clock: ManualClock,
        monkeypatch: pytest.MonkeyPatch,
        latency: str,
    ) -> None:
        spec = await aggregator.define_aggregation(latency, "count", 60)
        seen: list[float] = []
        original = aggregator.compute

        async def slow_first_window(spec_arg, as_of):
            seen.append(as_of)
            await asyncio.sleep(0.05 if as_of == T0 else 0)
            return await original(spec_arg, as_of)

        monkeypatch.setattr(aggregator, "compute", slow_first_window)

        earlier = asyncio.create_task(aggregator.get_or_compute(spec))
        await asyncio.sleep(0)
        clock.advance(120)
        later = await aggregator.get_or_compute(spec)
        first = await earlier

        assert seen == [T0, T0 + 120]
        assert first.window_end == T0
        assert later.window_end == T0 + 120
        assert aggregator.cached(spec) is later

    async def test_failed_computation_is_not_cached(
        self,
        aggregator: Aggregator,
        monkeypatch: pytest.MonkeyPatch,
        latency: str,
    ) -> None:
        spec = await aggregator.define_aggregation(latency, "count", 60)

        async def failing_compute(spec_arg, as_of):
            raise InsufficientDataError("not yet")

        monkeypatch.setattr(aggregator, "compute", failing_compute)
        with pytest.raises(InsufficientDataError):
            await aggregator.get_or_compute(spec)
        monkeypatch.undo()

        assert (await aggregator.get_or_compute(spec)).values == {(): 0.0}


@pytest.mark.core
class TestAnalysis:
    """Tests for statistics, compare and distribution."""

    async def test_statistics(
        self, aggregator: Aggregator, metric_store: MetricStore, latency: str
    ) -> None:
        for value in (4, 8, 12):
            await metric_store.record(latency, value, timestamp=T0 - 1)

        stats = await aggregator.statistics(latency)

        assert (stats.count, stats.sum, stats.avg, stats.min, stats.max) == (3, 24.0, 8.0, 4, 12)

    async def test_statistics_empty(self, aggregator: Aggregator, latency: str) -> None:
        stats = await aggregator.statistics(latency, TimeRange(T0, T0 + 1))

        assert (stats.count, stats.sum, stats.avg, stats.min, stats.max) == (0, 0.0, 0.0, None, None)

    async def test_statistics_on_string_metric_raises(
        self, aggregator: Aggregator, metric_store: MetricStore
    ) -> None:
        await metric_store.define_type("status", "string")

        with pytest.raises(UnsupportedMethodError):
            await aggregator.statistics("status")

    async def test_compare_with_previous_window(
        self, aggregator: Aggregator, metric_store: MetricStore, latency: str
    ) -> None:
        await metric_store.record(latency, 10, timestamp=T0 - 90)
        await metric_store.record(latency, 20, timestamp=T0 - 30)
        spec = await aggregator.define_aggregation(latency, "avg", 60)

        comparison = await aggregator.compare(spec, T0)

        assert comparison.current == {(): 20.0}
        assert comparison.previous == {(): 10.0}
        assert comparison.absolute_change == {(): 10.0}
        assert comparison.percentage_change == {(): 100.0}

    async def test_compare_from_zero_has_zero_percentage(
        self, aggregator: Aggregator, metric_store: MetricStore, latency: str
    ) -> None:
        await metric_store.record(latency, 5, timestamp=T0 - 30)
        spec = await aggregator.define_aggregation(latency, "sum", 60)

        comparison = await aggregator.compare(spec, T0)

        assert comparison.absolute_change == {(): 5.0}
        assert comparison.percentage_change == {(): 0.0}

    async def test_distribution(
        self, aggregator: Aggregator, metric_store: MetricStore, latency: str
    ) -> None:
        for value in range(10):
            await metric_store.record(latency, value, timestamp=T0 - 1)

        buckets = await aggregator.distribution(latency, buckets=2)

        assert [b.count for b in buckets] == [5, 5]
        assert buckets[0].lower == 0
        assert buckets[-1].upper == 9

    async def test_distribution_of_identical_values(
        self, aggregator: Aggregator, metric_store: MetricStore, latency: str
    ) -> None:
        for _ in range(3):
            await metric_store.record(latency, 7, timestamp=T0 - 1)

        buckets = await aggregator.distribution(latency)

        assert len(buckets) == 1
        assert buckets[0].count == 3

    async def test_distribution_empty_and_invalid(
        self, aggregator: Aggregator, latency: str
    ) -> None:
        assert await aggregator.distribution(latency) == []
        with pytest.raises(ValidationError):
            await aggregator.distribution(latency, buckets=0)

    async def test_distribution_with_tag_filter(
        self, aggregator: Aggregator, metric_store: MetricStore, latency: str
    ) -> None:
        for value in (1, 2, 3, 4):
            await metric_store.record(latency, value, tags={"host": "a"}, timestamp=T0 - 1)
        await metric_store.record(latency, 100, tags={"host": "b"}, timestamp=T0 - 1)

        buckets = await aggregator.distribution(latency, buckets=2, tag_filter={"host": "a"})

        assert [b.count for b in buckets] == [2, 2]
        assert buckets[-1].upper == 4


@pytest.mark.core
class TestSeriesAndRanking:
    """Tests for time_series and top_groups."""

    async def test_time_series_covers_whole_windows_oldest_first(
        self, aggregator: Aggregator, metric_store: MetricStore, latency: str
    ) -> None:
        for offset, value in ((150, 10), (90, 20), (30, 30), (20, 50)):
            await metric_store.record(latency, value, timestamp=T0 - offset)
        spec = await aggregator.define_aggregation(latency, "avg", 60)

        series = await aggregator.time_series(spec, T0 - 180, T0)
        partial = await aggregator.time_series(spec, T0 - 180, T0 - 10)

        assert [r.values for r in series] == [{(): 10.0}, {(): 20.0}, {(): 40.0}]
        assert [(r.window_start, r.window_end) for r in series] == [
            (T0 - 180, T0 - 120),
            (T0 - 120, T0 - 60),
            (T0 - 60, T0),
        ]
        assert len(partial) == 2
        assert aggregator.cached(spec) is None

    async def test_time_series_rejects_empty_range(
        self, aggregator: Aggregator, latency: str
    ) -> None:
        spec = await aggregator.define_aggregation(latency, "avg", 60)

        with pytest.raises(ValidationError):
            await aggregator.time_series(spec, T0, T0)

    async def test_top_groups(
        self, aggregator: Aggregator, metric_store: MetricStore, latency: str
    ) -> None:
        for region, value in (("eu", 900), ("us", 50), ("ap", 300)):
            await metric_store.record(latency, value, tags={"region": region}, timestamp=T0 - 5)
        await metric_store.record(latency, 5000, timestamp=T0 - 5)
        spec = await aggregator.define_aggregation(latency, "max", 60, group_by=["region"])

        top = await aggregator.top_groups(spec, T0, limit=2)

        assert top == [(("eu",), 900.0), (("ap",), 300.0)]
        with pytest.raises(ValidationError):
            await aggregator.top_groups(spec, T0, limit=0)
