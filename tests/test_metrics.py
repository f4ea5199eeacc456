from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest
from opentelemetry.metrics import NoOpMeterProvider
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import InMemoryMetricReader

from app.errors import MetricCatalogError
from app.observability.catalog import (
    DEFAULT_CATALOG,
    HTTP_REQUESTS_TOTAL,
    ORDER_ERRORS_TOTAL,
    ORDER_VALUE_DISTRIBUTION,
    UNKNOWN_METRIC_COUNT,
    USER_CREATED_TOTAL,
    MetricDefinition,
)
from app.observability.metrics import MetricRegistry, build_registry


def _registry(catalog=DEFAULT_CATALOG) -> MetricRegistry:
    return build_registry(NoOpMeterProvider().get_meter("test"), catalog)


def test_catalog_names_are_unique() -> None:
    names = [definition.name for definition in DEFAULT_CATALOG]
    assert len(names) == len(set(names))


def test_duplicate_catalog_names_are_rejected() -> None:
    catalog = [
        MetricDefinition(name="a.total", kind="counter", description="a"),
        MetricDefinition(name="a.total", kind="counter", description="again"),
    ]
    with pytest.raises(MetricCatalogError):
        _registry(catalog)


def test_registering_same_name_twice_is_rejected() -> None:
    registry = _registry()
    with pytest.raises(MetricCatalogError):
        registry.register_all([MetricDefinition(name=USER_CREATED_TOTAL, kind="counter", description="dup")])


def test_fallback_counter_is_always_registered() -> None:
    registry = _registry([MetricDefinition(name="only.total", kind="counter", description="x")])
    assert UNKNOWN_METRIC_COUNT in registry.names


def test_increment_known_counter() -> None:
    registry = _registry()
    registry.increment(USER_CREATED_TOTAL)
    registry.increment(USER_CREATED_TOTAL)
    assert registry.count(USER_CREATED_TOTAL) == 2
    assert registry.count(UNKNOWN_METRIC_COUNT) == 0


def test_unknown_counter_routes_to_fallback() -> None:
    registry = _registry()
    registry.increment("does.not.exist")
    assert registry.count(UNKNOWN_METRIC_COUNT) == 1
    assert registry.count("does.not.exist") == 0


def test_unknown_histogram_drops_value_and_counts_fallback() -> None:
    registry = _registry()
    registry.record("no.such.histogram", 12.5)
    snapshot = registry.snapshot()
    assert "no.such.histogram" not in snapshot["histograms"]
    assert snapshot["counters"][UNKNOWN_METRIC_COUNT] == 1


def test_record_aggregates_histogram_values() -> None:
    registry = _registry()
    registry.record(ORDER_VALUE_DISTRIBUTION, 10)
    registry.record_duration(ORDER_VALUE_DISTRIBUTION, 30, "label has no effect")
    agg = registry.snapshot()["histograms"][ORDER_VALUE_DISTRIBUTION]
    assert agg == {"count": 2, "sum": 40.0, "max": 30.0}


def test_success_and_error_shortcuts_derive_names() -> None:
    registry = _registry()
    registry.record_error("order", RuntimeError("boom"))
    registry.record_success("http.requests")
    registry.record_success("nothing.here")
    assert registry.count(ORDER_ERRORS_TOTAL) == 1
    assert registry.count(HTTP_REQUESTS_TOTAL) == 1
    assert registry.count(UNKNOWN_METRIC_COUNT) == 1


def test_failing_instrument_never_raises() -> None:
    registry = _registry()

    class _Broken:
        def add(self, value, attributes=None):
            raise RuntimeError("exporter down")

    registry._counters[USER_CREATED_TOTAL] = _Broken()
    registry.increment(USER_CREATED_TOTAL)
    assert registry.count(USER_CREATED_TOTAL) == 1


def test_concurrent_increments_are_not_lost() -> None:
    registry = _registry()

    def work() -> None:
        for _ in range(500):
            registry.increment(USER_CREATED_TOTAL)

    with ThreadPoolExecutor(max_workers=8) as pool:
        for _ in range(8):
            pool.submit(work)

    assert registry.count(USER_CREATED_TOTAL) == 4000


def test_values_reach_opentelemetry_instruments() -> None:
    reader = InMemoryMetricReader()
    provider = MeterProvider(metric_readers=[reader])
    registry = build_registry(provider.get_meter("test"))

    registry.increment(USER_CREATED_TOTAL)
    registry.record(ORDER_VALUE_DISTRIBUTION, 42.0)

    data = reader.get_metrics_data()
    exported = {
        metric.name
        for resource_metrics in data.resource_metrics
        for scope_metrics in resource_metrics.scope_metrics
        for metric in scope_metrics.metrics
    }
    assert USER_CREATED_TOTAL in exported
    assert ORDER_VALUE_DISTRIBUTION in exported
    provider.shutdown()


def test_reset_clears_tally() -> None:
    registry = _registry()
    registry.increment(USER_CREATED_TOTAL)
    registry.reset()
    assert registry.snapshot() == {"counters": {}, "histograms": {}}
