from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import asdict, dataclass
from threading import Lock
from typing import Any

import structlog
from opentelemetry.metrics import Counter, Histogram, Meter, NoOpMeterProvider

from app.errors import MetricCatalogError
from app.observability.catalog import DEFAULT_CATALOG, UNKNOWN_METRIC_COUNT, MetricDefinition


logger = structlog.get_logger(__name__)

_FALLBACK_DEFINITION = MetricDefinition(
    name=UNKNOWN_METRIC_COUNT,
    kind="counter",
    description="Total number of unknown metric increment attempts",
)


@dataclass
class _HistogramAgg:
    count: int = 0
    sum: float = 0.0
    max: float = 0.0

    def observe(self, value: float) -> None:
        self.count += 1
        self.sum += value
        if self.count == 1 or value > self.max:
            self.max = value


class MetricRegistry:
    """Catalog-backed counters and histograms.

    Instruments are created once by `register_all` and only read afterwards, so
    lookups need no locking. Unknown names are redirected to the fallback
    counter; no public method raises. A process-local tally mirrors what was
    handed to the OpenTelemetry instruments (resets on restart).
    """

    def __init__(self, meter: Meter) -> None:
        self._meter = meter
        self._lock = Lock()
        self._counters: dict[str, Counter] = {}
        self._histograms: dict[str, Histogram] = {}
        self._counts: dict[str, int] = {}
        self._aggregates: dict[str, _HistogramAgg] = {}

    def register_all(self, catalog: Iterable[MetricDefinition]) -> None:
        definitions = list(catalog)
        seen: set[str] = set(self._counters) | set(self._histograms)
        duplicates: list[str] = []
        for definition in definitions:
            if definition.name in seen:
                duplicates.append(definition.name)
            seen.add(definition.name)
        if duplicates:
            raise MetricCatalogError(f"Duplicate metric names in catalog: {', '.join(sorted(set(duplicates)))}")

        if UNKNOWN_METRIC_COUNT not in seen:
            definitions.append(_FALLBACK_DEFINITION)

        counters = dict(self._counters)
        histograms = dict(self._histograms)
        for definition in definitions:
            if definition.kind == "counter":
                counters[definition.name] = self._meter.create_counter(
                    definition.name, unit=definition.unit, description=definition.description
                )
            elif definition.kind == "histogram":
                histograms[definition.name] = self._meter.create_histogram(
                    definition.name, unit=definition.unit, description=definition.description
                )
            else:
                raise MetricCatalogError(f"Unsupported metric kind {definition.kind!r} for {definition.name}")

        with self._lock:
            self._counters = counters
            self._histograms = histograms

        logger.info("metrics.registered", counters=len(counters), histograms=len(histograms))

    @property
    def names(self) -> frozenset[str]:
        return frozenset(self._counters) | frozenset(self._histograms)

    def increment(self, name: str) -> None:
        counter = self._counters.get(name)
        if counter is None:
            name = UNKNOWN_METRIC_COUNT
            counter = self._counters.get(name)

        if counter is not None:
            self._emit(name, counter.add, 1)
        with self._lock:
            self._counts[name] = self._counts.get(name, 0) + 1

    def record(self, name: str, value: float) -> None:
        histogram = self._histograms.get(name)
        if histogram is None:
            logger.warning("metrics.unknown_histogram", histogram=name, fallback=UNKNOWN_METRIC_COUNT)
            self.increment(UNKNOWN_METRIC_COUNT)
            return

        try:
            value = float(value)
        except (TypeError, ValueError):
            logger.warning("metrics.invalid_value", histogram=name, value=repr(value))
            return

        self._emit(name, histogram.record, value)
        with self._lock:
            self._aggregates.setdefault(name, _HistogramAgg()).observe(value)

    def record_duration(self, name: str, value: float, label: str) -> None:
        self.record(name, value)
        logger.debug("metrics.duration_recorded", histogram=name, value_ms=value, operation=label)

    def record_success(self, operation: str) -> None:
        self.increment(f"{operation}.total")

    def record_error(self, operation: str, error: BaseException | None = None) -> None:
        self.increment(f"{operation}.errors.total")
        if error is not None:
            logger.debug("metrics.error_recorded", operation=operation, error=str(error))

    def _emit(self, name: str, fn: Callable[..., Any], value: float) -> None:
        # Metrics must never break the caller; a failing instrument is logged and skipped.
        try:
            fn(value)
        except Exception as exc:  # noqa: BLE001
            logger.warning("metrics.instrument_failed", metric=name, error=str(exc))

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "counters": dict(sorted(self._counts.items())),
                "histograms": {name: asdict(agg) for name, agg in sorted(self._aggregates.items())},
            }

    def count(self, name: str) -> int:
        with self._lock:
            return self._counts.get(name, 0)

    def reset(self) -> None:
        with self._lock:
            self._counts = {}
            self._aggregates = {}


_METRICS: MetricRegistry | None = None


def build_registry(meter: Meter, catalog: Iterable[MetricDefinition] = DEFAULT_CATALOG) -> MetricRegistry:
    registry = MetricRegistry(meter)
    registry.register_all(catalog)
    return registry


def set_metrics(registry: MetricRegistry | None) -> None:
    global _METRICS
    _METRICS = registry


def get_metrics() -> MetricRegistry:
    global _METRICS
    if _METRICS is None:
        # Telemetry not configured yet: keep the catalog semantics on a no-op meter.
        _METRICS = build_registry(NoOpMeterProvider().get_meter("app.metrics"))
    return _METRICS


def reset_metrics() -> None:
    """Reset counters/aggregates (used by tests)."""

    get_metrics().reset()
