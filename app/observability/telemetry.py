"""OpenTelemetry provider bootstrap.

Providers are owned by this module rather than installed as the process-wide
OpenTelemetry globals, so the service can be reconfigured (tests do this per
test) without the "override not allowed" restriction of the global setters.
"""

from __future__ import annotations

from collections.abc import Sequence

import structlog
from opentelemetry.metrics import NoOpMeterProvider
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import ConsoleMetricExporter, MetricReader, PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
    SpanExporter,
)
from opentelemetry.sdk.trace.sampling import ALWAYS_OFF, ALWAYS_ON, ParentBased, Sampler, TraceIdRatioBased
from opentelemetry.trace import NoOpTracerProvider

from app.config import Settings, get_settings
from app.observability.metrics import build_registry, set_metrics
from app.observability.tracing import set_tracer_provider


logger = structlog.get_logger(__name__)

_PROVIDERS: tuple[TracerProvider | None, MeterProvider | None] = (None, None)


def create_sampler(ratio: float) -> Sampler:
    """Ratio sampler evaluated at the root span only; children follow their parent."""

    if ratio >= 1.0:
        root: Sampler = ALWAYS_ON
    elif ratio <= 0.0:
        root = ALWAYS_OFF
    else:
        root = TraceIdRatioBased(ratio)
    return ParentBased(root=root)


def _create_resource(settings: Settings) -> Resource:
    return Resource.create(
        {
            "service.name": settings.service_name,
            "service.version": settings.service_version,
            "deployment.environment": settings.environment,
        }
    )


def _default_span_exporter(settings: Settings) -> SpanExporter | None:
    if settings.otel_exporter == "console":
        return ConsoleSpanExporter()
    if settings.otel_exporter == "otlp":
        # Lazy import keeps the gRPC stack out of processes that never export.
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

        return OTLPSpanExporter(endpoint=settings.otlp_endpoint, insecure=True)
    return None


def _default_metric_readers(settings: Settings) -> list[MetricReader]:
    if settings.otel_exporter == "console":
        exporter = ConsoleMetricExporter()
    elif settings.otel_exporter == "otlp":
        from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter

        exporter = OTLPMetricExporter(endpoint=settings.otlp_endpoint, insecure=True)
    else:
        return []
    return [PeriodicExportingMetricReader(exporter, export_interval_millis=settings.metric_export_interval_ms)]


def configure_telemetry(
    settings: Settings | None = None,
    *,
    span_exporter: SpanExporter | None = None,
    metric_readers: Sequence[MetricReader] | None = None,
) -> None:
    """Build tracer/meter providers and the metric registry for this process.

    `span_exporter` is attached with a synchronous processor (tests use an
    in-memory exporter); otherwise the exporter named by OTEL_EXPORTER is
    attached with a batching processor.
    """
    settings = settings or get_settings()
    shutdown_telemetry()

    if not settings.telemetry_enabled:
        set_tracer_provider(NoOpTracerProvider())
        set_metrics(build_registry(NoOpMeterProvider().get_meter(settings.service_name)))
        logger.info("telemetry.disabled", service=settings.service_name)
        return

    resource = _create_resource(settings)
    tracer_provider = TracerProvider(resource=resource, sampler=create_sampler(settings.sample_ratio))
    if span_exporter is not None:
        tracer_provider.add_span_processor(SimpleSpanProcessor(span_exporter))
    else:
        exporter = _default_span_exporter(settings)
        if exporter is not None:
            tracer_provider.add_span_processor(BatchSpanProcessor(exporter))

    readers = list(metric_readers) if metric_readers is not None else _default_metric_readers(settings)
    meter_provider = MeterProvider(resource=resource, metric_readers=readers)

    global _PROVIDERS
    _PROVIDERS = (tracer_provider, meter_provider)
    set_tracer_provider(tracer_provider)
    set_metrics(build_registry(meter_provider.get_meter(f"{settings.service_name}-metrics")))

    logger.info(
        "telemetry.configured",
        service=settings.service_name,
        environment=settings.environment,
        sample_ratio=settings.sample_ratio,
        exporter="custom" if span_exporter is not None else settings.otel_exporter,
    )


def shutdown_telemetry() -> None:
    """Flush and close the providers created by `configure_telemetry`."""

    global _PROVIDERS
    tracer_provider, meter_provider = _PROVIDERS
    _PROVIDERS = (None, None)
    if tracer_provider is not None:
        tracer_provider.shutdown()
    if meter_provider is not None:
        meter_provider.shutdown()
