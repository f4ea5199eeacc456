from __future__ import annotations

import functools
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any, TypeVar

from opentelemetry import trace
from opentelemetry.trace import Span, Status, StatusCode, TracerProvider, format_span_id, format_trace_id

from app.observability.correlation import bind_span_correlation


T = TypeVar("T")

_TRACER_NAME = "app.observability"
_PROVIDER: TracerProvider | None = None


def set_tracer_provider(provider: TracerProvider | None) -> None:
    """Install the provider used for the service's spans (tests swap it freely)."""

    global _PROVIDER
    _PROVIDER = provider


def get_tracer() -> trace.Tracer:
    provider = _PROVIDER or trace.get_tracer_provider()
    return provider.get_tracer(_TRACER_NAME)


def mark_error(span: Span, error: BaseException | str) -> None:
    if isinstance(error, BaseException):
        span.set_status(Status(StatusCode.ERROR, str(error) or type(error).__name__))
        span.record_exception(error)
    else:
        span.set_status(Status(StatusCode.ERROR, error))


def _mark_ok(span: Span) -> None:
    # Non-recording spans carry no status; recording ones keep an ERROR set earlier.
    status = getattr(span, "status", None)
    if status is None or status.status_code is StatusCode.UNSET:
        span.set_status(Status(StatusCode.OK))


@contextmanager
def span_scope(name: str, attributes: dict[str, Any] | None = None) -> Iterator[Span]:
    """Open a span, make it current and correlate logs with it until the block exits.

    The span ends on every path. An exception leaving the block is recorded on the
    span (status ERROR with the message, plus an exception event) and re-raised.
    A span opened inside another one becomes its child and inherits its sampling
    decision.
    """
    tracer = get_tracer()
    with tracer.start_as_current_span(
        name,
        attributes=attributes,
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        with bind_span_correlation(span):
            try:
                yield span
            except Exception as exc:
                mark_error(span, exc)
                raise
        _mark_ok(span)


def run_in_span(name: str, fn: Callable[[], T], attributes: dict[str, Any] | None = None) -> T:
    with span_scope(name, attributes=attributes):
        return fn()


def run_void_in_span(name: str, fn: Callable[[], Any], attributes: dict[str, Any] | None = None) -> None:
    with span_scope(name, attributes=attributes):
        fn()


def traced(name: str) -> Callable[[Callable[..., T]], Callable[..., T]]:
    def decorator(fn: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            with span_scope(name):
                return fn(*args, **kwargs)

        return wrapper

    return decorator


def add_attribute(key: str, value: Any) -> None:
    span = trace.get_current_span()
    if span.is_recording():
        span.set_attribute(key, value)


def add_event(name: str, attributes: dict[str, Any] | None = None) -> None:
    span = trace.get_current_span()
    if span.is_recording():
        span.add_event(name, attributes=attributes)


def add_business_context(entity_type: str, entity_id: str, operation: str) -> None:
    add_attribute("business.entity.type", entity_type)
    add_attribute("business.entity.id", entity_id)
    add_attribute("business.operation", operation)


def record_business_event(event_name: str, entity_type: str, entity_id: str) -> None:
    add_event(event_name)
    add_attribute("event.entity.type", entity_type)
    add_attribute("event.entity.id", entity_id)


def current_trace_ids() -> tuple[str, str] | None:
    span_context = trace.get_current_span().get_span_context()
    if not span_context.is_valid:
        return None
    return format_trace_id(span_context.trace_id), format_span_id(span_context.span_id)
