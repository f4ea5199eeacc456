from __future__ import annotations

import asyncio
import threading

import pytest
import structlog
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode, format_span_id, format_trace_id

from app.observability.correlation import SPAN_ID_KEY, TRACE_ID_KEY, bind_entity_correlation
from app.observability.telemetry import create_sampler
from app.observability.tracing import (
    add_attribute,
    add_business_context,
    add_event,
    current_trace_ids,
    run_in_span,
    run_void_in_span,
    set_tracer_provider,
    span_scope,
    traced,
)


def _by_name(exporter: InMemorySpanExporter) -> dict:
    return {span.name: span for span in exporter.get_finished_spans()}


def test_run_in_span_returns_value_and_marks_ok(span_exporter) -> None:
    assert run_in_span("work", lambda: 42) == 42
    span = _by_name(span_exporter)["work"]
    assert span.status.status_code is StatusCode.OK


def test_exception_marks_error_records_event_and_propagates(span_exporter) -> None:
    def boom() -> None:
        raise ValueError("bad input")

    with pytest.raises(ValueError, match="bad input"):
        run_void_in_span("failing", boom)

    span = _by_name(span_exporter)["failing"]
    assert span.status.status_code is StatusCode.ERROR
    assert span.status.description == "bad input"
    assert [event.name for event in span.events] == ["exception"]
    assert span.end_time is not None


def test_nested_spans_share_trace_and_link_parent(span_exporter) -> None:
    with span_scope("outer"):
        with span_scope("inner"):
            pass

    spans = _by_name(span_exporter)
    outer, inner = spans["outer"], spans["inner"]
    assert inner.context.trace_id == outer.context.trace_id
    assert inner.parent.span_id == outer.context.span_id


def test_attributes_and_events_target_current_span(span_exporter) -> None:
    with span_scope("attrs"):
        add_attribute("order.amount", 12.5)
        add_business_context("order", "o-1", "create")
        add_event("order.checked")

    span = _by_name(span_exporter)["attrs"]
    assert span.attributes["order.amount"] == 12.5
    assert span.attributes["business.entity.id"] == "o-1"
    assert span.attributes["business.operation"] == "create"
    assert [event.name for event in span.events] == ["order.checked"]


def test_mutators_without_active_span_are_noops() -> None:
    add_attribute("k", "v")
    add_event("nothing")
    assert current_trace_ids() is None


def test_traced_decorator_wraps_call(span_exporter) -> None:
    @traced("decorated")
    def double(x: int) -> int:
        return x * 2

    assert double(4) == 8
    assert "decorated" in _by_name(span_exporter)


def test_correlation_ids_bound_inside_span_and_removed_after() -> None:
    with span_scope("correlated") as span:
        bound = structlog.contextvars.get_contextvars()
        ctx = span.get_span_context()
        assert bound[TRACE_ID_KEY] == format_trace_id(ctx.trace_id)
        assert bound[SPAN_ID_KEY] == format_span_id(ctx.span_id)

    after = structlog.contextvars.get_contextvars()
    assert TRACE_ID_KEY not in after
    assert SPAN_ID_KEY not in after


def test_nested_scope_restores_enclosing_ids_on_exit() -> None:
    with span_scope("parent") as parent:
        parent_span_id = format_span_id(parent.get_span_context().span_id)
        with span_scope("child") as child:
            assert structlog.contextvars.get_contextvars()[SPAN_ID_KEY] == format_span_id(
                child.get_span_context().span_id
            )
        assert structlog.contextvars.get_contextvars()[SPAN_ID_KEY] == parent_span_id


def test_correlation_restored_when_span_raises() -> None:
    with span_scope("parent") as parent:
        parent_ids = dict(structlog.contextvars.get_contextvars())
        with pytest.raises(RuntimeError):
            with span_scope("child"):
                raise RuntimeError("x")
        assert structlog.contextvars.get_contextvars() == parent_ids
        assert parent.is_recording()


def test_entity_correlation_leaves_span_keys_alone() -> None:
    with span_scope("entity"):
        before = dict(structlog.contextvars.get_contextvars())
        with bind_entity_correlation(user_id="u-1", order_id="o-1"):
            inside = structlog.contextvars.get_contextvars()
            assert inside["userId"] == "u-1"
            assert inside["orderId"] == "o-1"
            assert inside[TRACE_ID_KEY] == before[TRACE_ID_KEY]
        assert structlog.contextvars.get_contextvars() == before


def test_threads_do_not_share_ambient_span() -> None:
    barrier = threading.Barrier(2)
    seen: dict[str, tuple[str, str] | None] = {}

    def worker(name: str) -> None:
        with span_scope(name):
            barrier.wait()
            seen[name] = (
                structlog.contextvars.get_contextvars().get(TRACE_ID_KEY),
                current_trace_ids()[0],
            )

    threads = [threading.Thread(target=worker, args=(n,)) for n in ("a", "b")]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert seen["a"][0] == seen["a"][1]
    assert seen["b"][0] == seen["b"][1]
    assert seen["a"][0] != seen["b"][0]


async def test_tasks_do_not_share_ambient_span() -> None:
    ready = asyncio.Event()
    count = 0

    async def worker(name: str) -> tuple[str, str]:
        nonlocal count
        with span_scope(name):
            count += 1
            if count == 2:
                ready.set()
            await ready.wait()
            return structlog.contextvars.get_contextvars()[TRACE_ID_KEY], current_trace_ids()[0]

    first, second = await asyncio.gather(worker("a"), worker("b"))
    assert first[0] == first[1]
    assert second[0] == second[1]
    assert first[0] != second[0]


def test_children_inherit_root_sampling_decision() -> None:
    exporter = InMemorySpanExporter()
    provider = TracerProvider(sampler=create_sampler(0.0))
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    set_tracer_provider(provider)

    with span_scope("root") as root:
        with span_scope("child") as child:
            assert not child.is_recording()
        assert not root.is_recording()
        # Unsampled spans still carry ids, so logs stay correlated.
        assert TRACE_ID_KEY in structlog.contextvars.get_contextvars()

    assert exporter.get_finished_spans() == ()
    provider.shutdown()


def test_sampler_ratio_bounds() -> None:
    assert "AlwaysOnSampler" in create_sampler(1.0).get_description()
    assert "AlwaysOffSampler" in create_sampler(0.0).get_description()
    assert "TraceIdRatioBased{0.1}" in create_sampler(0.1).get_description()
