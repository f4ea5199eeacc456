from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from opentelemetry.trace import Span, format_span_id, format_trace_id
from structlog.contextvars import bound_contextvars


TRACE_ID_KEY = "traceId"
SPAN_ID_KEY = "spanId"
USER_ID_KEY = "userId"
ORDER_ID_KEY = "orderId"

CORRELATION_KEYS = (TRACE_ID_KEY, SPAN_ID_KEY, USER_ID_KEY, ORDER_ID_KEY)


@contextmanager
def bind_span_correlation(span: Span) -> Iterator[None]:
    """Expose the span's identifiers to every log line emitted inside the block.

    Only the two span keys are touched. On exit they go back to whatever the
    enclosing scope had bound (parent span ids, or nothing).
    """
    span_context = span.get_span_context()
    if not span_context.is_valid:
        yield
        return

    with bound_contextvars(
        **{
            TRACE_ID_KEY: format_trace_id(span_context.trace_id),
            SPAN_ID_KEY: format_span_id(span_context.span_id),
        }
    ):
        yield


@contextmanager
def bind_entity_correlation(*, user_id: str | None = None, order_id: str | None = None) -> Iterator[None]:
    fields = {}
    if user_id:
        fields[USER_ID_KEY] = user_id
    if order_id:
        fields[ORDER_ID_KEY] = order_id

    with bound_contextvars(**fields):
        yield
