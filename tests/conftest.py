from __future__ import annotations

from collections.abc import AsyncIterator, Iterator

import pytest
from httpx import ASGITransport, AsyncClient
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from sqlalchemy.orm import Session

from app.config import get_settings
from app.db.session import dispose_engines, get_sessionmaker, init_db
from app.main import app
from app.observability.metrics import get_metrics, reset_metrics, set_metrics
from app.observability.telemetry import configure_telemetry, shutdown_telemetry


@pytest.fixture
def span_exporter() -> InMemorySpanExporter:
    return InMemorySpanExporter()


@pytest.fixture(autouse=True)
def test_environment(monkeypatch: pytest.MonkeyPatch, tmp_path, span_exporter: InMemorySpanExporter) -> Iterator[None]:
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'test.db'}")
    monkeypatch.setenv("ENVIRONMENT", "test")
    monkeypatch.setenv("TRACE_SAMPLE_RATIO", "1.0")
    monkeypatch.setenv("OTEL_EXPORTER", "none")
    monkeypatch.setenv("ORDER_PROCESSING_DELAY_MS", "0")
    monkeypatch.setenv("ORDER_COMPLETION_DELAY_MS", "0")
    monkeypatch.setenv("ENABLE_METRICS_ENDPOINT", "true")
    get_settings.cache_clear()

    configure_telemetry(span_exporter=span_exporter, metric_readers=[])
    init_db()
    reset_metrics()

    yield

    shutdown_telemetry()
    set_metrics(None)
    dispose_engines()
    get_settings.cache_clear()


@pytest.fixture
def db() -> Iterator[Session]:
    session = get_sessionmaker()()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def metrics():
    return get_metrics()


@pytest.fixture
async def api_client() -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
