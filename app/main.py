from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI

from app.api.errors import register_exception_handlers
from app.api.health import router as health_router
from app.api.metrics import router as metrics_router
from app.api.orders import router as orders_router
from app.api.users import router as users_router
from app.config import get_settings
from app.db.session import dispose_engines, init_db
from app.observability.catalog import APPLICATION_STARTUPS_TOTAL
from app.observability.logging import configure_logging
from app.observability.metrics import get_metrics
from app.observability.middleware import RequestContextMiddleware
from app.observability.telemetry import configure_telemetry, shutdown_telemetry


logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)
    configure_telemetry(settings)
    init_db()
    get_metrics().increment(APPLICATION_STARTUPS_TOTAL)
    logger.info("application.started", service=settings.service_name, environment=settings.environment)
    try:
        yield
    finally:
        logger.info("application.stopping")
        shutdown_telemetry()
        dispose_engines()


app = FastAPI(title="Telemetry Service", version="1.0.0", lifespan=lifespan)
app.add_middleware(RequestContextMiddleware)
register_exception_handlers(app)
app.include_router(health_router)
app.include_router(users_router)
app.include_router(orders_router)
app.include_router(metrics_router)


def run() -> None:
    settings = get_settings()
    uvicorn.run("app.main:app", host=settings.server_host, port=settings.server_port, log_config=None)


if __name__ == "__main__":
    run()
