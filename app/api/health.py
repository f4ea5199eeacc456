from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from app.api.responses import success_response, utc_timestamp
from app.config import get_settings
from app.observability.catalog import HEALTH_CHECKS_TOTAL
from app.observability.metrics import get_metrics


router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health")
def health() -> JSONResponse:
    get_metrics().increment(HEALTH_CHECKS_TOTAL)
    return success_response(
        {"status": "healthy", "timestamp": utc_timestamp(), "service": get_settings().service_name}
    )
