from __future__ import annotations

from time import perf_counter
from typing import Any, Callable

import structlog
from fastapi.responses import JSONResponse
from starlette.datastructures import MutableHeaders

from app.api.responses import error_response
from app.observability.catalog import HTTP_REQUEST_DURATION, HTTP_REQUESTS_TOTAL
from app.observability.metrics import get_metrics
from app.observability.tracing import add_attribute, add_business_context, current_trace_ids, mark_error, span_scope


_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

_ROUTED_METHODS = {"GET", "POST"}

TRACE_ID_HEADER = "X-Trace-ID"


class RequestContextMiddleware:
    """Root span per request, CORS headers, access logs and basic HTTP metrics.

    This is the dispatcher boundary: OPTIONS is answered here, methods other than
    GET/POST never reach the router, and an exception escaping a handler is
    caught once, recorded on the root span and turned into a 500 body.
    """

    def __init__(self, app: Callable[..., Any]) -> None:
        self.app = app
        # Avoid self-observing the observability endpoints.
        self._excluded_metric_paths = {"/api/metrics"}

    async def __call__(self, scope: dict[str, Any], receive: Callable[..., Any], send: Callable[..., Any]) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        path = scope.get("path", "")
        method = scope.get("method", "GET").upper()
        log = structlog.get_logger("access")

        start = perf_counter()
        status_code: int = 500
        response_started = False
        failed = False

        with span_scope("http.request", attributes={"http.method": method, "http.target": path}) as span:
            add_business_context("http.request", path, method)
            ids = current_trace_ids()

            async def send_wrapper(message: dict[str, Any]) -> None:
                nonlocal status_code, response_started

                if message.get("type") == "http.response.start":
                    response_started = True
                    status_code = int(message.get("status", 500))
                    headers = MutableHeaders(scope=message)
                    for key, value in _CORS_HEADERS.items():
                        headers[key] = value
                    if ids is not None:
                        headers[TRACE_ID_HEADER] = ids[0]

                await send(message)

            try:
                if method == "OPTIONS":
                    await JSONResponse(status_code=200, content={})(scope, receive, send_wrapper)
                elif method not in _ROUTED_METHODS:
                    await error_response(405, "Method not allowed")(scope, receive, send_wrapper)
                else:
                    log.debug("http_request_received")
                    await self.app(scope, receive, send_wrapper)
            except Exception as exc:  # noqa: BLE001 - single mapping point for handler failures
                log.exception("http_request_failed", error=str(exc))
                mark_error(span, exc)
                failed = True
                if response_started:
                    raise
                await error_response(500, f"Internal server error: {exc}")(scope, receive, send_wrapper)
            finally:
                elapsed_ms = (perf_counter() - start) * 1000.0
                add_attribute("http.status_code", status_code)

                # Update metrics first so they update even if logging misbehaves.
                if path not in self._excluded_metric_paths:
                    metrics = get_metrics()
                    metrics.increment(HTTP_REQUESTS_TOTAL)
                    metrics.record_duration(HTTP_REQUEST_DURATION, elapsed_ms, f"{method} {path}")

                log.info(
                    "http_request",
                    method=method,
                    path=path,
                    status_code=status_code,
                    elapsed_ms=round(elapsed_ms, 2),
                )

            if status_code >= 500 and not failed:
                mark_error(span, f"HTTP {status_code}")
