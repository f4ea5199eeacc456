from __future__ import annotations

import logging
import sys
from collections.abc import MutableMapping
from typing import Any

import structlog
from structlog.processors import CallsiteParameter

from app.observability.correlation import CORRELATION_KEYS


PLACEHOLDER = "-"

_CONFIGURED = False


class CorrelatedLineRenderer:
    """Render one line in the format the log pipeline matches on.

    `<timestamp> [<thread>] <LEVEL> <logger> [traceId=..] [spanId=..] [userId=..] [orderId=..] - <message>`

    Every correlation bracket is always present; unknown values use PLACEHOLDER.
    Leftover structured keys follow the message as key=value pairs.
    """

    def __call__(self, logger: Any, method_name: str, event_dict: MutableMapping[str, Any]) -> str:
        timestamp = event_dict.pop("timestamp", PLACEHOLDER)
        thread = event_dict.pop("thread_name", None) or PLACEHOLDER
        level = str(event_dict.pop("level", method_name)).upper()
        name = event_dict.pop("logger", None) or PLACEHOLDER
        message = event_dict.pop("event", "")
        stack = event_dict.pop("stack", None)
        exception = event_dict.pop("exception", None)

        brackets = " ".join(f"[{key}={event_dict.pop(key, None) or PLACEHOLDER}]" for key in CORRELATION_KEYS)
        line = f"{timestamp} [{thread}] {level} {name} {brackets} - {message}"

        extras = " ".join(f"{key}={value}" for key, value in event_dict.items())
        if extras:
            line = f"{line} {extras}"
        if stack:
            line = f"{line}\n{stack}"
        if exception:
            line = f"{line}\n{exception}"
        return line


def _pre_chain() -> list[Any]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.CallsiteParameterAdder([CallsiteParameter.THREAD_NAME]),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]


def configure_logging(level: int | str = logging.INFO, fmt: str = "text") -> None:
    """Configure structlog + stdlib logging to render through one stdout handler.

    Safe to call multiple times (no-op after first call).
    """

    global _CONFIGURED
    if _CONFIGURED:
        return

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    pre_chain = _pre_chain()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *pre_chain,
            # Let ProcessorFormatter render stdlib log records too.
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer = structlog.processors.JSONRenderer() if fmt == "json" else CorrelatedLineRenderer()
    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        foreign_pre_chain=pre_chain,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)

    # Keep uvicorn's own loggers consistent with our handler.
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logger = logging.getLogger(name)
        logger.handlers = [handler]
        logger.propagate = False
        logger.setLevel(level)

    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    _CONFIGURED = True
