from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from opentelemetry import trace

_CONFIGURED_LEVEL: int | None = None

# Chatty libraries that only matter when something is already wrong.
_QUIET_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "opentelemetry")


def add_trace_context(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Attach the active span's ids so log lines can be joined with traces."""

    ctx = trace.get_current_span().get_span_context()
    if ctx.is_valid:
        event_dict.setdefault("trace_id", format(ctx.trace_id, "032x"))
        event_dict.setdefault("span_id", format(ctx.span_id, "016x"))
    return event_dict


def _service_fields(service: str | None, environment: str | None) -> structlog.types.Processor:
    def add_service(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        if service:
            event_dict.setdefault("service", service)
        if environment:
            event_dict.setdefault("environment", environment)
        return event_dict

    return add_service


def resolve_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def configure_logging(
    level: int | str = logging.INFO,
    *,
    service: str | None = None,
    environment: str | None = None,
) -> None:
    """Route structlog and stdlib records through one JSON handler on stdout.

    Repeat calls only adjust the level.
    """

    global _CONFIGURED_LEVEL
    numeric = resolve_level(level)
    root = logging.getLogger()
    if _CONFIGURED_LEVEL is not None:
        root.setLevel(numeric)
        _CONFIGURED_LEVEL = numeric
        return

    shared: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        _service_fields(service, environment),
        add_trace_context,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(),
            foreign_pre_chain=shared,
        )
    )
    root.handlers = [handler]
    root.setLevel(numeric)

    # uvicorn installs its own handlers; send its records through ours.
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uv_logger = logging.getLogger(name)
        uv_logger.handlers = [handler]
        uv_logger.propagate = False
        uv_logger.setLevel(numeric)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric, logging.WARNING))

    _CONFIGURED_LEVEL = numeric
