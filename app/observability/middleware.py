from __future__ import annotations

import uuid
from datetime import datetime, timezone
from time import perf_counter
from typing import Any, Callable

import structlog
from opentelemetry import propagate, trace
from opentelemetry.trace import SpanKind, Status, StatusCode
from starlette.datastructures import Headers, MutableHeaders
from starlette.requests import HTTPConnection
from starlette.responses import JSONResponse

from app.observability.metrics import get_metrics
from app.observability.telemetry import get_instruments, get_tracer


class RequestContextMiddleware:
    """Per-request server span, request_id log context, access logs and HTTP metrics.

    Also the last line of defence: an exception that escapes the app is
    recorded on the span and answered with a JSON 500 when no response has
    started yet.
    """

    def __init__(self, app: Callable[..., Any]) -> None:
        self.app = app
        # Avoid self-observing the observability endpoints.
        self._excluded_metric_paths = {"/api/metrics", "/metrics"}

    async def __call__(self, scope: dict[str, Any], receive: Callable[..., Any], send: Callable[..., Any]) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        headers = Headers(scope=scope)
        request_id = headers.get("x-request-id") or str(uuid.uuid4())
        path = scope.get("path", "")
        method = scope.get("method", "")

        parent = propagate.extract(headers)
        span = get_tracer().start_span(
            f"{method} {path}",
            context=parent,
            kind=SpanKind.SERVER,
            attributes=_request_attributes(scope, headers),
        )
        span_context = span.get_span_context()

        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            trace_id=format(span_context.trace_id, "032x"),
            path=path,
            method=method,
        )

        start = perf_counter()
        status_code: int = 500
        response_started = False
        failed = False

        async def send_wrapper(message: dict[str, Any]) -> None:
            nonlocal status_code, response_started

            if message.get("type") == "http.response.start":
                response_started = True
                status_code = int(message.get("status", 500))
                headers = MutableHeaders(scope=message)
                headers["X-Request-ID"] = request_id

            await send(message)

        try:
            with trace.use_span(span, end_on_exit=False, record_exception=False, set_status_on_exception=False):
                await self.app(scope, receive, send_wrapper)
        except Exception as exc:
            failed = True
            span.record_exception(exc)
            span.set_status(Status(StatusCode.ERROR, str(exc) or type(exc).__name__))
            structlog.get_logger("access").exception("http_request_failed", error=str(exc))
            if response_started:
                raise
            response = JSONResponse(
                {
                    "success": False,
                    "message": "Internal server error",
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                },
                status_code=500,
            )
            await response(scope, receive, send_wrapper)
        finally:
            elapsed_s = perf_counter() - start
            route = _route_template(scope) or path

            span.set_attributes(
                {
                    "http.route": route,
                    "http.status_code": status_code,
                    "http.response.status_code": status_code,
                }
            )
            if not failed:
                if status_code >= 400:
                    span.set_status(Status(StatusCode.ERROR, f"HTTP {status_code}"))
                else:
                    span.set_status(Status(StatusCode.OK))

            # Update metrics first so they update even if logging misbehaves.
            # Exclude the metrics endpoints to avoid feedback loops in dashboards.
            if path not in self._excluded_metric_paths:
                get_metrics().observe_http_request(method, route, status_code, elapsed_s * 1000.0)
                labels = {"method": method, "route": route, "status_code": str(status_code)}
                instruments = get_instruments()
                instruments.http_requests.add(1, labels)
                instruments.http_request_duration.record(elapsed_s, labels)

            structlog.get_logger("access").info(
                "http_request",
                status_code=status_code,
                elapsed_ms=round(elapsed_s * 1000.0, 2),
            )

            span.end()
            structlog.contextvars.clear_contextvars()


def _request_attributes(scope: dict[str, Any], headers: Headers) -> dict[str, str]:
    url = HTTPConnection(scope).url
    target = url.path + (f"?{url.query}" if url.query else "")
    return {
        "http.method": scope.get("method", ""),
        "http.url": str(url),
        "http.scheme": url.scheme,
        "http.host": url.netloc,
        "http.target": target,
        "http.user_agent": headers.get("user-agent", ""),
        "http.route": url.path,
    }


def _route_template(scope: dict[str, Any]) -> str | None:
    # FastAPI stores the matched route in the (shared) scope during routing.
    route = scope.get("route")
    return getattr(route, "path", None) or None
