from __future__ import annotations

from collections.abc import Iterator, Mapping
from contextlib import contextmanager

from opentelemetry.trace import Span, Status, StatusCode
from opentelemetry.util.types import AttributeValue

from app.observability.metrics import get_metrics
from app.observability.telemetry import get_instruments, get_tracer


def _record(operation: str, result: str) -> None:
    get_metrics().record_business_operation(operation, result)
    get_instruments().business_operations.add(1, {"operation": operation, "result": result})


@contextmanager
def trace_operation(operation: str, attributes: Mapping[str, AttributeValue] | None = None) -> Iterator[Span]:
    """Run a block inside a `business.<operation>` span.

    The span ends with `business.result` set to "success" or "failure"; any
    exception is recorded on the span and re-raised.
    """

    attrs: dict[str, AttributeValue] = dict(attributes or {})
    attrs["business.operation"] = operation

    with get_tracer().start_as_current_span(
        f"business.{operation}",
        attributes=attrs,
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        try:
            yield span
        except Exception as exc:
            message = str(exc) or f"{operation} failed"
            span.record_exception(exc)
            span.set_attributes({"business.result": "failure", "business.error": message})
            span.set_status(Status(StatusCode.ERROR, message))
            _record(operation, "failure")
            raise
        span.set_attribute("business.result", "success")
        span.set_status(Status(StatusCode.OK))
        _record(operation, "success")
