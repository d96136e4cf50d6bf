from __future__ import annotations

from dataclasses import dataclass

import structlog
from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import MetricReader, PeriodicExportingMetricReader
from opentelemetry.sdk.resources import (
    DEPLOYMENT_ENVIRONMENT,
    SERVICE_NAME,
    SERVICE_NAMESPACE,
    SERVICE_VERSION,
    Resource,
)
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SimpleSpanProcessor, SpanExporter

from app.config import Settings, get_settings


logger = structlog.get_logger(__name__)

_tracer_provider: TracerProvider | None = None
_meter_provider: MeterProvider | None = None
_instruments: "Instruments | None" = None


@dataclass(frozen=True)
class Instruments:
    http_requests: metrics.Counter
    http_request_duration: metrics.Histogram
    db_queries: metrics.Counter
    db_query_duration: metrics.Histogram
    business_operations: metrics.Counter
    auth_failures: metrics.Counter
    health_checks: metrics.Counter


def build_resource(settings: Settings) -> Resource:
    return Resource.create(
        {
            SERVICE_NAME: settings.service_name,
            SERVICE_VERSION: settings.service_version,
            SERVICE_NAMESPACE: "web-app",
            DEPLOYMENT_ENVIRONMENT: settings.environment,
        }
    )


def configure_telemetry(
    settings: Settings | None = None,
    *,
    span_exporter: SpanExporter | None = None,
    metric_reader: MetricReader | None = None,
) -> TracerProvider:
    """Create the tracer and meter providers for this process.

    An explicit exporter/reader wins over OTLP (tests pass in-memory ones).
    Without either, OTLP/HTTP export is wired only when OTEL_ENABLED is set;
    spans are still created so request context propagates.
    """

    global _tracer_provider, _meter_provider, _instruments
    settings = settings or get_settings()
    resource = build_resource(settings)

    tracer_provider = TracerProvider(resource=resource)
    if span_exporter is not None:
        tracer_provider.add_span_processor(SimpleSpanProcessor(span_exporter))
    elif settings.otel_enabled:
        exporter = OTLPSpanExporter(endpoint=f"{settings.otel_collector_url.rstrip('/')}/v1/traces")
        tracer_provider.add_span_processor(BatchSpanProcessor(exporter))

    readers: list[MetricReader] = []
    if metric_reader is not None:
        readers.append(metric_reader)
    elif settings.otel_enabled:
        readers.append(
            PeriodicExportingMetricReader(
                OTLPMetricExporter(endpoint=f"{settings.otel_collector_url.rstrip('/')}/v1/metrics"),
                export_interval_millis=settings.otel_metric_export_interval_ms,
            )
        )
    meter_provider = MeterProvider(resource=resource, metric_readers=readers)

    shutdown_telemetry()
    _tracer_provider = tracer_provider
    _meter_provider = meter_provider
    _instruments = None

    logger.info(
        "otel.initialized",
        service_name=settings.service_name,
        otlp_export=settings.otel_enabled and span_exporter is None,
        collector_url=settings.otel_collector_url,
    )
    return tracer_provider


def shutdown_telemetry() -> None:
    global _tracer_provider, _meter_provider, _instruments
    if _tracer_provider is not None:
        try:
            _tracer_provider.shutdown()
        except Exception:  # noqa: BLE001 - exporter shutdown must not break process exit
            logger.exception("otel.shutdown_failed", component="traces")
    if _meter_provider is not None:
        try:
            _meter_provider.shutdown()
        except Exception:  # noqa: BLE001
            logger.exception("otel.shutdown_failed", component="metrics")
    _tracer_provider = None
    _meter_provider = None
    _instruments = None


def _providers() -> tuple[TracerProvider, MeterProvider]:
    if _tracer_provider is None or _meter_provider is None:
        configure_telemetry()
    if _tracer_provider is None or _meter_provider is None:
        raise RuntimeError("Telemetry providers failed to initialise")
    return _tracer_provider, _meter_provider


def get_tracer() -> trace.Tracer:
    settings = get_settings()
    tracer_provider, _ = _providers()
    return tracer_provider.get_tracer(settings.service_name, settings.service_version)


def get_meter() -> metrics.Meter:
    settings = get_settings()
    _, meter_provider = _providers()
    return meter_provider.get_meter(settings.service_name, settings.service_version)


def get_instruments() -> Instruments:
    global _instruments
    if _instruments is None:
        meter = get_meter()
        _instruments = Instruments(
            http_requests=meter.create_counter("http_requests_total", description="Total number of HTTP requests"),
            http_request_duration=meter.create_histogram(
                "http_request_duration_seconds", unit="s", description="HTTP request duration in seconds"
            ),
            db_queries=meter.create_counter("db_queries_total", description="Total number of database statements"),
            db_query_duration=meter.create_histogram(
                "db_query_duration_seconds", unit="s", description="Database statement duration in seconds"
            ),
            business_operations=meter.create_counter(
                "business_operations_total", description="Completed business operations"
            ),
            auth_failures=meter.create_counter("auth_failures_total", description="Rejected bearer tokens"),
            health_checks=meter.create_counter("health_checks_total", description="Total number of health checks"),
        )
    return _instruments
