"""Observability helpers.

OpenTelemetry tracer/meter providers with optional OTLP export, a request
middleware that opens the server span, SQLAlchemy statement spans, business
operation spans, structlog JSON logging, and an in-process metrics aggregator
that backs both `/metrics` (Prometheus text) and `/api/metrics` (JSON).
"""
