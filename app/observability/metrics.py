from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from threading import Lock
from typing import Any

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily, HistogramMetricFamily, Metric
from prometheus_client.registry import Collector


LATENCY_BUCKETS_MS: tuple[float, ...] = (5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000)


@dataclass
class _LatencyAgg:
    count: int = 0
    sum_ms: float = 0.0
    max_ms: float = 0.0
    # Cumulative: buckets[i] counts observations <= LATENCY_BUCKETS_MS[i].
    buckets: list[int] = field(default_factory=lambda: [0] * len(LATENCY_BUCKETS_MS))

    def observe(self, elapsed_ms: float) -> None:
        self.count += 1
        self.sum_ms += float(elapsed_ms)
        if elapsed_ms > self.max_ms:
            self.max_ms = float(elapsed_ms)
        for i, bound in enumerate(LATENCY_BUCKETS_MS):
            if elapsed_ms <= bound:
                self.buckets[i] += 1

    def summary(self) -> dict[str, Any]:
        return {"count": self.count, "sum_ms": round(self.sum_ms, 3), "max_ms": round(self.max_ms, 3)}


class InMemoryMetrics:
    """Thread-safe, process-local metrics (resets on restart)."""

    def __init__(self) -> None:
        self._lock = Lock()
        self.http_requests: dict[tuple[str, str, str], _LatencyAgg] = {}
        self.db_queries: dict[tuple[str, str], _LatencyAgg] = {}
        self.db_query_errors: dict[tuple[str, str], int] = {}
        self.business_operations: dict[tuple[str, str], int] = {}
        self.auth_failures: dict[str, int] = {}
        self.health_checks: dict[str, int] = {}

    def observe_http_request(self, method: str, route: str, status_code: int, elapsed_ms: float) -> None:
        key = (method, route, str(status_code))
        with self._lock:
            agg = self.http_requests.get(key)
            if agg is None:
                agg = self.http_requests[key] = _LatencyAgg()
            agg.observe(elapsed_ms)

    def observe_db_query(self, operation: str, table: str, elapsed_ms: float, failed: bool = False) -> None:
        key = (operation, table)
        with self._lock:
            agg = self.db_queries.get(key)
            if agg is None:
                agg = self.db_queries[key] = _LatencyAgg()
            agg.observe(elapsed_ms)
            if failed:
                self.db_query_errors[key] = self.db_query_errors.get(key, 0) + 1

    def record_business_operation(self, operation: str, result: str) -> None:
        key = (operation, result)
        with self._lock:
            self.business_operations[key] = self.business_operations.get(key, 0) + 1

    def record_auth_failure(self, reason: str) -> None:
        with self._lock:
            self.auth_failures[reason] = self.auth_failures.get(reason, 0) + 1

    def record_health_check(self, status: str) -> None:
        with self._lock:
            self.health_checks[status] = self.health_checks.get(status, 0) + 1

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "counters": {
                    "http_requests_total": sum(a.count for a in self.http_requests.values()),
                    "db_queries_total": sum(a.count for a in self.db_queries.values()),
                    "db_query_errors_total": sum(self.db_query_errors.values()),
                    "business_operations_total": sum(self.business_operations.values()),
                    "auth_failures_total": sum(self.auth_failures.values()),
                    "health_checks_total": sum(self.health_checks.values()),
                },
                "http_requests": [
                    {"method": method, "route": route, "status_code": status, **agg.summary()}
                    for (method, route, status), agg in sorted(self.http_requests.items())
                ],
                "db_queries": [
                    {
                        "operation": operation,
                        "table": table,
                        "errors": self.db_query_errors.get((operation, table), 0),
                        **agg.summary(),
                    }
                    for (operation, table), agg in sorted(self.db_queries.items())
                ],
                "business_operations": [
                    {"operation": operation, "result": result, "count": count}
                    for (operation, result), count in sorted(self.business_operations.items())
                ],
            }

    def reset(self) -> None:
        with self._lock:
            self.http_requests = {}
            self.db_queries = {}
            self.db_query_errors = {}
            self.business_operations = {}
            self.auth_failures = {}
            self.health_checks = {}


def _histogram_buckets(agg: _LatencyAgg) -> list[tuple[str, float]]:
    buckets = [(str(bound / 1000.0), float(n)) for bound, n in zip(LATENCY_BUCKETS_MS, agg.buckets)]
    buckets.append(("+Inf", float(agg.count)))
    return buckets


class InMemoryMetricsCollector(Collector):
    """Exposes an `InMemoryMetrics` instance in the Prometheus text format."""

    def __init__(self, metrics: InMemoryMetrics, service: str, version: str, environment: str) -> None:
        self.metrics = metrics
        self.service = service
        self.version = version
        self.environment = environment

    def collect(self) -> Iterator[Metric]:
        m = self.metrics
        with m._lock:
            http = {k: (v.count, _histogram_buckets(v), v.sum_ms) for k, v in m.http_requests.items()}
            db = {k: (v.count, _histogram_buckets(v), v.sum_ms) for k, v in m.db_queries.items()}
            db_errors = dict(m.db_query_errors)
            business = dict(m.business_operations)
            auth_failures = dict(m.auth_failures)
            health = dict(m.health_checks)

        info = GaugeMetricFamily("service_info", "Service information", labels=["service", "version", "environment"])
        info.add_metric([self.service, self.version, self.environment], 1)
        yield info

        requests = CounterMetricFamily(
            "http_requests_total", "Total number of HTTP requests", labels=["method", "route", "status_code"]
        )
        duration = HistogramMetricFamily(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            labels=["method", "route", "status_code"],
            unit="seconds",
        )
        for labels, (count, buckets, sum_ms) in sorted(http.items()):
            requests.add_metric(list(labels), count)
            duration.add_metric(list(labels), buckets, sum_ms / 1000.0)
        yield requests
        yield duration

        queries = CounterMetricFamily(
            "db_queries_total", "Total number of database statements", labels=["operation", "table"]
        )
        query_errors = CounterMetricFamily(
            "db_query_errors_total", "Database statements that raised", labels=["operation", "table"]
        )
        query_duration = HistogramMetricFamily(
            "db_query_duration_seconds",
            "Database statement duration in seconds",
            labels=["operation", "table"],
            unit="seconds",
        )
        for labels, (count, buckets, sum_ms) in sorted(db.items()):
            queries.add_metric(list(labels), count)
            query_duration.add_metric(list(labels), buckets, sum_ms / 1000.0)
        for labels, count in sorted(db_errors.items()):
            query_errors.add_metric(list(labels), count)
        yield queries
        yield query_errors
        yield query_duration

        ops = CounterMetricFamily(
            "business_operations_total", "Completed business operations", labels=["operation", "result"]
        )
        for labels, count in sorted(business.items()):
            ops.add_metric(list(labels), count)
        yield ops

        failures = CounterMetricFamily("auth_failures_total", "Rejected bearer tokens", labels=["reason"])
        for reason, count in sorted(auth_failures.items()):
            failures.add_metric([reason], count)
        yield failures

        checks = CounterMetricFamily("health_checks_total", "Total number of health checks", labels=["status"])
        for status, count in sorted(health.items()):
            checks.add_metric([status], count)
        yield checks


_METRICS: InMemoryMetrics | None = None


def get_metrics() -> InMemoryMetrics:
    global _METRICS
    if _METRICS is None:
        _METRICS = InMemoryMetrics()
    return _METRICS


def reset_metrics() -> None:
    """Reset metrics counters/aggregates (used by tests)."""

    get_metrics().reset()


def render_prometheus(service: str, version: str, environment: str) -> tuple[bytes, str]:
    registry = CollectorRegistry(auto_describe=False)
    registry.register(InMemoryMetricsCollector(get_metrics(), service, version, environment))
    return generate_latest(registry), CONTENT_TYPE_LATEST
