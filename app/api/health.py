from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Response
from fastapi.responses import JSONResponse

from app.config import get_settings
from app.db.models import User
from app.db.session import ping_database
from app.models.schemas import (
    HealthChecks,
    HealthResponse,
    ReadinessChecks,
    ReadinessResponse,
    ServiceInfo,
)
from app.observability.metrics import get_metrics, render_prometheus
from app.observability.telemetry import get_instruments, get_tracer
from app.services.auth_dependencies import get_current_user

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["health"])


def _now() -> datetime:
    return datetime.now(timezone.utc)


@router.get("/health", response_model=HealthResponse)
def health() -> JSONResponse:
    settings = get_settings()
    with get_tracer().start_as_current_span("health.check") as span:
        checks = HealthChecks()

        try:
            ping_database()
            checks.database = "healthy"
        except Exception as exc:  # noqa: BLE001 - any driver error means unhealthy
            checks.database = "unhealthy"
            span.record_exception(exc)
            logger.error("health.database_failed", error=str(exc))

        status = "healthy" if checks.database == "healthy" else "degraded"

        try:
            get_instruments().health_checks.add(1, {"status": status})
            checks.opentelemetry = "healthy"
        except Exception as exc:  # noqa: BLE001
            checks.opentelemetry = "unhealthy"
            status = "degraded"
            span.record_exception(exc)
        get_metrics().record_health_check(status)

        span.set_attributes(
            {
                "health.status": status,
                "health.database": checks.database,
                "health.opentelemetry": checks.opentelemetry,
            }
        )

        body = HealthResponse(
            status=status,
            timestamp=_now(),
            service=ServiceInfo(
                name=settings.service_name,
                version=settings.service_version,
                environment=settings.environment,
            ),
            checks=checks,
        )
        return JSONResponse(body.model_dump(mode="json"), status_code=200 if status == "healthy" else 503)


@router.get("/ready", response_model=ReadinessResponse)
def ready() -> JSONResponse:
    settings = get_settings()
    with get_tracer().start_as_current_span("readiness.check") as span:
        checks = ReadinessChecks()

        missing = settings.missing_required
        checks.environment = not missing
        if missing:
            logger.error("readiness.missing_environment", missing=missing)

        try:
            ping_database()
            checks.database = True
        except Exception as exc:  # noqa: BLE001
            span.record_exception(exc)

        status = "ready" if checks.database and checks.environment else "not_ready"
        span.set_attributes(
            {
                "readiness.status": status,
                "readiness.database": checks.database,
                "readiness.environment": checks.environment,
            }
        )
        body = ReadinessResponse(status=status, timestamp=_now(), checks=checks)
        return JSONResponse(body.model_dump(mode="json"), status_code=200 if status == "ready" else 503)


@router.get("/live")
async def live() -> dict[str, str]:
    return {"status": "alive", "timestamp": _now().isoformat()}


@router.get("/metrics", include_in_schema=False)
async def prometheus_metrics() -> Response:
    settings = get_settings()
    payload, content_type = render_prometheus(
        service=settings.service_name,
        version=settings.service_version,
        environment=settings.environment,
    )
    return Response(content=payload, media_type=content_type)


@router.get("/api/metrics")
async def metrics_snapshot(user: User = Depends(get_current_user)) -> dict[str, Any]:
    """JSON view of the in-process aggregates, for signed-in operators."""
    settings = get_settings()
    if not settings.enable_metrics_endpoint:
        raise HTTPException(status_code=404, detail="Not found")
    return {
        "success": True,
        "service": settings.service_name,
        "requested_by": user.id,
        "data": get_metrics().snapshot(),
    }
