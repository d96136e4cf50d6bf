import os
from pathlib import Path

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import FileResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.auth import router as auth_router
from app.api.google_oauth import router as google_oauth_router
from app.api.health import router as health_router
from app.api.learn_status import router as learn_status_router
from app.api.version import router as version_router
from app.config import get_settings
from app.db.session import dispose_engines
from app.models.schemas import ErrorResponse
from app.observability.logging import configure_logging
from app.observability.middleware import RequestContextMiddleware
from app.observability.telemetry import configure_telemetry, shutdown_telemetry
from app.services.auth_service import MissingJWTSecretError
from app.services.google_oauth_service import set_oauth_http_client


logger = structlog.get_logger(__name__)


class SettingsStaticFiles(StaticFiles):
    """StaticFiles whose root directory is looked up in settings per request."""

    def __init__(self, setting: str, **kwargs) -> None:
        super().__init__(directory=None, check_dir=False, **kwargs)
        self.setting = setting

    def lookup_path(self, path: str) -> tuple[str, os.stat_result | None]:
        self.all_directories = [getattr(get_settings(), self.setting)]
        return super().lookup_path(path)


app = FastAPI(
    title="Learn Status Service",
    version="1.0.0",
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
app.add_middleware(RequestContextMiddleware)
app.include_router(auth_router)
app.include_router(google_oauth_router)
app.include_router(learn_status_router)
app.include_router(health_router)
app.include_router(version_router)


@app.exception_handler(StarletteHTTPException)
async def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        {"success": False, "message": str(exc.detail)},
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(MissingJWTSecretError)
async def _missing_jwt_secret_handler(request: Request, exc: MissingJWTSecretError) -> JSONResponse:
    logger.error("auth.jwt_secret_missing", path=request.url.path)
    return JSONResponse({"success": False, "message": "Authentication is not configured"}, status_code=503)


@app.exception_handler(RequestValidationError)
async def _validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        f"{'.'.join(str(p) for p in err.get('loc', ()) if p != 'body')}: {err.get('msg', 'invalid')}"
        for err in exc.errors()
    ]
    return JSONResponse(
        {"success": False, "message": "Missing or invalid fields", "errors": errors},
        status_code=400,
    )


@app.on_event("startup")
def _startup() -> None:
    settings = get_settings()
    configure_logging(settings.log_level, service=settings.service_name, environment=settings.environment)
    configure_telemetry(settings)
    if settings.missing_required:
        logger.warning("startup.missing_environment", missing=settings.missing_required)
    logger.info("startup.complete", host=settings.host, port=settings.port)


@app.on_event("shutdown")
def _shutdown() -> None:
    shutdown_telemetry()
    dispose_engines()
    set_oauth_http_client(None)


def _public_file(name: str) -> FileResponse:
    path = get_settings().public_path / name
    # Only plain files directly under the public dir.
    if Path(name).name != name or not path.is_file():
        raise HTTPException(status_code=404, detail="Page not found")
    return FileResponse(path)


@app.get("/favicon{suffix:path}", include_in_schema=False)
async def favicon(suffix: str) -> FileResponse:
    return _public_file(f"favicon{suffix}")


@app.get("/site.webmanifest", include_in_schema=False)
async def webmanifest() -> FileResponse:
    return _public_file("site.webmanifest")


# Mounted last so API routes win; "/" serves views/index.html.
app.mount("/static", SettingsStaticFiles("static_dir"), name="static")
app.mount("/profile", SettingsStaticFiles("profile_dir"), name="profile")
app.mount("/", SettingsStaticFiles("views_dir", html=True), name="views")
