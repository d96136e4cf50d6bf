from __future__ import annotations

from collections.abc import AsyncIterator, Iterator

import pytest
from httpx import ASGITransport, AsyncClient
from opentelemetry.sdk.metrics.export import InMemoryMetricReader
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from app.api.version import get_commit_hash
from app.config import get_settings
from app.db.session import dispose_engines, init_db
from app.main import app
from app.observability.metrics import reset_metrics
from app.observability.telemetry import configure_telemetry
from app.services.google_oauth_service import set_oauth_http_client

TEST_JWT_SECRET = "test-secret"


@pytest.fixture(scope="session")
def span_exporter() -> InMemorySpanExporter:
    exporter = InMemorySpanExporter()
    configure_telemetry(span_exporter=exporter, metric_reader=InMemoryMetricReader())
    return exporter


@pytest.fixture(autouse=True)
def test_environment(monkeypatch: pytest.MonkeyPatch, tmp_path, span_exporter: InMemorySpanExporter) -> Iterator[None]:
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'test.db'}")
    monkeypatch.setenv("JWT_SECRET", TEST_JWT_SECRET)
    monkeypatch.setenv("SECRETS_DIR", str(tmp_path / "secrets"))
    monkeypatch.setenv("STATIC_DIR", str(tmp_path / "static"))
    monkeypatch.setenv("VIEWS_DIR", str(tmp_path / "views"))
    monkeypatch.setenv("PROFILE_DIR", str(tmp_path / "profile"))
    monkeypatch.setenv("PUBLIC_DIR", str(tmp_path / "public"))
    for name in ("GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_SECRET", "ENABLE_METRICS_ENDPOINT", "OTEL_ENABLED"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    get_commit_hash.cache_clear()

    init_db()
    reset_metrics()
    span_exporter.clear()

    yield

    set_oauth_http_client(None)
    dispose_engines()
    get_settings.cache_clear()


@pytest.fixture
async def api_client() -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

