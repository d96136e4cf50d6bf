from __future__ import annotations

from collections.abc import Generator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL, Engine
from sqlalchemy.orm import Session, sessionmaker

from app.config import get_settings
from app.db.models import Base
from app.observability.db import instrument_engine

_ENGINES: dict[str, Engine] = {}


def _engine_key(url: str | URL) -> str:
    return url if isinstance(url, str) else url.render_as_string(hide_password=False)


def get_engine() -> Engine:
    """One pooled, instrumented engine per database URL."""
    url = get_settings().sqlalchemy_url
    key = _engine_key(url)
    engine = _ENGINES.get(key)
    if engine is None:
        connect_args = {}
        if key.startswith("sqlite"):
            # Sessions are opened in the threadpool but used from the event loop.
            connect_args["check_same_thread"] = False
        # mysql driver uses `mysql+pymysql://...`
        engine = create_engine(url, pool_pre_ping=True, connect_args=connect_args)
        instrument_engine(engine)
        _ENGINES[key] = engine
    return engine


def dispose_engines() -> None:
    for engine in _ENGINES.values():
        engine.dispose()
    _ENGINES.clear()


def get_sessionmaker() -> sessionmaker[Session]:
    return sessionmaker(autocommit=False, autoflush=False, bind=get_engine())


def get_db() -> Generator[Session, None, None]:
    SessionLocal = get_sessionmaker()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Create missing tables (local development and tests; production uses Alembic)."""
    Base.metadata.create_all(get_engine())


def ping_database() -> None:
    """Raise if the database cannot answer `SELECT 1`."""
    with get_engine().connect() as conn:
        conn.execute(text("SELECT 1"))
