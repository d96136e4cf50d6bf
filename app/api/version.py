from __future__ import annotations

import os
import subprocess
from datetime import datetime, timezone
from functools import lru_cache

import structlog
from fastapi import APIRouter

from app.config import get_settings
from app.models.schemas import VersionInfo, VersionResponse

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api", tags=["version"])

STARTED_AT = datetime.now(timezone.utc)


def _commit_from_env() -> str | None:
    value = get_settings().git_commit_hash or os.environ.get("GITHUB_SHA", "")
    return value[:7] if value else None


@lru_cache(maxsize=1)
def get_commit_hash() -> str:
    """Short commit of the running checkout; deployments without git use env."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--short", "HEAD"],
            capture_output=True,
            text=True,
            timeout=5,
            check=False,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        logger.warning("version.git_unavailable", error=str(exc))
        return _commit_from_env() or "unknown"

    if result.returncode == 0 and result.stdout.strip():
        return result.stdout.strip()
    return _commit_from_env() or "unknown"


@router.get("/version", response_model=VersionResponse)
def version() -> VersionResponse:
    return VersionResponse(data=VersionInfo(commitHash=get_commit_hash(), buildTime=STARTED_AT))
