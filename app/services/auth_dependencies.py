from __future__ import annotations

import jwt
import structlog
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from opentelemetry.trace import Status, StatusCode
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db.models import User
from app.db.session import get_db
from app.observability.metrics import get_metrics
from app.observability.telemetry import get_instruments, get_tracer
from app.services.auth_service import MissingJWTSecretError, decode_access_token

logger = structlog.get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


class _AuthRejected(Exception):
    def __init__(self, reason: str, message: str, status_code: int = 401) -> None:
        super().__init__(message)
        self.reason = reason
        self.message = message
        self.status_code = status_code


def _resolve_user(db: Session, credentials: HTTPAuthorizationCredentials | None) -> User:
    if credentials is None or not credentials.credentials:
        raise _AuthRejected("missing_token", "Not authenticated")

    try:
        payload = decode_access_token(credentials.credentials)
    except jwt.ExpiredSignatureError as exc:
        raise _AuthRejected("expired_token", "Token has expired") from exc
    except jwt.InvalidTokenError as exc:
        raise _AuthRejected("invalid_token", "Invalid token") from exc
    except MissingJWTSecretError as exc:
        # Misconfigured server, not a bad client token.
        raise _AuthRejected("not_configured", "Authentication is not configured", status_code=503) from exc

    try:
        user_id = int(payload["id"])
    except (TypeError, ValueError) as exc:
        raise _AuthRejected("invalid_token", "Invalid token") from exc

    user = db.execute(select(User).where(User.id == user_id)).scalar_one_or_none()
    if not user:
        raise _AuthRejected("unknown_user", "User not found")
    return user


def get_current_user(
    db: Session = Depends(get_db),
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> User:
    """Resolve the Bearer JWT to a `User` inside a `jwt.verification` span."""

    with get_tracer().start_as_current_span(
        "jwt.verification",
        attributes={"auth.method": "jwt"},
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        try:
            user = _resolve_user(db, credentials)
        except _AuthRejected as exc:
            span.set_attributes({"auth.success": False, "auth.failure_reason": exc.reason})
            span.set_status(Status(StatusCode.OK))
            get_metrics().record_auth_failure(exc.reason)
            get_instruments().auth_failures.add(1, {"reason": exc.reason})
            logger.info("auth.token_rejected", reason=exc.reason)
            raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc

        span.set_attributes({"auth.success": True, "auth.user.id": user.id})
        span.set_status(Status(StatusCode.OK))
        structlog.contextvars.bind_contextvars(user_id=user.id)
        return user
