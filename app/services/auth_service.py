from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import bcrypt
import jwt

from app.config import get_settings

JWT_ALGORITHM = "HS256"
# bcrypt only looks at the first 72 bytes of a password.
BCRYPT_MAX_BYTES = 72


class MissingJWTSecretError(RuntimeError):
    pass


def hash_password(password: str) -> str:
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=10))
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str | None) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash, or a password past bcrypt's length limit.
        return False


def _jwt_secret() -> str:
    secret = get_settings().jwt_secret
    if not secret:
        raise MissingJWTSecretError("JWT_SECRET is not configured")
    return secret


def create_access_token(user_id: int, email: str, **claims: Any) -> str:
    """Sign an HS256 token `{id, email, ...claims}` valid for JWT_EXP_MINUTES."""
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload: dict[str, Any] = {
        **{k: v for k, v in claims.items() if v is not None},
        "id": user_id,
        "email": email,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=settings.jwt_exp_minutes)).timestamp()),
    }
    return jwt.encode(payload, _jwt_secret(), algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any]:
    """Verify signature and expiry; raises `jwt.InvalidTokenError` subclasses."""
    return jwt.decode(
        token,
        _jwt_secret(),
        algorithms=[JWT_ALGORITHM],
        options={"require": ["exp", "id"]},
    )
