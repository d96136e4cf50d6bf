from __future__ import annotations

import secrets
from urllib.parse import urlencode

import httpx
import structlog

from app.config import get_settings
from app.models.schemas import GoogleUserInfo

logger = structlog.get_logger(__name__)

GOOGLE_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
OAUTH_SCOPE = "openid email profile"

_client: httpx.AsyncClient | None = None


class GoogleOAuthError(Exception):
    pass


def set_oauth_http_client(client: httpx.AsyncClient | None) -> None:
    global _client
    _client = client


def get_oauth_http_client() -> httpx.AsyncClient:
    global _client
    if _client is None:
        _client = httpx.AsyncClient(timeout=10.0)
    return _client


def new_state() -> str:
    return secrets.token_urlsafe(24)


def build_authorization_url(state: str) -> str:
    settings = get_settings()
    params = {
        "client_id": settings.google_client_id,
        "redirect_uri": settings.google_redirect_uri,
        "response_type": "code",
        "scope": OAUTH_SCOPE,
        "state": state,
    }
    return f"{GOOGLE_AUTHORIZE_URL}?{urlencode(params)}"


async def exchange_code(code: str) -> str:
    """Trade an authorization code for an access token."""
    settings = get_settings()
    resp = await get_oauth_http_client().post(
        GOOGLE_TOKEN_URL,
        data={
            "client_id": settings.google_client_id,
            "client_secret": settings.google_client_secret,
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": settings.google_redirect_uri,
        },
    )
    if resp.status_code != 200:
        logger.warning("oauth.token_exchange_failed", status_code=resp.status_code, body=resp.text[:500])
        raise GoogleOAuthError("Could not obtain access token")

    try:
        payload = resp.json()
    except ValueError as exc:
        logger.warning("oauth.token_response_invalid", body=resp.text[:500])
        raise GoogleOAuthError("Could not obtain access token") from exc

    access_token = payload.get("access_token") if isinstance(payload, dict) else None
    if not access_token:
        raise GoogleOAuthError("Could not obtain access token")
    return access_token


async def fetch_user_info(access_token: str) -> GoogleUserInfo:
    resp = await get_oauth_http_client().get(
        GOOGLE_USERINFO_URL,
        headers={"Authorization": f"Bearer {access_token}"},
    )
    if resp.status_code != 200:
        logger.warning("oauth.userinfo_failed", status_code=resp.status_code, body=resp.text[:500])
        raise GoogleOAuthError("Could not fetch user info")
    try:
        return GoogleUserInfo.model_validate(resp.json())
    except ValueError as exc:
        # Non-JSON body, or a profile without id/email.
        logger.warning("oauth.userinfo_invalid", error=str(exc))
        raise GoogleOAuthError("Could not fetch user info") from exc
