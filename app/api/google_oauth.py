from __future__ import annotations

import httpx
import structlog
from fastapi import APIRouter, Cookie, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse, Response
from sqlalchemy.orm import Session

from app.config import get_settings
from app.db.models import User
from app.db.session import get_db
from app.models.schemas import GoogleProfile, GoogleProfileResponse
from app.observability.business import trace_operation
from app.services.auth_dependencies import get_current_user
from app.services.auth_service import MissingJWTSecretError, create_access_token
from app.services.google_oauth_service import (
    GoogleOAuthError,
    build_authorization_url,
    exchange_code,
    fetch_user_info,
    new_state,
)
from app.services.user_service import upsert_google_user

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/auth/google", tags=["auth"])

STATE_COOKIE = "oauth_state"
STATE_COOKIE_MAX_AGE = 10 * 60
LOGIN_LANDING_PAGE = "/profile/index_login.html"


def _callback_error(status_code: int, detail: str) -> HTTPException:
    # The state cookie is single-use, so a failed callback clears it too.
    cleared = Response()
    cleared.delete_cookie(STATE_COOKIE)
    return HTTPException(
        status_code=status_code,
        detail=detail,
        headers={"set-cookie": cleared.headers["set-cookie"]},
    )


def require_google_oauth() -> None:
    if not get_settings().google_oauth_configured:
        raise HTTPException(status_code=503, detail="Google OAuth is not configured")


@router.get("", dependencies=[Depends(require_google_oauth)])
async def google_login() -> RedirectResponse:
    state = new_state()
    response = RedirectResponse(url=build_authorization_url(state), status_code=307)
    response.set_cookie(
        key=STATE_COOKIE,
        value=state,
        max_age=STATE_COOKIE_MAX_AGE,
        httponly=True,
        samesite="lax",
    )
    return response


@router.get("/callback", dependencies=[Depends(require_google_oauth)])
async def google_callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    stored_state: str | None = Cookie(default=None, alias=STATE_COOKIE),
    db: Session = Depends(get_db),
) -> RedirectResponse:
    if not state or not stored_state or state != stored_state:
        raise _callback_error(400, "Invalid OAuth state")
    if not code:
        raise _callback_error(400, "Missing authorization code")

    try:
        with trace_operation("user.google_login"):
            access_token = await exchange_code(code)
            info = await fetch_user_info(access_token)
            user = upsert_google_user(db, info)
            token = create_access_token(
                user.id,
                user.email,
                name=user.name,
                avatar_url=user.avatar_url,
                auth_provider="google",
            )
    except GoogleOAuthError as exc:
        raise _callback_error(400, str(exc)) from exc
    except MissingJWTSecretError as exc:
        raise _callback_error(503, "Authentication is not configured") from exc
    except httpx.HTTPError as exc:
        logger.exception("oauth.callback_failed")
        raise _callback_error(500, "OAuth authentication failed") from exc

    redirect_url = request.url.replace(path=LOGIN_LANDING_PAGE, query="").include_query_params(
        token=token, login_success="true"
    )
    response = RedirectResponse(url=str(redirect_url), status_code=302)
    response.delete_cookie(STATE_COOKIE)
    return response


@router.get("/profile", response_model=GoogleProfileResponse)
async def google_profile(user: User = Depends(get_current_user)) -> GoogleProfileResponse:
    return GoogleProfileResponse(
        user=GoogleProfile(
            id=user.id,
            email=user.email,
            name=user.name,
            avatar_url=user.avatar_url,
            is_google_user=bool(user.google_id),
        )
    )
