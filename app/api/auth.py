from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from app.db.models import User
from app.db.session import get_db
from app.models.schemas import Credentials, LoginResponse, SuccessResponse, UserProfile, UserResponse
from app.observability.business import trace_operation
from app.services.auth_dependencies import get_current_user
from app.services.auth_service import create_access_token
from app.services.user_service import (
    EmailAlreadyRegisteredError,
    InvalidCredentialsError,
    RegistrationError,
    authenticate,
    normalize_email,
    register_user,
)

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["auth"])


@router.post("/api/auth/register", response_model=SuccessResponse)
async def register(payload: Credentials, db: Session = Depends(get_db)) -> SuccessResponse:
    email_norm = normalize_email(payload.email)
    try:
        with trace_operation("user.register", {"user.email": email_norm}):
            register_user(db, email_norm, payload.password)
    except EmailAlreadyRegisteredError as exc:
        logger.info("auth.register.duplicate", email=email_norm)
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except RegistrationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return SuccessResponse()


@router.post("/api/auth/login", response_model=LoginResponse)
async def login(payload: Credentials, db: Session = Depends(get_db)) -> LoginResponse:
    email_norm = normalize_email(payload.email)
    try:
        with trace_operation("user.login", {"user.email": email_norm}):
            user = authenticate(db, email_norm, payload.password)
            token = create_access_token(user.id, user.email, auth_provider=user.auth_provider)
    except InvalidCredentialsError as exc:
        logger.info("auth.login.failed", email=email_norm)
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    return LoginResponse(token=token)


@router.get("/api/auth/me", response_model=UserResponse)
async def me(user: User = Depends(get_current_user)) -> UserResponse:
    return UserResponse(
        user=UserProfile(
            id=user.id,
            email=user.email,
            name=user.name,
            avatar_url=user.avatar_url,
            auth_provider=user.auth_provider,
        )
    )


@router.get("/logout", include_in_schema=False)
async def logout() -> RedirectResponse:
    # Tokens live in the browser; the page clears its copy.
    return RedirectResponse(url="/index.html", status_code=302)
