from __future__ import annotations

import re

import structlog
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.db.models import User
from app.models.schemas import GoogleUserInfo
from app.services.auth_service import BCRYPT_MAX_BYTES, hash_password, verify_password

logger = structlog.get_logger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 8


class RegistrationError(ValueError):
    pass


class EmailAlreadyRegisteredError(RegistrationError):
    pass


class InvalidCredentialsError(ValueError):
    pass


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def get_user_by_email(db: Session, email: str) -> User | None:
    return db.execute(select(User).where(User.email == normalize_email(email))).scalar_one_or_none()


def find_google_match(db: Session, email: str, google_id: str) -> User | None:
    return db.execute(
        select(User).where(or_(User.email == email, User.google_id == google_id)).order_by(User.id)
    ).scalars().first()


def register_user(db: Session, email: str, password: str) -> User:
    email_norm = normalize_email(email)
    if not EMAIL_RE.match(email_norm):
        raise RegistrationError("Valid email is required")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise RegistrationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if len(password.encode("utf-8")) > BCRYPT_MAX_BYTES:
        raise RegistrationError(f"Password must be at most {BCRYPT_MAX_BYTES} bytes")

    if get_user_by_email(db, email_norm):
        raise EmailAlreadyRegisteredError("Email already registered")

    user = User(email=email_norm, password_hash=hash_password(password), auth_provider="local")
    db.add(user)
    try:
        db.commit()
    except IntegrityError as exc:
        # A concurrent registration won the unique index.
        db.rollback()
        raise EmailAlreadyRegisteredError("Email already registered") from exc
    db.refresh(user)
    logger.info("user.registered", user_id=user.id)
    return user


def authenticate(db: Session, email: str, password: str) -> User:
    user = get_user_by_email(db, email)
    if user is None or not verify_password(password, user.password_hash):
        logger.info("auth.password_checked", email=normalize_email(email), valid=False)
        raise InvalidCredentialsError("Invalid email or password")
    logger.info("auth.password_checked", email=user.email, valid=True)
    return user


def _link_google(db: Session, user: User, info: GoogleUserInfo) -> User:
    if user.google_id:
        return user
    user.google_id = info.id
    user.avatar_url = info.picture
    user.name = info.name
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("user.google_linked", user_id=user.id)
    return user


def upsert_google_user(db: Session, info: GoogleUserInfo) -> User:
    """Find the account by email or Google id, linking it on first Google sign-in."""

    email_norm = normalize_email(info.email)
    user = find_google_match(db, email_norm, info.id)
    if user is not None:
        return _link_google(db, user, info)

    user = User(
        email=email_norm,
        password_hash=None,
        google_id=info.id,
        avatar_url=info.picture,
        name=info.name,
        auth_provider="google",
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        # Another callback created the account first; use that row.
        db.rollback()
        existing = find_google_match(db, email_norm, info.id)
        if existing is None:
            raise
        logger.info("user.google_create_raced", user_id=existing.id)
        return _link_google(db, existing, info)
    db.refresh(user)
    logger.info("user.google_created", user_id=user.id)
    return user
