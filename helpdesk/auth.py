"""Authentication helpers: JWT, password hashing, refresh tokens and user retrieval dependencies."""

from __future__ import annotations

import logging
import os
import secrets
import warnings
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

# python-jose and argon2-cffi emit deprecation noise we cannot fix from here
warnings.filterwarnings("ignore", category=DeprecationWarning, message=r".*argon2.*")
warnings.filterwarnings("ignore", category=DeprecationWarning, message=r".*datetime\.datetime\.utcnow.*")

from fastapi import Depends, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from helpdesk import models
from helpdesk.database import get_db
from helpdesk.errors import api_error

logger = logging.getLogger(__name__)

SECRET_KEY = os.getenv("JWT_SECRET", "change-this-secret-in-production")
ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))
REFRESH_TOKEN_EXPIRE_DAYS = int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", "30"))
MAX_ACTIVE_REFRESH_TOKENS = int(os.getenv("MAX_ACTIVE_REFRESH_TOKENS", "5"))

pwd_context = CryptContext(schemes=["argon2", "bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


class RefreshTokenError(Exception):
    """Raised when a refresh token cannot be exchanged.

    `code` is the API error code returned to the client.
    """

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back; stored values are always UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    now = datetime.now(timezone.utc)
    if expires_delta:
        expire = now + expires_delta
    else:
        expire = now + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({"exp": expire, "iat": now})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def create_access_token_for(user: models.UserModel) -> str:
    return create_access_token({"sub": user.username or user.email, "uid": user.id, "role": user.role})


def decode_access_token(token: str) -> dict:
    """Decode and verify a JWT; raises `JWTError` on bad signature or expiry."""
    return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])


def _get_user_by_sub(db: Session, sub: str) -> Optional[models.UserModel]:
    user = db.query(models.UserModel).filter(models.UserModel.username == sub).first()
    if user:
        return user
    return db.query(models.UserModel).filter(models.UserModel.email == sub).first()


def user_from_token(db: Session, token: str) -> Optional[models.UserModel]:
    """Return the active user a bearer token belongs to, or None."""
    try:
        payload = decode_access_token(token)
    except JWTError as exc:
        logger.debug("JWT decode error: %s", exc)
        return None
    # Purpose-bound tokens (2FA challenges) are not bearer credentials
    if payload.get("purpose"):
        return None
    sub: Optional[str] = payload.get("sub")
    if not sub:
        return None
    user = _get_user_by_sub(db, sub)
    if not user or not user.is_active:
        return None
    return user


def authenticate_user(db: Session, username_or_email: str, password: str) -> Optional[models.UserModel]:
    user = db.query(models.UserModel).filter(
        (models.UserModel.username == username_or_email) | (models.UserModel.email == username_or_email)
    ).first()
    if not user:
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user


# ----------------------------- Refresh tokens -------------------------
def _active_tokens_query(db: Session, user_id: int):
    return db.query(models.RefreshTokenModel).filter(
        models.RefreshTokenModel.user_id == user_id,
        models.RefreshTokenModel.revoked_at.is_(None),
    )


def issue_refresh_token(db: Session, user: models.UserModel, ip_address: Optional[str] = None) -> models.RefreshTokenModel:
    """Create a refresh token for `user`, revoking the oldest ones beyond the active cap.

    The caller commits.
    """
    now = datetime.now(timezone.utc)
    active = _active_tokens_query(db, user.id).order_by(models.RefreshTokenModel.created_at.asc()).all()
    # Leave room for the token about to be created
    excess = len(active) - (MAX_ACTIVE_REFRESH_TOKENS - 1)
    for old in active[:max(excess, 0)]:
        old.revoked_at = now
        old.revoked_reason = "Exceeded maximum active tokens"

    token = models.RefreshTokenModel(
        token=secrets.token_urlsafe(48),
        user_id=user.id,
        expires_at=now + timedelta(days=REFRESH_TOKEN_EXPIRE_DAYS),
        created_at=now,
        created_by_ip=ip_address,
    )
    db.add(token)
    db.flush()
    return token


def revoke_all_refresh_tokens(db: Session, user_id: int, reason: str) -> int:
    now = datetime.now(timezone.utc)
    count = 0
    for token in _active_tokens_query(db, user_id).all():
        token.revoked_at = now
        token.revoked_reason = reason
        count += 1
    return count


def rotate_refresh_token(db: Session, raw_token: str, ip_address: Optional[str] = None) -> Tuple[models.UserModel, models.RefreshTokenModel]:
    """Exchange a refresh token for a new one.

    Presenting a token that was already revoked is treated as token theft:
    every active token of the owner is revoked. Commits in both cases.
    """
    stored = db.query(models.RefreshTokenModel).filter(models.RefreshTokenModel.token == raw_token).first()
    if stored is None:
        raise RefreshTokenError("invalid_refresh_token", "Invalid refresh token")

    if stored.revoked_at is not None:
        revoked = revoke_all_refresh_tokens(db, stored.user_id, "Attempted reuse of revoked token")
        db.commit()
        logger.warning("Refresh token reuse detected for user=%s; revoked %d active token(s)", stored.user_id, revoked)
        raise RefreshTokenError("refresh_token_reused", "Refresh token has been revoked")

    if as_utc(stored.expires_at) <= datetime.now(timezone.utc):
        raise RefreshTokenError("refresh_token_expired", "Refresh token has expired")

    user = db.get(models.UserModel, stored.user_id)
    if user is None or not user.is_active:
        raise RefreshTokenError("user_inactive", "User inactive")

    replacement = issue_refresh_token(db, user, ip_address)
    stored.revoked_at = datetime.now(timezone.utc)
    stored.revoked_reason = "Replaced by new token"
    stored.replaced_by_token = replacement.token
    db.commit()
    return user, replacement


def revoke_refresh_token(db: Session, raw_token: str, reason: str = "Logged out") -> bool:
    stored = db.query(models.RefreshTokenModel).filter(models.RefreshTokenModel.token == raw_token).first()
    if stored is None or stored.revoked_at is not None:
        return False
    stored.revoked_at = datetime.now(timezone.utc)
    stored.revoked_reason = reason
    db.commit()
    return True


# ----------------------------- Dependencies ---------------------------
def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> models.UserModel:
    """Dependency that returns the authenticated user or raises 401."""
    user = user_from_token(db, token)
    if user is None:
        raise api_error(
            status.HTTP_401_UNAUTHORIZED,
            "invalid_credentials",
            "Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def get_optional_user(request: Request, db: Session = Depends(get_db)) -> Optional[models.UserModel]:
    """Return the authenticated user if a valid Bearer token is present, otherwise None.

    Does not raise on missing/invalid token so it can be used in endpoints
    that accept both authenticated and anonymous access.
    """
    auth: Optional[str] = request.headers.get("Authorization")
    if not auth:
        return None

    parts = auth.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return user_from_token(db, parts[1])


__all__ = [
    "RefreshTokenError",
    "as_utc",
    "verify_password",
    "get_password_hash",
    "create_access_token",
    "create_access_token_for",
    "decode_access_token",
    "user_from_token",
    "authenticate_user",
    "issue_refresh_token",
    "rotate_refresh_token",
    "revoke_refresh_token",
    "revoke_all_refresh_tokens",
    "get_current_user",
    "get_optional_user",
    "oauth2_scheme",
]
