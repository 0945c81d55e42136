"""Authentication API routes: register, login, refresh, logout and current user."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Union

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from helpdesk import models, schemas
from helpdesk.audit import log_audit
from helpdesk.auth import (
    ACCESS_TOKEN_EXPIRE_MINUTES,
    RefreshTokenError,
    authenticate_user,
    create_access_token_for,
    get_current_user,
    get_password_hash,
    issue_refresh_token,
    revoke_refresh_token,
    rotate_refresh_token,
)
from helpdesk.database import get_db
from helpdesk.dependencies import client_ip
from helpdesk.errors import api_error
from helpdesk.twofactor import create_challenge_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Authentication"])


def token_response(db: Session, user: models.UserModel, refresh: models.RefreshTokenModel) -> schemas.TokenResponse:
    return schemas.TokenResponse(
        access_token=create_access_token_for(user),
        refresh_token=refresh.token,
        token_type="bearer",
        expires_in=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=schemas.UserResponse.model_validate(user),
    )


@router.post("/register", response_model=schemas.TokenResponse, status_code=status.HTTP_201_CREATED)
async def register(payload: schemas.RegisterRequest, request: Request, db: Session = Depends(get_db)) -> schemas.TokenResponse:
    """Self-service registration. New accounts are always end users."""
    email = payload.email.lower()
    if db.query(models.UserModel).filter(models.UserModel.email == email).first():
        raise api_error(status.HTTP_409_CONFLICT, "email_in_use", "Email already in use")
    if payload.username and db.query(models.UserModel).filter(models.UserModel.username == payload.username).first():
        raise api_error(status.HTTP_409_CONFLICT, "username_in_use", "Username already in use")

    user = models.UserModel(
        username=payload.username,
        email=email,
        first_name=payload.first_name,
        last_name=payload.last_name,
        hashed_password=get_password_hash(payload.password),
        role=models.UserRole.END_USER.value,
        is_active=True,
        last_login_at=datetime.now(timezone.utc),
    )
    db.add(user)
    db.flush()
    refresh = issue_refresh_token(db, user, client_ip(request))
    db.commit()
    db.refresh(user)

    log_audit(db, request, user, "REGISTER", "User", user.id)
    return token_response(db, user, refresh)


@router.post("/login", response_model=Union[schemas.TokenResponse, schemas.TwoFactorChallengeResponse])
async def login(credentials: schemas.LoginRequest, request: Request, db: Session = Depends(get_db)):
    """Authenticate with username or email; returns an access token and a refresh token.

    Accounts with two-factor auth get a challenge token instead, to be
    exchanged at `/api/auth/2fa/verify`.
    """
    user = authenticate_user(db, credentials.username_or_email, credentials.password)

    if not user:
        log_audit(db, request, None, "LOGIN_FAILED", "User", credentials.username_or_email, "FAILED")
        raise api_error(status.HTTP_401_UNAUTHORIZED, "invalid_credentials", "Invalid credentials")

    if not user.is_active:
        log_audit(db, request, user, "LOGIN_FAILED", "User", user.id, "FAILED_INACTIVE")
        raise api_error(status.HTTP_401_UNAUTHORIZED, "user_inactive", "User inactive")

    if user.two_factor_enabled:
        log_audit(db, request, user, "LOGIN_2FA_CHALLENGE", "User", user.id)
        return schemas.TwoFactorChallengeResponse(challenge_token=create_challenge_token(user), user_id=user.id, email=user.email)

    user.last_login_at = datetime.now(timezone.utc)
    refresh = issue_refresh_token(db, user, client_ip(request))
    db.commit()
    db.refresh(user)

    log_audit(db, request, user, "LOGIN", "User", user.id)
    return token_response(db, user, refresh)


@router.post("/refresh", response_model=schemas.TokenResponse)
async def refresh_tokens(body: schemas.RefreshRequest, request: Request, db: Session = Depends(get_db)) -> schemas.TokenResponse:
    """Rotate a refresh token. The presented token is revoked and replaced."""
    try:
        user, replacement = rotate_refresh_token(db, body.refresh_token, client_ip(request))
    except RefreshTokenError as exc:
        log_audit(db, request, None, "TOKEN_REFRESH_FAILED", "RefreshToken", None, "FAILED", {"reason": exc.code})
        raise api_error(status.HTTP_401_UNAUTHORIZED, exc.code, exc.message)

    log_audit(db, request, user, "TOKEN_REFRESH", "RefreshToken", replacement.id)
    return token_response(db, user, replacement)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(body: schemas.RefreshRequest, request: Request, db: Session = Depends(get_db), current_user: models.UserModel = Depends(get_current_user)) -> None:
    """Revoke the given refresh token. Unknown or already revoked tokens are ignored."""
    owned = db.query(models.RefreshTokenModel).filter(
        models.RefreshTokenModel.token == body.refresh_token,
        models.RefreshTokenModel.user_id == current_user.id,
    ).first()
    if owned is not None:
        revoke_refresh_token(db, body.refresh_token)
    log_audit(db, request, current_user, "LOGOUT", "User", current_user.id)
    return None


@router.get("/me", response_model=schemas.UserResponse)
async def me(current_user: models.UserModel = Depends(get_current_user)) -> schemas.UserResponse:
    """Return current authenticated user."""
    return schemas.UserResponse.model_validate(current_user)
