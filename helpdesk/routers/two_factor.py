"""Two-factor (TOTP) enrolment, login verification and backup codes."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from helpdesk import models, schemas, twofactor
from helpdesk.audit import log_audit
from helpdesk.auth import get_current_user, issue_refresh_token, verify_password
from helpdesk.database import get_db
from helpdesk.dependencies import client_ip
from helpdesk.errors import api_error
from helpdesk.routers.auth import token_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth/2fa", tags=["Two-factor auth"])


@router.get("/status", response_model=schemas.TwoFactorStatusResponse)
async def two_factor_status(current_user: models.UserModel = Depends(get_current_user)) -> schemas.TwoFactorStatusResponse:
    return schemas.TwoFactorStatusResponse(
        enabled=current_user.two_factor_enabled,
        enabled_at=current_user.two_factor_enabled_at,
        backup_codes_remaining=twofactor.backup_codes_remaining(current_user),
    )


@router.post("/setup", response_model=schemas.TwoFactorSetupResponse)
async def setup_two_factor(request: Request, db: Session = Depends(get_db), current_user: models.UserModel = Depends(get_current_user)) -> schemas.TwoFactorSetupResponse:
    """Start enrolment: store a fresh secret and return it with its otpauth URI.

    Two-factor stays off until `/enable` confirms a code from the device.
    Calling setup again replaces an unconfirmed secret.
    """
    if current_user.two_factor_enabled:
        raise api_error(status.HTTP_400_BAD_REQUEST, "two_factor_already_enabled", "Two-factor authentication is already enabled")

    secret = twofactor.generate_secret()
    current_user.two_factor_secret = secret
    db.commit()

    log_audit(db, request, current_user, "2FA_SETUP", "User", current_user.id)
    return schemas.TwoFactorSetupResponse(secret=secret, qr_code_uri=twofactor.provisioning_uri(secret, current_user.email))


@router.post("/enable", response_model=schemas.TwoFactorEnableResponse)
async def enable_two_factor(body: schemas.TwoFactorCodeRequest, request: Request, db: Session = Depends(get_db), current_user: models.UserModel = Depends(get_current_user)) -> schemas.TwoFactorEnableResponse:
    """Confirm the pending secret with a current code. Returns the backup codes once."""
    if current_user.two_factor_enabled:
        raise api_error(status.HTTP_400_BAD_REQUEST, "two_factor_already_enabled", "Two-factor authentication is already enabled")
    if not current_user.two_factor_secret:
        raise api_error(status.HTTP_400_BAD_REQUEST, "two_factor_not_initiated", "Two-factor setup has not been started")
    if not twofactor.verify_code(current_user.two_factor_secret, body.code):
        log_audit(db, request, current_user, "2FA_ENABLE_FAILED", "User", current_user.id, "FAILED")
        raise api_error(status.HTTP_400_BAD_REQUEST, "invalid_two_factor_code", "Invalid verification code")

    codes = twofactor.generate_backup_codes()
    current_user.two_factor_enabled = True
    current_user.two_factor_enabled_at = datetime.now(timezone.utc)
    current_user.two_factor_backup_codes = twofactor.hash_backup_codes(codes)
    db.commit()

    logger.info("Two-factor enabled for user=%s", current_user.id)
    log_audit(db, request, current_user, "2FA_ENABLED", "User", current_user.id)
    return schemas.TwoFactorEnableResponse(enabled=True, backup_codes=codes)


@router.post("/disable", status_code=status.HTTP_204_NO_CONTENT)
async def disable_two_factor(body: schemas.TwoFactorDisableRequest, request: Request, db: Session = Depends(get_db), current_user: models.UserModel = Depends(get_current_user)) -> None:
    if not current_user.two_factor_enabled:
        raise api_error(status.HTTP_400_BAD_REQUEST, "two_factor_not_enabled", "Two-factor authentication is not enabled")
    if not verify_password(body.password, current_user.hashed_password):
        log_audit(db, request, current_user, "2FA_DISABLE_FAILED", "User", current_user.id, "FAILED")
        raise api_error(status.HTTP_400_BAD_REQUEST, "invalid_password", "Invalid password")

    current_user.two_factor_enabled = False
    current_user.two_factor_secret = None
    current_user.two_factor_backup_codes = None
    current_user.two_factor_enabled_at = None
    db.commit()

    logger.info("Two-factor disabled for user=%s", current_user.id)
    log_audit(db, request, current_user, "2FA_DISABLED", "User", current_user.id)
    return None


@router.post("/verify", response_model=schemas.TokenResponse)
async def verify_two_factor(body: schemas.TwoFactorVerifyRequest, request: Request, db: Session = Depends(get_db)) -> schemas.TokenResponse:
    """Exchange a login challenge token plus a TOTP or backup code for tokens.

    `is_backup_code` forces the check; when omitted, codes shaped like
    `XXXX-XXXX` are taken as backup codes. A backup code works once.
    """
    user = twofactor.user_from_challenge(db, body.challenge_token)
    if user is None:
        raise api_error(status.HTTP_401_UNAUTHORIZED, "invalid_two_factor_token", "Invalid or expired two-factor challenge")

    use_backup = body.is_backup_code if body.is_backup_code is not None else twofactor.looks_like_backup_code(body.code)
    if use_backup:
        valid = twofactor.consume_backup_code(user, body.code)
    else:
        valid = twofactor.verify_code(user.two_factor_secret, body.code)
    if not valid:
        log_audit(db, request, user, "LOGIN_FAILED", "User", user.id, "FAILED_2FA")
        raise api_error(status.HTTP_401_UNAUTHORIZED, "invalid_two_factor_code", "Invalid two-factor code")

    user.last_login_at = datetime.now(timezone.utc)
    refresh = issue_refresh_token(db, user, client_ip(request))
    db.commit()
    db.refresh(user)

    if use_backup:
        logger.warning("Backup code used by user=%s; %d left", user.id, twofactor.backup_codes_remaining(user))
    log_audit(db, request, user, "LOGIN", "User", user.id, details={"two_factor": "backup_code" if use_backup else "totp"})
    return token_response(db, user, refresh)


@router.post("/backup-codes/regenerate", response_model=schemas.BackupCodesResponse)
async def regenerate_backup_codes(body: schemas.TwoFactorCodeRequest, request: Request, db: Session = Depends(get_db), current_user: models.UserModel = Depends(get_current_user)) -> schemas.BackupCodesResponse:
    """Replace every backup code. Needs a current TOTP code."""
    if not current_user.two_factor_enabled:
        raise api_error(status.HTTP_400_BAD_REQUEST, "two_factor_not_enabled", "Two-factor authentication is not enabled")
    if not twofactor.verify_code(current_user.two_factor_secret, body.code):
        raise api_error(status.HTTP_400_BAD_REQUEST, "invalid_two_factor_code", "Invalid verification code")

    codes = twofactor.generate_backup_codes()
    current_user.two_factor_backup_codes = twofactor.hash_backup_codes(codes)
    db.commit()

    log_audit(db, request, current_user, "2FA_BACKUP_CODES_REGENERATED", "User", current_user.id)
    return schemas.BackupCodesResponse(backup_codes=codes)
