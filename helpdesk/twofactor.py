"""TOTP second factor: secrets, code checks, backup codes and login challenges.

A login for an account with two-factor enabled does not return tokens.
It returns a short-lived challenge token instead (a JWT carrying
`purpose: "2fa"`), which `/api/auth/2fa/verify` exchanges, together with a
TOTP or backup code, for the usual access and refresh tokens.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import re
import secrets
import string
from datetime import timedelta
from typing import List, Optional

import pyotp
from jose import JWTError
from sqlalchemy.orm import Session

from helpdesk import models
from helpdesk.auth import create_access_token, decode_access_token

logger = logging.getLogger(__name__)

TWO_FACTOR_ISSUER = os.getenv("TWO_FACTOR_ISSUER", "Helpdesk")
CHALLENGE_PURPOSE = "2fa"
CHALLENGE_EXPIRE_MINUTES = 5
BACKUP_CODE_COUNT = 10

_BACKUP_ALPHABET = string.ascii_uppercase + string.digits
_BACKUP_CODE_RE = re.compile(r"^[A-Z0-9]{4}-?[A-Z0-9]{4}$")


def generate_secret() -> str:
    return pyotp.random_base32()


def provisioning_uri(secret: str, account: str) -> str:
    """otpauth:// URI for authenticator apps (rendered as a QR code by clients)."""
    return pyotp.TOTP(secret).provisioning_uri(name=account, issuer_name=TWO_FACTOR_ISSUER)


def verify_code(secret: Optional[str], code: str) -> bool:
    # One step either side tolerates clock drift between server and device
    if not secret or not code:
        return False
    return pyotp.TOTP(secret).verify(code.strip(), valid_window=1)


# ----------------------------- Backup codes ---------------------------
def _normalize(code: str) -> str:
    return code.strip().upper().replace("-", "")


def _digest(code: str) -> str:
    return hashlib.sha256(_normalize(code).encode()).hexdigest()


def looks_like_backup_code(code: str) -> bool:
    return bool(_BACKUP_CODE_RE.match(code.strip().upper()))


def generate_backup_codes(count: int = BACKUP_CODE_COUNT) -> List[str]:
    codes = []
    for _ in range(count):
        raw = "".join(secrets.choice(_BACKUP_ALPHABET) for _ in range(8))
        codes.append(f"{raw[:4]}-{raw[4:]}")
    return codes


def hash_backup_codes(codes: List[str]) -> str:
    return json.dumps([_digest(c) for c in codes])


def backup_codes_remaining(user: models.UserModel) -> int:
    if not user.two_factor_backup_codes:
        return 0
    return len(json.loads(user.two_factor_backup_codes))


def consume_backup_code(user: models.UserModel, code: str) -> bool:
    """Remove a matching backup code from `user`. The caller commits."""
    if not user.two_factor_backup_codes:
        return False
    digests = json.loads(user.two_factor_backup_codes)
    digest = _digest(code)
    if digest not in digests:
        return False
    digests.remove(digest)
    user.two_factor_backup_codes = json.dumps(digests)
    return True


# ----------------------------- Login challenge ------------------------
def create_challenge_token(user: models.UserModel) -> str:
    return create_access_token(
        {"sub": user.username or user.email, "uid": user.id, "purpose": CHALLENGE_PURPOSE},
        expires_delta=timedelta(minutes=CHALLENGE_EXPIRE_MINUTES),
    )


def user_from_challenge(db: Session, token: str) -> Optional[models.UserModel]:
    """Return the active, two-factor enabled user a challenge token was issued to, or None."""
    try:
        payload = decode_access_token(token)
    except JWTError as exc:
        logger.debug("2FA challenge decode error: %s", exc)
        return None
    if payload.get("purpose") != CHALLENGE_PURPOSE or payload.get("uid") is None:
        return None
    user = db.get(models.UserModel, payload["uid"])
    if user is None or not user.is_active or not user.two_factor_enabled:
        return None
    return user


__all__ = [
    "TWO_FACTOR_ISSUER",
    "BACKUP_CODE_COUNT",
    "generate_secret",
    "provisioning_uri",
    "verify_code",
    "looks_like_backup_code",
    "generate_backup_codes",
    "hash_backup_codes",
    "backup_codes_remaining",
    "consume_backup_code",
    "create_challenge_token",
    "user_from_challenge",
]
