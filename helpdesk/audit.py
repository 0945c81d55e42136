"""Audit trail helper shared by the routers."""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from fastapi import Request
from sqlalchemy.orm import Session

from helpdesk import models

logger = logging.getLogger(__name__)


def log_audit(
    db: Session,
    request: Optional[Request],
    user: Optional[models.UserModel],
    action: str,
    entity_type: str,
    entity_id: Optional[Any] = None,
    status_str: str = "SUCCESS",
    details: Optional[Any] = None,
) -> None:
    """Persist an audit record. Failures are logged and never raised."""
    try:
        if details is not None and not isinstance(details, str):
            details = json.dumps(details, default=str)
        entry = models.AuditLogModel(
            user_id=user.id if user is not None else None,
            user_email=user.email if user is not None else None,
            action=action,
            entity_type=entity_type,
            entity_id=None if entity_id is None else str(entity_id),
            details=details,
            status=status_str,
            ip_address=request.client.host if request is not None and request.client else None,
            user_agent=request.headers.get("user-agent") if request is not None else None,
        )
        db.add(entry)
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("Failed to write audit log")


__all__ = ["log_audit"]
