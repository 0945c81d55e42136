"""Read access to the audit trail (admin only)."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from helpdesk import models, schemas
from helpdesk.database import get_db
from helpdesk.dependencies import require_admin
from helpdesk.helpers.pagination import paginated

router = APIRouter(prefix="/api/audit-logs", tags=["Audit"])


@router.get("")
async def list_audit_logs(
    user_id: Optional[int] = Query(None),
    action: Optional[str] = Query(None),
    entity_type: Optional[str] = Query(None),
    entity_id: Optional[str] = Query(None),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    _admin: models.UserModel = Depends(require_admin),
    db: Session = Depends(get_db),
):
    q = db.query(models.AuditLogModel)
    if user_id is not None:
        q = q.filter(models.AuditLogModel.user_id == user_id)
    if action:
        q = q.filter(models.AuditLogModel.action == action.upper())
    if entity_type:
        q = q.filter(models.AuditLogModel.entity_type == entity_type)
    if entity_id:
        q = q.filter(models.AuditLogModel.entity_id == entity_id)
    if start:
        q = q.filter(models.AuditLogModel.timestamp >= models.to_utc(start))
    if end:
        q = q.filter(models.AuditLogModel.timestamp <= models.to_utc(end))

    total = q.count()
    rows = q.order_by(models.AuditLogModel.timestamp.desc(), models.AuditLogModel.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return paginated([schemas.AuditLogResponse.model_validate(r) for r in rows], page, limit, total)
