"""Ticket search: free text plus structured filters."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import or_
from sqlalchemy.orm import Session

from helpdesk import models, schemas
from helpdesk.auth import get_current_user
from helpdesk.database import get_db
from helpdesk.errors import api_error
from helpdesk.helpers.pagination import paginated

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/search", tags=["Search"])

MIN_QUERY_LENGTH = 2


@router.get("/tickets")
async def search_tickets(
    q: Optional[str] = Query(None, max_length=200),
    status_filter: Optional[str] = Query(None, alias="status"),
    priority: Optional[str] = Query(None),
    assigned_to_id: Optional[int] = Query(None),
    created_after: Optional[datetime] = Query(None),
    created_before: Optional[datetime] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: models.UserModel = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Match `q` against title, description and ticket number, newest first.

    End users only ever see tickets they submitted.
    """
    term = (q or "").strip()
    if q is not None and term and len(term) < MIN_QUERY_LENGTH:
        raise api_error(status.HTTP_422_UNPROCESSABLE_ENTITY, "validation_error", f"Search query must be at least {MIN_QUERY_LENGTH} characters long")
    if created_after and created_before and models.to_utc(created_before) <= models.to_utc(created_after):
        raise api_error(status.HTTP_422_UNPROCESSABLE_ENTITY, "validation_error", "created_before must be after created_after")

    query = db.query(models.TicketModel)
    if not current_user.is_staff:
        query = query.filter(models.TicketModel.submitter_id == current_user.id)

    if term:
        pattern = f"%{term}%"
        query = query.filter(
            or_(
                models.TicketModel.title.ilike(pattern),
                models.TicketModel.description.ilike(pattern),
                models.TicketModel.ticket_number.ilike(pattern),
            )
        )
    if status_filter:
        query = query.filter(models.TicketModel.status == schemas.normalize_choice(status_filter))
    if priority:
        query = query.filter(models.TicketModel.priority == schemas.normalize_choice(priority))
    if assigned_to_id is not None:
        query = query.filter(models.TicketModel.assigned_to_id == assigned_to_id)
    if created_after:
        query = query.filter(models.TicketModel.created_at >= models.to_utc(created_after))
    if created_before:
        query = query.filter(models.TicketModel.created_at <= models.to_utc(created_before))

    total = query.count()
    tickets = query.order_by(models.TicketModel.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    logger.debug("Ticket search q=%r returned %d of %d", term, len(tickets), total)
    return paginated([schemas.TicketResponse.model_validate(t) for t in tickets], page, limit, total)
