"""Comment routes on tickets.

Implements:
- POST /api/tickets/{ticket_id}/comments  -> add a comment (ticket access required)
- GET  /api/tickets/{ticket_id}/comments  -> list comments, oldest first

Internal comments are notes between staff: only agents and admins may post
them and end users never see them.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import List

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from helpdesk import models, schemas
from helpdesk.audit import log_audit
from helpdesk.auth import get_current_user
from helpdesk.cache import cache, ticket_key
from helpdesk.database import get_db
from helpdesk.dependencies import get_ticket_or_404, require_ticket_access
from helpdesk.errors import api_error
from helpdesk.events import COMMENT_ADDED, bus, ticket_event_data

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tickets", tags=["Comments"])


@router.post("/{ticket_id}/comments", response_model=schemas.CommentResponse, status_code=status.HTTP_201_CREATED)
async def add_comment(ticket_id: str, payload: schemas.CommentCreate, request: Request, db: Session = Depends(get_db), current_user: models.UserModel = Depends(get_current_user)) -> schemas.CommentResponse:
    ticket = get_ticket_or_404(db, ticket_id)
    require_ticket_access(ticket, current_user)

    if payload.is_internal and not current_user.is_staff:
        raise api_error(status.HTTP_403_FORBIDDEN, "forbidden", "Only agents and admins can post internal comments")

    now = datetime.now(timezone.utc)
    comment = models.CommentModel(
        id=str(uuid.uuid4()),
        ticket_id=ticket.id,
        author_id=current_user.id,
        content=payload.content,
        is_internal=payload.is_internal,
        created_at=now,
        updated_at=now,
    )
    db.add(comment)
    db.commit()
    db.refresh(comment)

    cache.delete(ticket_key(ticket.id))
    log_audit(db, request, current_user, "COMMENT_ADDED", "Comment", comment.id, details={"ticket_id": ticket.id, "is_internal": comment.is_internal})
    await bus.publish(
        COMMENT_ADDED,
        ticket_event_data(ticket, current_user, comment_id=comment.id, is_internal=comment.is_internal),
        db=db,
    )
    return schemas.CommentResponse.model_validate(comment)


@router.get("/{ticket_id}/comments", response_model=List[schemas.CommentResponse])
async def list_comments(ticket_id: str, db: Session = Depends(get_db), current_user: models.UserModel = Depends(get_current_user)) -> List[schemas.CommentResponse]:
    ticket = get_ticket_or_404(db, ticket_id)
    require_ticket_access(ticket, current_user)

    q = db.query(models.CommentModel).filter(models.CommentModel.ticket_id == ticket.id)
    if not current_user.is_staff:
        q = q.filter(models.CommentModel.is_internal.is_(False))
    comments = q.order_by(models.CommentModel.created_at.asc()).all()
    return [schemas.CommentResponse.model_validate(c) for c in comments]
