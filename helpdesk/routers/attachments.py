"""Attachment routes: upload, list, download and delete ticket files.

Implements:
- POST   /api/attachments/tickets/{ticket_id}  -> upload (submitter, assigned agent or admin)
- GET    /api/attachments/tickets/{ticket_id}  -> list attachments of a ticket
- GET    /api/attachments/{attachment_id}      -> download the stored file
- DELETE /api/attachments/{attachment_id}      -> delete (uploader or admin)
"""

from __future__ import annotations

import logging
import os
import uuid
from datetime import datetime, timezone
from typing import List

from fastapi import APIRouter, Depends, File, Request, UploadFile, status
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from helpdesk import models, schemas, storage
from helpdesk.audit import log_audit
from helpdesk.auth import get_current_user
from helpdesk.cache import cache, ticket_key
from helpdesk.database import get_db
from helpdesk.dependencies import get_ticket_or_404, require_ticket_access
from helpdesk.errors import api_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/attachments", tags=["Attachments"])


def get_attachment_or_404(db: Session, attachment_id: str) -> models.AttachmentModel:
    attachment = db.get(models.AttachmentModel, attachment_id)
    if not attachment:
        raise api_error(status.HTTP_404_NOT_FOUND, "attachment_not_found", "Attachment not found")
    return attachment


def _can_upload(ticket: models.TicketModel, user: models.UserModel) -> bool:
    if user.role == models.UserRole.ADMIN.value:
        return True
    return user.id in (ticket.submitter_id, ticket.assigned_to_id)


@router.post("/tickets/{ticket_id}", response_model=schemas.AttachmentResponse, status_code=status.HTTP_201_CREATED)
async def upload_attachment(ticket_id: str, request: Request, file: UploadFile = File(...), db: Session = Depends(get_db), current_user: models.UserModel = Depends(get_current_user)) -> schemas.AttachmentResponse:
    """Store an uploaded file against a ticket."""
    ticket = get_ticket_or_404(db, ticket_id)
    if not _can_upload(ticket, current_user):
        raise api_error(status.HTTP_403_FORBIDDEN, "forbidden", "Only the submitter, the assigned agent or an admin can upload attachments")

    problem = storage.file_name_problem(file.filename)
    if problem:
        raise api_error(status.HTTP_400_BAD_REQUEST, "invalid_file_name", problem)

    # Size first so a huge upload is rejected as too large rather than by type
    data = await file.read()
    if not data:
        raise api_error(status.HTTP_400_BAD_REQUEST, "attachment_empty", "File is empty")
    if len(data) > storage.MAX_ATTACHMENT_SIZE:
        raise api_error(
            status.HTTP_400_BAD_REQUEST,
            "attachment_too_large",
            f"Attachment too large: {file.filename}",
            details={"max_bytes": storage.MAX_ATTACHMENT_SIZE},
        )

    content_type = file.content_type
    if not storage.mime_allowed(content_type):
        raise api_error(status.HTTP_400_BAD_REQUEST, "attachment_invalid_type", f"Attachment type not allowed: {content_type or 'unknown'}")

    path = storage.save_file(ticket.id, file.filename, data)
    attachment = models.AttachmentModel(
        id=str(uuid.uuid4()),
        ticket_id=ticket.id,
        uploaded_by_id=current_user.id,
        file_name=os.path.basename(file.filename),
        content_type=content_type,
        file_size_bytes=len(data),
        storage_path=path,
        uploaded_at=datetime.now(timezone.utc),
    )
    db.add(attachment)
    db.commit()
    db.refresh(attachment)

    cache.delete(ticket_key(ticket.id))
    log_audit(db, request, current_user, "ATTACHMENT_UPLOADED", "Attachment", attachment.id, details={"ticket_id": ticket.id, "size": len(data)})
    return schemas.AttachmentResponse.model_validate(attachment)


@router.get("/tickets/{ticket_id}", response_model=List[schemas.AttachmentResponse])
async def list_attachments(ticket_id: str, db: Session = Depends(get_db), current_user: models.UserModel = Depends(get_current_user)) -> List[schemas.AttachmentResponse]:
    ticket = get_ticket_or_404(db, ticket_id)
    require_ticket_access(ticket, current_user)
    rows = (
        db.query(models.AttachmentModel)
        .filter(models.AttachmentModel.ticket_id == ticket.id)
        .order_by(models.AttachmentModel.uploaded_at.asc())
        .all()
    )
    return [schemas.AttachmentResponse.model_validate(a) for a in rows]


@router.get("/{attachment_id}")
async def download_attachment(attachment_id: str, db: Session = Depends(get_db), current_user: models.UserModel = Depends(get_current_user)) -> FileResponse:
    attachment = get_attachment_or_404(db, attachment_id)
    require_ticket_access(attachment.ticket, current_user)
    if not os.path.exists(attachment.storage_path):
        logger.error("Attachment %s has no file at %s", attachment.id, attachment.storage_path)
        raise api_error(status.HTTP_404_NOT_FOUND, "attachment_file_missing", "Attachment file not found")
    return FileResponse(attachment.storage_path, media_type=attachment.content_type, filename=attachment.file_name)


@router.delete("/{attachment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_attachment(attachment_id: str, request: Request, db: Session = Depends(get_db), current_user: models.UserModel = Depends(get_current_user)) -> None:
    attachment = get_attachment_or_404(db, attachment_id)
    if current_user.role != models.UserRole.ADMIN.value and attachment.uploaded_by_id != current_user.id:
        raise api_error(status.HTTP_403_FORBIDDEN, "forbidden", "Only the uploader or an admin can delete this attachment")

    ticket_id = attachment.ticket_id
    path = attachment.storage_path
    db.delete(attachment)
    db.commit()
    storage.delete_file(path)

    cache.delete(ticket_key(ticket_id))
    log_audit(db, request, current_user, "ATTACHMENT_DELETED", "Attachment", attachment_id, details={"ticket_id": ticket_id})
    return None
