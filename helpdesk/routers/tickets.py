"""Ticket routes: creation, listing, the agent queue and lifecycle operations.

Lifecycle writes (assign, reassign, status, priority, close, tags) go through
`helpdesk.lifecycle`, which applies them as compare-and-swap updates on the
ticket's `version`. Clients pass the version they last saw in the body
(`expected_version`) or in an `If-Match` / `X-IF-VERSION` header; reads return
it in the body and as the `ETag` header.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from helpdesk import lifecycle, models, schemas
from helpdesk.audit import log_audit
from helpdesk.auth import get_current_user
from helpdesk.cache import TICKET_TTL_SECONDS, cache, ticket_key
from helpdesk.database import get_db
from helpdesk.dependencies import get_ticket_or_404, require_admin, require_agent_or_admin, require_ticket_access
from helpdesk.errors import api_error
from helpdesk.events import TICKET_ASSIGNED, TICKET_CREATED, TICKET_UPDATED, bus, ticket_event_data
from helpdesk.helpers.pagination import paginated
from helpdesk.helpers.tagging import find_tag, resolve_tags
from helpdesk.storage import delete_file

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tickets", tags=["Tickets"])

TICKET_NUMBER_PREFIX = "TKT-"
_CREATE_ATTEMPTS = 3


def next_ticket_number(db: Session) -> str:
    """Return `TKT-` + (highest existing number + 1), zero padded to five digits."""
    column = models.TicketModel.ticket_number
    # Longer numbers sort after shorter ones once we pass 99999
    latest = (
        db.query(column)
        .filter(column.like(f"{TICKET_NUMBER_PREFIX}%"))
        .order_by(func.length(column).desc(), column.desc())
        .first()
    )
    highest = 0
    if latest is not None:
        suffix = latest[0][len(TICKET_NUMBER_PREFIX):]
        if suffix.isdigit():
            highest = int(suffix)
    return f"{TICKET_NUMBER_PREFIX}{highest + 1:05d}"


def expected_version_from(request: Request, body_version: Optional[int] = None) -> Optional[int]:
    """Body value wins, then `If-Match`, then `X-IF-VERSION`. Accepts `"3"` and `W/"3"`.

    `If-Match: *` matches any version, so the version read by the request is used.
    """
    if body_version is not None:
        return body_version
    raw = request.headers.get("If-Match") or request.headers.get("X-IF-VERSION")
    if raw is None:
        return None
    raw = raw.strip()
    if raw == "*":
        return None
    if raw.startswith("W/"):
        raw = raw[2:]
    raw = raw.strip('"')
    try:
        return int(raw)
    except ValueError:
        raise api_error(status.HTTP_400_BAD_REQUEST, "invalid_version", "If-Match must carry an integer ticket version")


def _set_etag(response: Response, version: int) -> None:
    response.headers["ETag"] = f'"{version}"'


def _serialize(ticket: models.TicketModel) -> Dict[str, Any]:
    return schemas.TicketResponse.model_validate(ticket).model_dump(mode="json")


async def _after_change(
    db: Session,
    request: Request,
    user: models.UserModel,
    ticket: models.TicketModel,
    action: str,
    event_type: str,
    **event_extra: Any,
) -> None:
    cache.delete(ticket_key(ticket.id))
    log_audit(db, request, user, action, "Ticket", ticket.id, details={"version": ticket.version, **event_extra})
    await bus.publish(event_type, ticket_event_data(ticket, user, **event_extra), db=db)


@router.post("", response_model=schemas.TicketResponse, status_code=status.HTTP_201_CREATED)
async def create_ticket(payload: schemas.TicketCreate, request: Request, response: Response, db: Session = Depends(get_db), current_user: models.UserModel = Depends(get_current_user)):
    """Open a new ticket on behalf of the caller."""
    if payload.category_id is not None:
        category = db.get(models.CategoryModel, payload.category_id)
        if category is None or not category.is_active:
            raise api_error(status.HTTP_404_NOT_FOUND, "category_not_found", "Category not found")

    ticket: Optional[models.TicketModel] = None
    for attempt in range(1, _CREATE_ATTEMPTS + 1):
        now = datetime.now(timezone.utc)
        ticket = models.TicketModel(
            id=str(uuid.uuid4()),
            ticket_number=next_ticket_number(db),
            title=payload.title,
            description=payload.description,
            priority=payload.priority,
            status=models.TicketStatus.OPEN.value,
            submitter_id=current_user.id,
            category_id=payload.category_id,
            created_at=now,
            updated_at=now,
            version=0,
        )
        ticket.tags = resolve_tags(db, payload.tags)
        db.add(ticket)
        try:
            db.commit()
            break
        except IntegrityError:
            # Another request took the same ticket number
            db.rollback()
            logger.warning("Ticket number collision on attempt %d", attempt)
            if attempt == _CREATE_ATTEMPTS:
                raise api_error(status.HTTP_409_CONFLICT, "ticket_number_conflict", "Could not allocate a ticket number, please retry")

    db.refresh(ticket)
    log_audit(db, request, current_user, "TICKET_CREATED", "Ticket", ticket.id, details={"ticket_number": ticket.ticket_number})
    await bus.publish(TICKET_CREATED, ticket_event_data(ticket, current_user), db=db)

    _set_etag(response, ticket.version)
    return schemas.TicketResponse.model_validate(ticket)


@router.get("")
async def list_tickets(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status_filter: Optional[str] = Query(None, alias="status"),
    priority: Optional[str] = Query(None),
    assigned_to_id: Optional[int] = Query(None),
    current_user: models.UserModel = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """List tickets, newest first. End users only see tickets they submitted."""
    q = db.query(models.TicketModel)
    if not current_user.is_staff:
        q = q.filter(models.TicketModel.submitter_id == current_user.id)

    if status_filter:
        q = q.filter(models.TicketModel.status == schemas.normalize_choice(status_filter))
    if priority:
        q = q.filter(models.TicketModel.priority == schemas.normalize_choice(priority))
    if assigned_to_id is not None:
        q = q.filter(models.TicketModel.assigned_to_id == assigned_to_id)

    total = q.count()
    tickets = q.order_by(models.TicketModel.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    return paginated([schemas.TicketResponse.model_validate(t) for t in tickets], page, limit, total)


@router.get("/queue")
async def agent_queue(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: models.UserModel = Depends(require_agent_or_admin),
    db: Session = Depends(get_db),
):
    """Open work for the caller: unassigned or assigned to them, most urgent and oldest first."""
    rank = case(models.PRIORITY_RANK, value=models.TicketModel.priority, else_=0)
    q = db.query(models.TicketModel).filter(
        models.TicketModel.status.notin_(sorted(lifecycle.TERMINAL_STATUSES)),
        (models.TicketModel.assigned_to_id.is_(None)) | (models.TicketModel.assigned_to_id == current_user.id),
    )
    total = q.count()
    tickets = q.order_by(rank.desc(), models.TicketModel.created_at.asc()).offset((page - 1) * limit).limit(limit).all()
    return paginated([schemas.TicketResponse.model_validate(t) for t in tickets], page, limit, total)


@router.get("/{ticket_id}", response_model=schemas.TicketResponse)
async def get_ticket(ticket_id: str, response: Response, db: Session = Depends(get_db), current_user: models.UserModel = Depends(get_current_user)):
    """Return a single ticket if the user has access. Served from the ticket cache when warm."""
    key = ticket_key(ticket_id)
    data = cache.get(key)
    if data is None:
        ticket = get_ticket_or_404(db, ticket_id)
        data = _serialize(ticket)
        cache.set(key, data, TICKET_TTL_SECONDS)

    if not current_user.is_staff and data["submitter_id"] != current_user.id:
        raise api_error(status.HTTP_403_FORBIDDEN, "forbidden", "Access to this ticket is forbidden")

    _set_etag(response, data["version"])
    return data


@router.get("/{ticket_id}/details", response_model=schemas.TicketDetailResponse)
async def get_ticket_details(ticket_id: str, response: Response, db: Session = Depends(get_db), current_user: models.UserModel = Depends(get_current_user)):
    """Ticket plus comments and attachments. Internal comments are hidden from end users."""
    ticket = get_ticket_or_404(db, ticket_id)
    require_ticket_access(ticket, current_user)

    comments = [c for c in ticket.comments if current_user.is_staff or not c.is_internal]
    detail = schemas.TicketDetailResponse.model_validate(
        {
            **schemas.TicketResponse.model_validate(ticket).model_dump(),
            "comments": [schemas.CommentResponse.model_validate(c) for c in comments],
            "attachments": [schemas.AttachmentResponse.model_validate(a) for a in ticket.attachments],
        }
    )
    _set_etag(response, ticket.version)
    return detail


@router.put("/{ticket_id}/assign", response_model=schemas.TicketResponse)
async def assign_ticket(ticket_id: str, body: schemas.AssignTicketRequest, request: Request, response: Response, db: Session = Depends(get_db), current_user: models.UserModel = Depends(require_agent_or_admin)):
    """Assign to an agent or admin. An open ticket moves to in_progress."""
    ticket = lifecycle.assign(db, ticket_id, body.agent_id, expected_version_from(request, body.expected_version))
    assignee = db.get(models.UserModel, ticket.assigned_to_id)

    await _after_change(db, request, current_user, ticket, "TICKET_ASSIGNED", TICKET_ASSIGNED, assignee_name=assignee.full_name if assignee else None)
    _set_etag(response, ticket.version)
    return schemas.TicketResponse.model_validate(ticket)


@router.put("/{ticket_id}/reassign", response_model=schemas.TicketResponse)
async def reassign_ticket(ticket_id: str, body: schemas.AssignTicketRequest, request: Request, response: Response, db: Session = Depends(get_db), current_user: models.UserModel = Depends(require_agent_or_admin)):
    """Hand the ticket to another agent; the status is left as is."""
    previous = db.query(models.TicketModel.assigned_to_id).filter(models.TicketModel.id == ticket_id).scalar()
    ticket = lifecycle.reassign(db, ticket_id, body.agent_id, expected_version_from(request, body.expected_version))
    assignee = db.get(models.UserModel, ticket.assigned_to_id)

    await _after_change(
        db, request, current_user, ticket, "TICKET_REASSIGNED", TICKET_ASSIGNED,
        assignee_name=assignee.full_name if assignee else None,
        previous_assignee_id=previous,
    )
    _set_etag(response, ticket.version)
    return schemas.TicketResponse.model_validate(ticket)


@router.put("/{ticket_id}/status", response_model=schemas.TicketResponse)
async def update_ticket_status(ticket_id: str, body: schemas.UpdateStatusRequest, request: Request, response: Response, db: Session = Depends(get_db), current_user: models.UserModel = Depends(require_agent_or_admin)):
    """Move a ticket between non-terminal statuses or cancel it. Closing has its own endpoint."""
    ticket = lifecycle.update_status(db, ticket_id, body.status, expected_version_from(request, body.expected_version))

    await _after_change(db, request, current_user, ticket, "TICKET_STATUS_CHANGED", TICKET_UPDATED, changes=["status"])
    _set_etag(response, ticket.version)
    return schemas.TicketResponse.model_validate(ticket)


@router.put("/{ticket_id}/priority", response_model=schemas.TicketResponse)
async def update_ticket_priority(ticket_id: str, body: schemas.UpdatePriorityRequest, request: Request, response: Response, db: Session = Depends(get_db), current_user: models.UserModel = Depends(require_agent_or_admin)):
    ticket = lifecycle.update_priority(db, ticket_id, body.priority, expected_version_from(request, body.expected_version))

    await _after_change(db, request, current_user, ticket, "TICKET_PRIORITY_CHANGED", TICKET_UPDATED, changes=["priority"])
    _set_etag(response, ticket.version)
    return schemas.TicketResponse.model_validate(ticket)


@router.post("/{ticket_id}/close", response_model=schemas.TicketResponse)
async def close_ticket(ticket_id: str, body: schemas.CloseTicketRequest, request: Request, response: Response, db: Session = Depends(get_db), current_user: models.UserModel = Depends(require_agent_or_admin)):
    """Close a ticket with resolution notes (at least 10 characters)."""
    ticket = lifecycle.close(db, ticket_id, body.resolution_notes, expected_version_from(request, body.expected_version))

    await _after_change(db, request, current_user, ticket, "TICKET_CLOSED", TICKET_UPDATED, changes=["status", "resolution_notes"])
    _set_etag(response, ticket.version)
    return schemas.TicketResponse.model_validate(ticket)


@router.post("/{ticket_id}/tags", response_model=schemas.TicketResponse)
async def add_ticket_tags(ticket_id: str, body: schemas.TicketTagsRequest, request: Request, response: Response, db: Session = Depends(get_db), current_user: models.UserModel = Depends(require_agent_or_admin)):
    """Attach tags, creating the ones that do not exist yet."""
    ticket = get_ticket_or_404(db, ticket_id)
    expected = expected_version_from(request, body.expected_version)

    current: List[models.TagModel] = list(ticket.tags)
    current_ids = {t.id for t in current}
    added = [t for t in resolve_tags(db, body.tags) if t.id not in current_ids]
    ticket.tags = current + added
    ticket = lifecycle.bump_version(db, ticket, expected)

    await _after_change(db, request, current_user, ticket, "TICKET_TAGS_ADDED", TICKET_UPDATED, changes=["tags"], tags=[t.name for t in added])
    _set_etag(response, ticket.version)
    return schemas.TicketResponse.model_validate(ticket)


@router.delete("/{ticket_id}/tags", response_model=schemas.TicketResponse)
async def remove_ticket_tags(ticket_id: str, body: schemas.TicketTagsRequest, request: Request, response: Response, db: Session = Depends(get_db), current_user: models.UserModel = Depends(require_agent_or_admin)):
    ticket = get_ticket_or_404(db, ticket_id)
    expected = expected_version_from(request, body.expected_version)

    doomed = {tag.id for tag in (find_tag(db, name) for name in body.tags) if tag is not None}
    removed = [t.name for t in ticket.tags if t.id in doomed]
    ticket.tags = [t for t in ticket.tags if t.id not in doomed]
    ticket = lifecycle.bump_version(db, ticket, expected)

    await _after_change(db, request, current_user, ticket, "TICKET_TAGS_REMOVED", TICKET_UPDATED, changes=["tags"], tags=removed)
    _set_etag(response, ticket.version)
    return schemas.TicketResponse.model_validate(ticket)


@router.delete("/{ticket_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_ticket(ticket_id: str, request: Request, db: Session = Depends(get_db), _admin: models.UserModel = Depends(require_admin)) -> None:
    ticket = get_ticket_or_404(db, ticket_id)
    stored_files = [a.storage_path for a in ticket.attachments]

    db.delete(ticket)
    db.commit()
    for path in stored_files:
        delete_file(path)

    cache.delete(ticket_key(ticket_id))
    log_audit(db, request, _admin, "TICKET_DELETED", "Ticket", ticket_id)
    return None
