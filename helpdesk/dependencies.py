"""Common FastAPI dependency helpers for permissions and ticket access.

Provides:
- require_admin
- require_agent_or_admin
- can_access_ticket (boolean check)
- require_ticket_access (raises 403 when access denied)
- get_ticket_or_404
- client_ip
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends, Request, status
from sqlalchemy.orm import Session

from helpdesk import models
from helpdesk.auth import get_current_user
from helpdesk.errors import api_error

logger = logging.getLogger(__name__)


def client_ip(request: Optional[Request]) -> Optional[str]:
    return request.client.host if request is not None and request.client else None


def require_admin(current_user: models.UserModel = Depends(get_current_user)) -> models.UserModel:
    """Dependency that ensures the current user is an admin.

    Raises HTTP 403 if the user is not an admin.
    """
    if current_user.role != models.UserRole.ADMIN.value:
        logger.debug("require_admin: denied for user=%s", current_user.id)
        raise api_error(status.HTTP_403_FORBIDDEN, "admin_required", "Admin access required")
    return current_user


def require_agent_or_admin(current_user: models.UserModel = Depends(get_current_user)) -> models.UserModel:
    """Dependency that ensures the current user is an agent or an admin.

    Raises HTTP 403 if the user is neither.
    """
    if not current_user.is_staff:
        logger.debug("require_agent_or_admin: denied for user=%s", current_user.id)
        raise api_error(status.HTTP_403_FORBIDDEN, "agent_or_admin_required", "Agent or admin access required")
    return current_user


def can_access_ticket(ticket: models.TicketModel, current_user: Optional[models.UserModel]) -> bool:
    """Return True if `current_user` can access the given ticket.

    Rules:
    - Admins and agents can access all tickets
    - End users can only access tickets they submitted
    - Anonymous users cannot access tickets
    """
    if not current_user:
        return False
    if current_user.is_staff:
        return True
    return ticket.submitter_id == current_user.id


def require_ticket_access(ticket: models.TicketModel, current_user: Optional[models.UserModel]) -> models.UserModel:
    """Raise 403 if the current user cannot access the ticket, else return the user."""
    if not can_access_ticket(ticket, current_user):
        logger.debug("require_ticket_access: denied for ticket=%s user=%s", ticket.id, getattr(current_user, "id", None))
        raise api_error(status.HTTP_403_FORBIDDEN, "forbidden", "Access to this ticket is forbidden")
    assert current_user is not None
    return current_user


def get_ticket_or_404(db: Session, ticket_id: str) -> models.TicketModel:
    ticket = db.query(models.TicketModel).filter(models.TicketModel.id == ticket_id).first()
    if not ticket:
        raise api_error(status.HTTP_404_NOT_FOUND, "ticket_not_found", "Ticket not found")
    return ticket


__all__ = [
    "client_ip",
    "require_admin",
    "require_agent_or_admin",
    "can_access_ticket",
    "require_ticket_access",
    "get_ticket_or_404",
]
