"""Ticket lifecycle guard: state transitions and lost-update detection.

Every mutating operation is a single compare-and-swap UPDATE:

    UPDATE tickets SET ..., version = version + 1
    WHERE id = :id AND version = :expected AND status NOT IN (closed, cancelled)

Zero affected rows means another writer got there first. The row is then
re-read to tell a ticket that became terminal (InvalidState) apart from a
plain version mismatch (VersionConflict). Callers that receive a
VersionConflict must refetch the ticket and retry with the new version.

The functions raise the exceptions below; `helpdesk.main` maps them to HTTP.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from helpdesk.models import TicketModel, TicketPriority, TicketStatus, UserModel, UserRole, utcnow

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = frozenset({TicketStatus.CLOSED.value, TicketStatus.CANCELLED.value})
ASSIGNABLE_ROLES = frozenset({UserRole.AGENT.value, UserRole.ADMIN.value})

MIN_RESOLUTION_NOTES_LENGTH = 10
MAX_RESOLUTION_NOTES_LENGTH = 5000


class LifecycleError(Exception):
    """Base class for lifecycle guard failures."""

    code = "lifecycle_error"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details or None


class TicketNotFound(LifecycleError):
    code = "ticket_not_found"


class AgentNotFound(LifecycleError):
    code = "agent_not_found"


class InvalidState(LifecycleError):
    code = "invalid_state"


class RoleViolation(LifecycleError):
    code = "invalid_assignee"


class VersionConflict(LifecycleError):
    code = "version_conflict"

    def __init__(self, expected_version: int, current_version: int):
        super().__init__(
            "The ticket was modified by another user. Refresh and try again.",
            expected_version=expected_version,
            current_version=current_version,
        )
        self.expected_version = expected_version
        self.current_version = current_version


class LifecycleValidationError(LifecycleError):
    code = "validation_error"


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def _load_ticket(db: Session, ticket_id: str) -> TicketModel:
    ticket = db.query(TicketModel).filter(TicketModel.id == ticket_id).first()
    if ticket is None:
        raise TicketNotFound("Ticket not found", ticket_id=ticket_id)
    return ticket


def _ensure_mutable(ticket: TicketModel, action: str) -> None:
    if is_terminal(ticket.status):
        raise InvalidState(f"Cannot {action} a {ticket.status} ticket", status=ticket.status)


def _compare_and_swap(
    db: Session,
    ticket: TicketModel,
    expected_version: Optional[int],
    values: Dict[Any, Any],
    allow_terminal: bool = False,
) -> TicketModel:
    """Apply `values` to the ticket row iff its version still equals the expected one.

    When `expected_version` is None the version read into `ticket` is used,
    which still catches writers that commit between that read and this update.
    """
    expected = ticket.version if expected_version is None else expected_version

    assignments = dict(values)
    assignments[TicketModel.updated_at] = utcnow()
    assignments[TicketModel.version] = TicketModel.version + 1

    query = db.query(TicketModel).filter(TicketModel.id == ticket.id, TicketModel.version == expected)
    if not allow_terminal:
        query = query.filter(TicketModel.status.notin_(sorted(TERMINAL_STATUSES)))
    updated = query.update(assignments, synchronize_session=False)

    if not updated:
        db.rollback()
        current = db.query(TicketModel).filter(TicketModel.id == ticket.id).populate_existing().first()
        if current is None:
            raise TicketNotFound("Ticket not found", ticket_id=ticket.id)
        if not allow_terminal and is_terminal(current.status):
            raise InvalidState(f"Ticket is already {current.status}", status=current.status)
        logger.info("Version conflict on ticket=%s expected=%s current=%s", ticket.id, expected, current.version)
        raise VersionConflict(expected, current.version)

    db.commit()
    db.refresh(ticket)
    return ticket


def _resolve_agent(db: Session, agent_id: int) -> UserModel:
    agent = db.get(UserModel, agent_id)
    if agent is None:
        raise AgentNotFound("Agent not found", agent_id=agent_id)
    return agent


def assign(db: Session, ticket_id: str, agent_id: int, expected_version: Optional[int] = None) -> TicketModel:
    """Assign the ticket to an agent or administrator.

    An open ticket moves to in_progress; any other non-terminal status is kept.
    """
    ticket = _load_ticket(db, ticket_id)
    agent = _resolve_agent(db, agent_id)
    _ensure_mutable(ticket, "assign")
    if agent.role not in ASSIGNABLE_ROLES or not agent.is_active:
        raise RoleViolation("Assignee must be an active agent or admin", agent_id=agent_id, role=agent.role)

    values: Dict[Any, Any] = {TicketModel.assigned_to_id: agent.id}
    if ticket.status == TicketStatus.OPEN.value:
        values[TicketModel.status] = TicketStatus.IN_PROGRESS.value
    return _compare_and_swap(db, ticket, expected_version, values)


def reassign(db: Session, ticket_id: str, agent_id: int, expected_version: Optional[int] = None) -> TicketModel:
    """Hand the ticket to another agent without touching its status."""
    ticket = _load_ticket(db, ticket_id)
    agent = _resolve_agent(db, agent_id)
    _ensure_mutable(ticket, "reassign")
    if agent.role not in ASSIGNABLE_ROLES or not agent.is_active:
        raise RoleViolation("Assignee must be an active agent or admin", agent_id=agent_id, role=agent.role)
    return _compare_and_swap(db, ticket, expected_version, {TicketModel.assigned_to_id: agent.id})


def update_status(db: Session, ticket_id: str, new_status: str, expected_version: Optional[int]) -> TicketModel:
    ticket = _load_ticket(db, ticket_id)
    _ensure_mutable(ticket, "change the status of")
    try:
        target = TicketStatus(new_status)
    except ValueError:
        raise LifecycleValidationError(f"Unknown status: {new_status}", status=new_status)
    if target is TicketStatus.CLOSED:
        raise InvalidState("Use the close operation with resolution notes to close a ticket", status=ticket.status)
    return _compare_and_swap(db, ticket, expected_version, {TicketModel.status: target.value})


def update_priority(db: Session, ticket_id: str, new_priority: str, expected_version: Optional[int]) -> TicketModel:
    ticket = _load_ticket(db, ticket_id)
    _ensure_mutable(ticket, "change the priority of")
    try:
        target = TicketPriority(new_priority)
    except ValueError:
        raise LifecycleValidationError(f"Unknown priority: {new_priority}", priority=new_priority)
    return _compare_and_swap(db, ticket, expected_version, {TicketModel.priority: target.value})


def validate_resolution_notes(resolution_notes: Optional[str]) -> str:
    notes = (resolution_notes or "").strip()
    if not notes:
        raise LifecycleValidationError("Resolution notes are required")
    if len(notes) < MIN_RESOLUTION_NOTES_LENGTH:
        raise LifecycleValidationError(
            f"Resolution notes must be at least {MIN_RESOLUTION_NOTES_LENGTH} characters",
            min_length=MIN_RESOLUTION_NOTES_LENGTH,
        )
    if len(notes) > MAX_RESOLUTION_NOTES_LENGTH:
        raise LifecycleValidationError(
            f"Resolution notes must not exceed {MAX_RESOLUTION_NOTES_LENGTH} characters",
            max_length=MAX_RESOLUTION_NOTES_LENGTH,
        )
    return notes


def close(db: Session, ticket_id: str, resolution_notes: Optional[str], expected_version: Optional[int]) -> TicketModel:
    notes = validate_resolution_notes(resolution_notes)
    ticket = _load_ticket(db, ticket_id)
    _ensure_mutable(ticket, "close")
    values = {
        TicketModel.status: TicketStatus.CLOSED.value,
        TicketModel.closed_at: utcnow(),
        TicketModel.resolution_notes: notes,
    }
    return _compare_and_swap(db, ticket, expected_version, values)


def bump_version(db: Session, ticket: TicketModel, expected_version: Optional[int] = None) -> TicketModel:
    """Advance the version for edits outside the status lifecycle (tags).

    Pending ORM changes on the session are committed together with the bump,
    or discarded when the bump loses the race.
    """
    return _compare_and_swap(db, ticket, expected_version, {}, allow_terminal=True)


__all__ = [
    "TERMINAL_STATUSES",
    "ASSIGNABLE_ROLES",
    "LifecycleError",
    "TicketNotFound",
    "AgentNotFound",
    "InvalidState",
    "RoleViolation",
    "VersionConflict",
    "LifecycleValidationError",
    "is_terminal",
    "assign",
    "reassign",
    "update_status",
    "update_priority",
    "validate_resolution_notes",
    "close",
    "bump_version",
]
