"""In-process domain event bus.

Routers publish an event after their transaction commits; subscribers
(websocket fan-out, webhooks) run in publish order. A failing subscriber is
logged and skipped so it can never undo or fail the request that published.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from helpdesk import models

logger = logging.getLogger(__name__)

TICKET_CREATED = "ticket.created"
TICKET_UPDATED = "ticket.updated"
TICKET_ASSIGNED = "ticket.assigned"
COMMENT_ADDED = "comment.added"

ALL_EVENTS = (TICKET_CREATED, TICKET_UPDATED, TICKET_ASSIGNED, COMMENT_ADDED)


@dataclass
class Event:
    type: str
    data: Dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    # Session of the publishing request, for subscribers that need lookups
    db: Optional[Session] = field(default=None, repr=False, compare=False)


Handler = Callable[[Event], Awaitable[None]]


class EventBus:
    def __init__(self) -> None:
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)

    def subscribe(self, event_type: str, handler: Handler) -> None:
        if handler not in self._handlers[event_type]:
            self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: str, handler: Handler) -> None:
        if handler in self._handlers.get(event_type, []):
            self._handlers[event_type].remove(handler)

    def handlers(self, event_type: str) -> List[Handler]:
        return list(self._handlers.get(event_type, [])) + list(self._handlers.get("*", []))

    async def publish(self, event_type: str, data: Dict[str, Any], db: Optional[Session] = None) -> Event:
        event = Event(type=event_type, data=data, db=db)
        for handler in self.handlers(event_type):
            try:
                await handler(event)
            except Exception:
                logger.exception("Event handler %s failed for %s", getattr(handler, "__name__", handler), event_type)
        return event


def ticket_event_data(ticket: models.TicketModel, actor: Optional[models.UserModel] = None, **extra: Any) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "ticket_id": ticket.id,
        "ticket_number": ticket.ticket_number,
        "title": ticket.title,
        "status": ticket.status,
        "priority": ticket.priority,
        "submitter_id": ticket.submitter_id,
        "assigned_to_id": ticket.assigned_to_id,
        "version": ticket.version,
        "actor_id": actor.id if actor is not None else None,
        "actor_name": actor.full_name if actor is not None else None,
    }
    data.update(extra)
    return data


bus = EventBus()


__all__ = [
    "TICKET_CREATED",
    "TICKET_UPDATED",
    "TICKET_ASSIGNED",
    "COMMENT_ADDED",
    "ALL_EVENTS",
    "Event",
    "EventBus",
    "ticket_event_data",
    "bus",
]
