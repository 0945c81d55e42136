"""Real-time and webhook delivery of ticket events.

- `ConnectionManager` keeps the open websockets of each user.
- `notify_in_app` routes an event to the submitter / assignee sockets,
  honouring each user's in-app preferences.
- `notify_webhooks` hands the event to `webhooks`, a small thread pool that
  POSTs it to every enabled webhook URL after the request has moved on.

`register_handlers(bus)` wires both onto the event bus.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import os
import threading
from collections import defaultdict
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Dict, Iterable, List, Optional, Set

import requests
from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session

from helpdesk import models
from helpdesk.events import ALL_EVENTS, COMMENT_ADDED, TICKET_ASSIGNED, TICKET_CREATED, TICKET_UPDATED, Event, EventBus

logger = logging.getLogger(__name__)

WEBHOOK_TIMEOUT = float(os.getenv("WEBHOOK_TIMEOUT", "5"))
WEBHOOK_WORKERS = int(os.getenv("WEBHOOK_WORKERS", "4"))
SIGNATURE_HEADER = "X-Helpdesk-Signature"

# Preference flag consulted for each event type
_IN_APP_FLAGS = {
    TICKET_CREATED: "in_app_on_ticket_created",
    TICKET_UPDATED: "in_app_on_ticket_updated",
    TICKET_ASSIGNED: "in_app_on_ticket_assigned",
    COMMENT_ADDED: "in_app_on_comment_added",
}

_TITLES = {
    TICKET_CREATED: "New Ticket Created",
    TICKET_UPDATED: "Ticket Updated",
    TICKET_ASSIGNED: "Ticket Assigned to You",
    COMMENT_ADDED: "New Comment",
}


class ConnectionManager:
    def __init__(self) -> None:
        self.connections: Dict[int, Set[WebSocket]] = defaultdict(set)

    def add(self, user_id: int, websocket: WebSocket) -> None:
        self.connections[user_id].add(websocket)

    def disconnect(self, user_id: int, websocket: WebSocket) -> None:
        sockets = self.connections.get(user_id)
        if not sockets:
            return
        sockets.discard(websocket)
        if not sockets:
            self.connections.pop(user_id, None)

    def is_connected(self, user_id: int) -> bool:
        return bool(self.connections.get(user_id))

    async def send_to_user(self, user_id: int, payload: Dict[str, Any]) -> int:
        sent = 0
        dead: List[WebSocket] = []
        for connection in list(self.connections.get(user_id, ())):
            try:
                await connection.send_json(payload)
                sent += 1
            except Exception:
                logger.debug("Dropping dead websocket for user=%s", user_id)
                dead.append(connection)
        for connection in dead:
            self.disconnect(user_id, connection)
        return sent


manager = ConnectionManager()


def _preferences(db: Optional[Session], user_id: int) -> Optional[models.NotificationPreferencesModel]:
    if db is None:
        return None
    return db.query(models.NotificationPreferencesModel).filter(models.NotificationPreferencesModel.user_id == user_id).first()


def wants_in_app(db: Optional[Session], user_id: int, event_type: str) -> bool:
    prefs = _preferences(db, user_id)
    if prefs is None:
        return True
    flag = _IN_APP_FLAGS.get(event_type)
    return bool(prefs.in_app_enabled and (flag is None or getattr(prefs, flag)))


def recipients_for(event: Event) -> Set[int]:
    """Users who should see the event in-app; the actor never notifies themself."""
    data = event.data
    submitter_id = data.get("submitter_id")
    assignee_id = data.get("assigned_to_id")
    actor_id = data.get("actor_id")

    targets: Set[int] = set()
    if event.type == COMMENT_ADDED and data.get("is_internal"):
        # Internal notes stay with staff
        if assignee_id:
            targets.add(assignee_id)
    else:
        if submitter_id:
            targets.add(submitter_id)
        if assignee_id:
            targets.add(assignee_id)
    targets.discard(actor_id)
    return targets


def build_message(event: Event) -> Dict[str, Any]:
    data = event.data
    number = data.get("ticket_number")
    if event.type == TICKET_CREATED:
        text = f"Ticket {number} has been created"
    elif event.type == TICKET_ASSIGNED:
        text = f"Ticket {number} has been assigned to {data.get('assignee_name') or 'an agent'}"
    elif event.type == COMMENT_ADDED:
        text = f"{data.get('actor_name') or 'Someone'} commented on ticket {number}"
    else:
        changes = ", ".join(data.get("changes") or [])
        text = f"Ticket {number} was updated" + (f" ({changes})" if changes else "")
    return jsonable_encoder({
        "type": event.type,
        "title": _TITLES.get(event.type, "Notification"),
        "message": text,
        "ticket_id": data.get("ticket_id"),
        "ticket_number": number,
        "timestamp": event.timestamp,
        "data": data,
    })


async def notify_in_app(event: Event) -> None:
    message = build_message(event)
    for user_id in sorted(recipients_for(event)):
        if not manager.is_connected(user_id):
            continue
        if not wants_in_app(event.db, user_id, event.type):
            continue
        await manager.send_to_user(user_id, message)


def sign_payload(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def deliver_webhook(url: str, event_type: str, data: Dict[str, Any], timestamp: Any, secret: Optional[str] = None) -> bool:
    """POST one event to one endpoint. Returns True on a 2xx response; never raises."""
    body = json.dumps(jsonable_encoder({"event": event_type, "timestamp": timestamp, "data": data})).encode("utf-8")
    headers = {"Content-Type": "application/json"}
    if secret:
        headers[SIGNATURE_HEADER] = f"sha256={sign_payload(body, secret)}"
    try:
        resp = requests.post(url, data=body, headers=headers, timeout=WEBHOOK_TIMEOUT)
    except requests.RequestException:
        logger.exception("Error sending webhook to %s for event %s", url, event_type)
        return False
    if 200 <= resp.status_code < 300:
        logger.info("Webhook sent to %s for event %s", url, event_type)
        return True
    logger.warning("Webhook to %s for event %s failed with status %s", url, event_type, resp.status_code)
    return False


class WebhookDispatcher:
    """Runs `deliver_webhook` on worker threads so a slow endpoint never holds up a request."""

    def __init__(self, max_workers: int = WEBHOOK_WORKERS) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="helpdesk-webhook")
        self._pending: Set[Future] = set()
        self._lock = threading.Lock()

    def submit(self, url: str, event_type: str, data: Dict[str, Any], timestamp: Any, secret: Optional[str] = None) -> Future:
        future = self._executor.submit(self._run, url, event_type, data, timestamp, secret)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._finished)
        return future

    @staticmethod
    def _run(url: str, event_type: str, data: Dict[str, Any], timestamp: Any, secret: Optional[str]) -> bool:
        try:
            return deliver_webhook(url, event_type, data, timestamp, secret)
        except Exception:
            logger.exception("Webhook delivery crashed for %s (%s)", url, event_type)
            raise

    def _finished(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait for queued deliveries. Returns False if some are still running after `timeout`."""
        with self._lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done


webhooks = WebhookDispatcher()


def webhook_targets(db: Optional[Session]) -> Iterable[models.NotificationPreferencesModel]:
    if db is None:
        return []
    return (
        db.query(models.NotificationPreferencesModel)
        .filter(
            models.NotificationPreferencesModel.webhook_enabled.is_(True),
            models.NotificationPreferencesModel.webhook_url.isnot(None),
        )
        .all()
    )


async def notify_webhooks(event: Event) -> None:
    for prefs in webhook_targets(event.db):
        if not prefs.webhook_url:
            continue
        webhooks.submit(prefs.webhook_url, event.type, event.data, event.timestamp, prefs.webhook_secret)


def register_handlers(bus: EventBus) -> None:
    for event_type in ALL_EVENTS:
        bus.subscribe(event_type, notify_in_app)
        bus.subscribe(event_type, notify_webhooks)


__all__ = [
    "ConnectionManager",
    "manager",
    "wants_in_app",
    "recipients_for",
    "build_message",
    "notify_in_app",
    "sign_payload",
    "deliver_webhook",
    "WebhookDispatcher",
    "webhooks",
    "notify_webhooks",
    "register_handlers",
]
