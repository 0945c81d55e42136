"""Real-time notifications over a websocket.

Clients connect to `/api/notifications/ws?token=<access token>`. The first
message is a `connected` greeting; afterwards the server pushes event
notifications and answers `ping` with `pong`.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from sqlalchemy.orm import Session

from helpdesk.auth import user_from_token
from helpdesk.database import get_db
from helpdesk.notifications import manager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notifications", tags=["Notifications"])


@router.websocket("/ws")
async def notifications_socket(websocket: WebSocket, token: Optional[str] = Query(None), db: Session = Depends(get_db)) -> None:
    user = user_from_token(db, token) if token else None
    if user is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    user_id = user.id
    await websocket.accept()
    manager.add(user_id, websocket)
    logger.info("Websocket connected for user=%s", user_id)
    # Release the connection; the socket may stay open for hours
    db.close()

    try:
        await websocket.send_json({"type": "connected", "user_id": user_id})
        while True:
            message = await websocket.receive_text()
            if message.strip().lower() == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        logger.info("Websocket disconnected for user=%s", user_id)
    finally:
        manager.disconnect(user_id, websocket)
