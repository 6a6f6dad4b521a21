# src/securechat/api/v1/endpoints/realtime.py
"""WebSocket transport for real-time events."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status
from sqlalchemy.orm import Session

from securechat.api.v1.dependencies import BrokerDep, SessionDep, resolve_token
from securechat.models import User
from securechat.services import events
from securechat.services.events import Event, EventBroker
from securechat.utils.encoding import decode_user_id, encode_user_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/realtime", tags=["realtime"])


async def _forward(websocket: WebSocket, queue: asyncio.Queue[Event]) -> None:
    while True:
        event = await queue.get()
        await websocket.send_json(event.as_json())


def _relay_typing(db: Session, user: User, data: dict[str, Any], broker: EventBroker) -> None:
    """Forward a typing indicator if the sender has them enabled."""
    db.refresh(user)
    if not user.typing_indicators_enabled:
        return
    recipient = data.get("recipientId")
    if not isinstance(recipient, str):
        raise ValueError("recipientId is required")
    broker.publish(
        decode_user_id(recipient),
        events.USER_TYPING,
        {"userId": encode_user_id(user.user_id), "isTyping": bool(data.get("isTyping", True))},
    )


@router.websocket("/ws")
async def realtime_socket(
    websocket: WebSocket,
    db: SessionDep,
    broker: BrokerDep,
    token: str = Query(...),
) -> None:
    """Stream the authenticated user's events and accept typing indicators."""
    user = resolve_token(db, token)
    if user is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    await websocket.accept()

    loop = asyncio.get_running_loop()
    queue: asyncio.Queue[Event] = asyncio.Queue()
    # Publishers may run on worker threads; hop onto this connection's loop.
    unsubscribe = broker.subscribe(
        user.user_id,
        lambda event: loop.call_soon_threadsafe(queue.put_nowait, event),
    )
    forwarder = asyncio.create_task(_forward(websocket, queue))
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                data = json.loads(raw)
                if not isinstance(data, dict):
                    raise ValueError("Expected a JSON object")
                kind = data.get("type")
                if kind == "typing":
                    _relay_typing(db, user, data, broker)
                elif kind == "ping":
                    queue.put_nowait(Event(name="pong"))
                else:
                    raise ValueError(f"Unknown message type: {kind!r}")
            except ValueError as err:
                queue.put_nowait(Event(name="error", payload={"detail": str(err)}))
    except WebSocketDisconnect:
        logger.debug("Realtime client disconnected")
    finally:
        unsubscribe()
        forwarder.cancel()
