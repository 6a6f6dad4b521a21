# src/securechat/api/v1/endpoints/messages.py
"""Direct message endpoints for the SecureChat API."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, HTTPException, Query, status
from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session

from securechat.api.v1.dependencies import (
    BrokerDep,
    CurrentUserDep,
    NowDep,
    SessionDep,
    parse_user_id,
)
from securechat.db.time import as_utc
from securechat.models import DirectMessage, User
from securechat.schemas.direct_message import (
    DirectMessageCreate,
    DirectMessageEdit,
    PinUpdate,
    serialize_message,
    serialize_tombstone,
)
from securechat.services import events
from securechat.services.crypto import CryptoService
from securechat.services.envelope import NONCE_LENGTH_BYTES
from securechat.services.lifecycle import (
    MessageStateError,
    apply_edit,
    is_released,
    is_visible,
    is_visible_to,
    mark_read,
    set_pinned,
    soft_delete,
    visible_clause,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/messages", tags=["messages"])


def _check_envelope(nonce: bytes, ephemeral_public_key: bytes) -> None:
    if len(nonce) != NONCE_LENGTH_BYTES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Nonce must be {NONCE_LENGTH_BYTES} bytes",
        )
    try:
        CryptoService.validate_public_key(ephemeral_public_key)
    except ValueError as err:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid ephemeralPublicKey: {err}",
        ) from err


def _load_message(db: Session, message_id: int, user: User, now: datetime) -> DirectMessage:
    """Fetch a message the caller is a party to.

    Until a scheduled message is released it does not exist for its recipient.
    """
    message = db.get(DirectMessage, message_id)
    if message is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message not found")
    if user.user_id not in (message.sender_user_id, message.recipient_user_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not a participant in this conversation",
        )
    if user.user_id != message.sender_user_id and not is_released(message, now):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message not found")
    return message


def _counterpart(message: DirectMessage, user: User) -> bytes:
    if message.sender_user_id == user.user_id:
        return message.recipient_user_id
    return message.sender_user_id


def _conversation_clause(user_id: bytes, other_id: bytes) -> Any:
    return or_(
        and_(DirectMessage.sender_user_id == user_id, DirectMessage.recipient_user_id == other_id),
        and_(DirectMessage.sender_user_id == other_id, DirectMessage.recipient_user_id == user_id),
    )


@router.post("/", status_code=status.HTTP_201_CREATED)
async def send_message(
    message_data: DirectMessageCreate,
    current_user: CurrentUserDep,
    db: SessionDep,
    now: NowDep,
    broker: BrokerDep,
) -> dict[str, Any]:
    """Store an end-to-end encrypted direct message and notify the recipient."""
    recipient = db.get(User, message_data.recipient_id)
    if recipient is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Recipient not found")
    _check_envelope(message_data.nonce, message_data.ephemeral_public_key)

    self_destruct_at = None
    if message_data.self_destruct_at is not None:
        self_destruct_at = as_utc(message_data.self_destruct_at)
        if self_destruct_at <= now:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="selfDestructAt must be in the future",
            )

    # A schedule that is already due means "send now".
    scheduled_for = None
    if message_data.scheduled_for is not None and as_utc(message_data.scheduled_for) > now:
        scheduled_for = as_utc(message_data.scheduled_for)

    message = DirectMessage(
        sender_user_id=current_user.user_id,
        recipient_user_id=recipient.user_id,
        ciphertext=message_data.ciphertext,
        nonce=message_data.nonce,
        ephemeral_public_key=message_data.ephemeral_public_key,
        prekey_id=message_data.prekey_id,
        message_type=message_data.message_type,
        created_at=now,
        self_destruct_at=self_destruct_at,
        scheduled_for=scheduled_for,
        is_scheduled=scheduled_for is not None,
    )
    db.add(message)
    db.commit()
    db.refresh(message)

    payload = serialize_message(message)
    if not message.is_scheduled:
        broker.publish(recipient.user_id, events.NEW_MESSAGE, payload)
    return payload


@router.get("/unread/count")
async def unread_count(current_user: CurrentUserDep, db: SessionDep, now: NowDep) -> dict[str, int]:
    """Count visible inbound messages not yet read."""
    count = db.scalar(
        select(func.count())
        .select_from(DirectMessage)
        .where(
            DirectMessage.recipient_user_id == current_user.user_id,
            DirectMessage.read.is_(False),
            visible_clause(now),
        )
    )
    return {"count": int(count or 0)}


@router.get("/with/{other_id}")
async def get_conversation(
    other_id: str,
    current_user: CurrentUserDep,
    db: SessionDep,
    now: NowDep,
    limit: int = Query(50, ge=1, le=200),
    before: int | None = Query(None),
) -> list[dict[str, Any]]:
    """Return visible messages exchanged with another user, oldest first.

    Inbound messages returned here are marked delivered.
    """
    other = parse_user_id(other_id)
    query = select(DirectMessage).where(
        _conversation_clause(current_user.user_id, other),
        visible_clause(now, viewer_id=current_user.user_id),
    )
    if before is not None:
        query = query.where(DirectMessage.id < before)
    messages = list(db.scalars(query.order_by(DirectMessage.id.desc()).limit(limit)))
    messages.reverse()

    for message in messages:
        if message.recipient_user_id == current_user.user_id and not message.delivered:
            message.delivered = True
    payload = [serialize_message(message) for message in messages]
    db.commit()
    return payload


@router.get("/with/{other_id}/pinned")
async def get_pinned(
    other_id: str,
    current_user: CurrentUserDep,
    db: SessionDep,
    now: NowDep,
) -> list[dict[str, Any]]:
    other = parse_user_id(other_id)
    messages = db.scalars(
        select(DirectMessage)
        .where(
            _conversation_clause(current_user.user_id, other),
            visible_clause(now, viewer_id=current_user.user_id),
            DirectMessage.pinned.is_(True),
        )
        .order_by(DirectMessage.pinned_at.desc())
    )
    return [serialize_message(message) for message in messages]


@router.get("/{message_id}")
async def get_message(
    message_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    now: NowDep,
) -> dict[str, Any]:
    """Return one message, or a tombstone once it is no longer visible to the caller."""
    message = _load_message(db, message_id, current_user, now)
    if not is_visible_to(message, current_user.user_id, now):
        return serialize_tombstone(message)
    return serialize_message(message)


@router.patch("/{message_id}/edit")
async def edit_message(
    message_id: int,
    edit: DirectMessageEdit,
    current_user: CurrentUserDep,
    db: SessionDep,
    now: NowDep,
    broker: BrokerDep,
) -> dict[str, Any]:
    """Replace a message's envelope; only the sender may edit."""
    message = _load_message(db, message_id, current_user, now)
    if message.sender_user_id != current_user.user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the sender can edit a message",
        )
    _check_envelope(edit.nonce, edit.ephemeral_public_key)
    try:
        apply_edit(message, edit.ciphertext, edit.nonce, edit.ephemeral_public_key, now)
    except MessageStateError as err:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(err)) from err
    db.commit()

    payload = serialize_message(message)
    if is_visible(message, now):
        broker.publish(message.recipient_user_id, events.MESSAGE_EDITED, payload)
    return payload


@router.patch("/{message_id}/delete")
async def delete_message(
    message_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    now: NowDep,
    broker: BrokerDep,
) -> dict[str, Any]:
    """Soft-delete a message for both parties."""
    message = _load_message(db, message_id, current_user, now)
    announced = is_released(message, now)
    soft_delete(message, now)
    db.commit()

    payload = serialize_tombstone(message)
    # An unreleased scheduled message was never announced to the recipient.
    if announced:
        broker.publish(_counterpart(message, current_user), events.MESSAGE_DELETED, payload)
    return payload


@router.patch("/{message_id}/pin")
async def pin_message(
    message_id: int,
    pin: PinUpdate,
    current_user: CurrentUserDep,
    db: SessionDep,
    now: NowDep,
    broker: BrokerDep,
) -> dict[str, Any]:
    message = _load_message(db, message_id, current_user, now)
    if not is_visible_to(message, current_user.user_id, now):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Message is no longer available")
    try:
        set_pinned(message, pin.pinned, now)
    except MessageStateError as err:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(err)) from err
    db.commit()

    payload = serialize_message(message)
    if is_released(message, now):
        broker.publish(
            _counterpart(message, current_user),
            events.MESSAGE_PINNED,
            {"id": message.id, "pinned": message.pinned},
        )
    return payload


@router.patch("/{message_id}/read")
async def read_message(
    message_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    now: NowDep,
    broker: BrokerDep,
) -> dict[str, Any]:
    """Acknowledge an inbound message.

    With read receipts disabled the message is only marked delivered and the
    sender is not told.
    """
    message = _load_message(db, message_id, current_user, now)
    if message.recipient_user_id != current_user.user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the recipient can mark a message as read",
        )
    if not is_visible(message, now):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message not found")

    if current_user.read_receipts_enabled:
        mark_read(message, now)
    else:
        message.delivered = True
    db.commit()

    payload = serialize_message(message)
    if message.read:
        broker.publish(
            message.sender_user_id,
            events.MESSAGE_READ,
            {"id": message.id, "readAt": payload["readAt"]},
        )
    return payload
