# src/securechat/services/lifecycle.py
"""Message lifecycle state machine.

Visibility is decided by one rule, applied both in Python (:func:`is_visible`)
and in SQL (:func:`visible_clause`). The background sweeps only materialise
what the rule already says, so a message can never be readable through one
path after the other has purged it.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import and_, or_
from sqlalchemy.sql.elements import ColumnElement

from securechat.db.time import as_utc
from securechat.models import DirectMessage


class MessageStateError(ValueError):
    """Raised for a transition the message's current state does not allow."""


def is_destructed(message: DirectMessage, now: datetime) -> bool:
    """Return True once the self-destruct instant has been reached."""
    return message.self_destruct_at is not None and as_utc(message.self_destruct_at) <= now


def is_released(message: DirectMessage, now: datetime) -> bool:
    """Return True if the message is not held back by scheduling."""
    return not message.is_scheduled or (
        message.scheduled_for is not None and as_utc(message.scheduled_for) <= now
    )


def is_visible(message: DirectMessage, now: datetime) -> bool:
    """Return True if the recipient may see the message content at ``now``."""
    return not message.deleted and not is_destructed(message, now) and is_released(message, now)


def is_visible_to(message: DirectMessage, viewer_id: bytes, now: datetime) -> bool:
    """Like :func:`is_visible`, but senders also see their own pending scheduled messages."""
    if message.deleted or is_destructed(message, now):
        return False
    return message.sender_user_id == viewer_id or is_released(message, now)


def visible_clause(now: datetime, viewer_id: bytes | None = None) -> ColumnElement[bool]:
    """SQL form of :func:`is_visible` / :func:`is_visible_to`."""
    released = or_(
        DirectMessage.is_scheduled.is_(False),
        DirectMessage.scheduled_for <= now,
    )
    if viewer_id is not None:
        released = or_(released, DirectMessage.sender_user_id == viewer_id)
    return and_(
        DirectMessage.deleted.is_(False),
        or_(DirectMessage.self_destruct_at.is_(None), DirectMessage.self_destruct_at > now),
        released,
    )


def apply_edit(
    message: DirectMessage,
    ciphertext: bytes,
    nonce: bytes,
    ephemeral_public_key: bytes,
    now: datetime,
) -> None:
    """Replace the content, preserving the first pre-edit envelope only."""
    if not is_visible_to(message, message.sender_user_id, now):
        raise MessageStateError("Deleted messages cannot be edited")
    if message.original_ciphertext is None:
        message.original_ciphertext = message.ciphertext
        message.original_nonce = message.nonce
        message.original_ephemeral_public_key = message.ephemeral_public_key
    message.ciphertext = ciphertext
    message.nonce = nonce
    message.ephemeral_public_key = ephemeral_public_key
    message.edited = True
    message.edited_at = now


def soft_delete(message: DirectMessage, now: datetime) -> None:
    """Tombstone the message; ciphertext is kept but never served again."""
    if message.deleted:
        return
    message.deleted = True
    message.deleted_at = now


def set_pinned(message: DirectMessage, pinned: bool, now: datetime) -> None:
    if message.deleted:
        raise MessageStateError("Deleted messages cannot be pinned")
    message.pinned = pinned
    message.pinned_at = now if pinned else None


def mark_read(message: DirectMessage, now: datetime) -> None:
    message.delivered = True
    if not message.read:
        message.read = True
        message.read_at = now
