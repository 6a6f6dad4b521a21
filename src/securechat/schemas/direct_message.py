# src/securechat/schemas/direct_message.py
"""Direct message-related Pydantic schemas and serializers."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import Field

from securechat.db.time import as_utc
from securechat.models import DirectMessage
from securechat.utils.encoding import b64encode, encode_user_id

from .common import ApiModel, Base64Bytes, UserIdBytes
from .keys import MAX_KEY_ID

MessageType = Literal["text", "voice", "file", "image"]


class DirectMessageCreate(ApiModel):
    """Schema for sending a pairwise-encrypted direct message."""

    recipient_id: UserIdBytes
    ciphertext: Base64Bytes = Field(..., description="Base64 AES-GCM ciphertext with tag")
    nonce: Base64Bytes = Field(..., description="Base64 12-byte AES-GCM nonce")
    ephemeral_public_key: Base64Bytes = Field(..., description="Base64 one-time P-256 public key")
    prekey_id: int | None = Field(
        None,
        ge=0,
        le=MAX_KEY_ID,
        description="One-time prekey consumed for first contact",
    )
    message_type: MessageType = "text"
    scheduled_for: datetime | None = None
    self_destruct_at: datetime | None = None


class DirectMessageEdit(ApiModel):
    """Replacement envelope for an edited message."""

    ciphertext: Base64Bytes
    nonce: Base64Bytes
    ephemeral_public_key: Base64Bytes


class PinUpdate(ApiModel):
    pinned: bool


def _iso(value: datetime | None) -> str | None:
    return as_utc(value).isoformat() if value is not None else None


def serialize_message(message: DirectMessage) -> dict[str, Any]:
    """Serialize a DirectMessage instance into API payload form."""
    return {
        "id": message.id,
        "senderId": encode_user_id(message.sender_user_id),
        "recipientId": encode_user_id(message.recipient_user_id),
        "ciphertext": b64encode(message.ciphertext),
        "nonce": b64encode(message.nonce),
        "ephemeralPublicKey": b64encode(message.ephemeral_public_key),
        "prekeyId": message.prekey_id,
        "messageType": message.message_type,
        "createdAt": _iso(message.created_at),
        "delivered": message.delivered,
        "read": message.read,
        "readAt": _iso(message.read_at),
        "edited": message.edited,
        "editedAt": _iso(message.edited_at),
        "pinned": message.pinned,
        "pinnedAt": _iso(message.pinned_at),
        "selfDestructAt": _iso(message.self_destruct_at),
        "scheduledFor": _iso(message.scheduled_for),
        "isScheduled": message.is_scheduled,
        "deleted": False,
    }


def serialize_tombstone(message: DirectMessage) -> dict[str, Any]:
    """Placeholder for a message whose content is no longer accessible."""
    return {
        "id": message.id,
        "senderId": encode_user_id(message.sender_user_id),
        "recipientId": encode_user_id(message.recipient_user_id),
        "deleted": True,
    }
