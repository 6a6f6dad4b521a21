# src/securechat/schemas/group.py
"""Group and group-message schemas and serializers."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import Field

from securechat.db.time import as_utc
from securechat.models import Group, GroupMember, GroupMessage
from securechat.utils.encoding import b64encode, encode_user_id

from .common import ApiModel, Base64Bytes, UserIdBytes


class MemberKeyEnvelope(ApiModel):
    """Group key wrapped for one member with the pairwise engine."""

    user_id: UserIdBytes
    encrypted_group_key: Base64Bytes
    ephemeral_public_key: Base64Bytes
    key_nonce: Base64Bytes


class GroupCreate(ApiModel):
    """Group creation request; members without an envelope start out pending."""

    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field("", max_length=500)
    member_ids: list[UserIdBytes] = Field(..., min_length=1)
    members: list[MemberKeyEnvelope] = Field(default_factory=list)


class GroupUpdate(ApiModel):
    """Admin update: metadata, membership, rotation and wrapped-key updates."""

    name: str | None = Field(None, min_length=1, max_length=100)
    description: str | None = Field(None, max_length=500)
    add_members: list[UserIdBytes] | None = None
    remove_members: list[UserIdBytes] | None = None
    rotate_key: bool = False
    members: list[MemberKeyEnvelope] | None = None


class GroupMessageCreate(ApiModel):
    """Group message sealed under the sender's current group key."""

    ciphertext: Base64Bytes
    nonce: Base64Bytes
    key_version: int = Field(..., ge=1)
    message_type: Literal["text", "voice", "file", "image", "system"] = "text"


def serialize_member(member: GroupMember) -> dict[str, Any]:
    pending = member.is_pending
    return {
        "userId": encode_user_id(member.user_id),
        "role": member.role,
        "joinedAt": as_utc(member.joined_at).isoformat(),
        "keyState": member.key_state,
        "encryptedGroupKey": None if pending else b64encode(member.encrypted_group_key or b""),
        "ephemeralPublicKey": None if pending else b64encode(member.ephemeral_public_key or b""),
        "keyNonce": None if pending else b64encode(member.key_nonce or b""),
        "keyVersion": None if pending else member.key_version,
    }


def serialize_group(group: Group) -> dict[str, Any]:
    """Serialize a group with every member's wrapped key."""
    return {
        "id": group.id,
        "name": group.name,
        "description": group.description,
        "creatorId": encode_user_id(group.creator_user_id),
        "groupKeyVersion": group.group_key_version,
        "lastKeyRotation": as_utc(group.last_key_rotation).isoformat(),
        "createdAt": as_utc(group.created_at).isoformat(),
        "updatedAt": as_utc(group.updated_at).isoformat(),
        "members": [serialize_member(member) for member in group.members],
    }


def serialize_group_message(message: GroupMessage) -> dict[str, Any]:
    return {
        "id": message.id,
        "groupId": message.group_id,
        "senderId": encode_user_id(message.sender_user_id),
        "ciphertext": b64encode(message.ciphertext),
        "nonce": b64encode(message.nonce),
        "keyVersion": message.key_version,
        "messageType": message.message_type,
        "createdAt": as_utc(message.created_at).isoformat(),
        "edited": message.edited,
    }
