# src/securechat/api/v1/endpoints/groups.py
"""Group conversation endpoints.

The server never sees a group key. It stores one wrapped copy per member and
enforces that every stored copy and every accepted message agree on the
group's current key version.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from fastapi import APIRouter, HTTPException, Query, status
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from securechat.api.v1.dependencies import BrokerDep, CurrentUserDep, NowDep, SessionDep
from securechat.core.settings import settings
from securechat.models import Group, GroupMember, GroupMessage, GroupMessageRead, User
from securechat.models.group import ROLE_ADMIN, ROLE_MEMBER
from securechat.schemas.group import (
    GroupCreate,
    GroupMessageCreate,
    GroupUpdate,
    MemberKeyEnvelope,
    serialize_group,
    serialize_group_message,
)
from securechat.services import events
from securechat.services.crypto import CryptoService
from securechat.services.envelope import NONCE_LENGTH_BYTES
from securechat.services.events import EventBroker
from securechat.utils.encoding import encode_user_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/groups", tags=["groups"])


def _load_group(db: Session, group_id: int, user: User) -> Group:
    """Fetch a group the caller belongs to."""
    group = db.get(Group, group_id)
    if group is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Group not found")
    if group.member(user.user_id) is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not a member of this group")
    return group


def _require_users(db: Session, user_ids: Iterable[bytes]) -> None:
    wanted = set(user_ids)
    if not wanted:
        return
    found = set(db.scalars(select(User.user_id).where(User.user_id.in_(wanted))))
    if found != wanted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")


def _index_envelopes(
    envelopes: Iterable[MemberKeyEnvelope],
    member_ids: set[bytes],
) -> dict[bytes, MemberKeyEnvelope]:
    """Map envelopes by member, rejecting malformed ones and ones for non-members."""
    indexed: dict[bytes, MemberKeyEnvelope] = {}
    for envelope in envelopes:
        if envelope.user_id not in member_ids:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Wrapped key supplied for non-member {encode_user_id(envelope.user_id)}",
            )
        if len(envelope.key_nonce) != NONCE_LENGTH_BYTES:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"keyNonce must be {NONCE_LENGTH_BYTES} bytes",
            )
        try:
            CryptoService.validate_public_key(envelope.ephemeral_public_key)
        except ValueError as err:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Invalid ephemeralPublicKey: {err}",
            ) from err
        indexed[envelope.user_id] = envelope
    return indexed


def _store_envelope(member: GroupMember, envelope: MemberKeyEnvelope, version: int) -> None:
    member.set_envelope(
        envelope.encrypted_group_key,
        envelope.key_nonce,
        envelope.ephemeral_public_key,
        version,
    )


def _notify(broker: EventBroker, user_ids: Iterable[bytes], name: str, payload: dict[str, Any]) -> None:
    for user_id in user_ids:
        broker.publish(user_id, name, payload)


@router.post("/", status_code=status.HTTP_201_CREATED)
async def create_group(
    payload: GroupCreate,
    current_user: CurrentUserDep,
    db: SessionDep,
    now: NowDep,
    broker: BrokerDep,
) -> dict[str, Any]:
    """Create a group at key version 1; members without a wrapped key start pending."""
    member_ids = {current_user.user_id, *payload.member_ids}
    _require_users(db, member_ids)
    envelopes = _index_envelopes(payload.members, member_ids)

    group = Group(
        name=payload.name,
        description=payload.description,
        creator_user_id=current_user.user_id,
        group_key_version=1,
        last_key_rotation=now,
        created_at=now,
        updated_at=now,
    )
    ordered = [current_user.user_id]
    ordered += [uid for uid in dict.fromkeys(payload.member_ids) if uid != current_user.user_id]
    for user_id in ordered:
        member = GroupMember(
            user_id=user_id,
            role=ROLE_ADMIN if user_id == current_user.user_id else ROLE_MEMBER,
            joined_at=now,
        )
        if user_id in envelopes:
            _store_envelope(member, envelopes[user_id], 1)
        else:
            member.mark_pending()
        group.members.append(member)
    db.add(group)
    db.commit()
    db.refresh(group)

    result = serialize_group(group)
    _notify(broker, ordered[1:], events.GROUP_CREATED, result)
    return result


@router.get("/")
async def list_groups(current_user: CurrentUserDep, db: SessionDep) -> list[dict[str, Any]]:
    groups = db.scalars(
        select(Group)
        .join(GroupMember, GroupMember.group_id == Group.id)
        .where(GroupMember.user_id == current_user.user_id)
        .order_by(Group.updated_at.desc())
    )
    return [serialize_group(group) for group in groups]


@router.get("/{group_id}")
async def get_group(group_id: int, current_user: CurrentUserDep, db: SessionDep) -> dict[str, Any]:
    return serialize_group(_load_group(db, group_id, current_user))


@router.patch("/{group_id}")
async def update_group(
    group_id: int,
    payload: GroupUpdate,
    current_user: CurrentUserDep,
    db: SessionDep,
    now: NowDep,
    broker: BrokerDep,
) -> dict[str, Any]:
    """Apply an admin's metadata, membership and key changes in one transaction.

    A rotation, whether requested or implied by removing members, is accepted
    only when the request carries a wrapped key for every remaining member.
    """
    group = _load_group(db, group_id, current_user)
    if not group.is_admin(current_user.user_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only group admins can update the group")

    current_ids = [member.user_id for member in group.members]
    removed = {uid for uid in payload.remove_members or [] if uid in current_ids}
    if group.creator_user_id in removed:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="The group creator cannot be removed")
    added = [uid for uid in dict.fromkeys(payload.add_members or []) if uid not in current_ids]
    _require_users(db, added)

    remaining = [uid for uid in current_ids if uid not in removed] + added
    envelopes = _index_envelopes(payload.members or [], set(remaining))
    rotate = payload.rotate_key or (bool(removed) and settings.rotate_on_member_removal)
    if rotate:
        missing = [uid for uid in remaining if uid not in envelopes]
        if missing:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Key rotation must include a wrapped key for every member",
            )

    if payload.name is not None:
        group.name = payload.name
    if payload.description is not None:
        group.description = payload.description
    for member in [m for m in group.members if m.user_id in removed]:
        group.members.remove(member)
    for user_id in added:
        member = GroupMember(user_id=user_id, role=ROLE_MEMBER, joined_at=now)
        member.mark_pending()
        group.members.append(member)

    if rotate:
        group.group_key_version += 1
        group.last_key_rotation = now
        logger.info("Group %d rotated to key v%d", group.id, group.group_key_version)
    for member in group.members:
        if member.user_id in envelopes:
            _store_envelope(member, envelopes[member.user_id], group.group_key_version)
    group.updated_at = now
    db.commit()
    db.refresh(group)

    result = serialize_group(group)
    _notify(
        broker,
        (uid for uid in remaining if uid != current_user.user_id),
        events.GROUP_UPDATED,
        result,
    )
    _notify(
        broker,
        removed,
        events.GROUP_LEFT,
        {"groupId": group.id, "removed": True},
    )
    return result


@router.post("/{group_id}/messages", status_code=status.HTTP_201_CREATED)
async def send_group_message(
    group_id: int,
    payload: GroupMessageCreate,
    current_user: CurrentUserDep,
    db: SessionDep,
    now: NowDep,
    broker: BrokerDep,
) -> dict[str, Any]:
    """Store a message sealed under the group's current key."""
    group = _load_group(db, group_id, current_user)
    sender = group.member(current_user.user_id)
    if sender is None or sender.is_pending:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Group key not ready")
    if payload.key_version != group.group_key_version:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Group key version is stale")
    if len(payload.nonce) != NONCE_LENGTH_BYTES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Nonce must be {NONCE_LENGTH_BYTES} bytes",
        )

    message = GroupMessage(
        group_id=group.id,
        sender_user_id=current_user.user_id,
        ciphertext=payload.ciphertext,
        nonce=payload.nonce,
        key_version=payload.key_version,
        message_type=payload.message_type,
        created_at=now,
    )
    db.add(message)
    db.commit()
    db.refresh(message)

    result = serialize_group_message(message)
    # Pending members cannot open it yet; they catch up once their key is wrapped.
    _notify(
        broker,
        (m.user_id for m in group.members if m.user_id != current_user.user_id and not m.is_pending),
        events.NEW_GROUP_MESSAGE,
        result,
    )
    return result


@router.get("/{group_id}/messages")
async def get_group_messages(
    group_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    now: NowDep,
    limit: int = Query(50, ge=1, le=200),
    before: int | None = Query(None),
) -> list[dict[str, Any]]:
    """Return recent group messages, oldest first, recording read receipts."""
    group = _load_group(db, group_id, current_user)
    query = select(GroupMessage).where(GroupMessage.group_id == group.id, GroupMessage.deleted.is_(False))
    if before is not None:
        query = query.where(GroupMessage.id < before)
    messages = list(db.scalars(query.order_by(GroupMessage.id.desc()).limit(limit)))
    messages.reverse()

    inbound = [m.id for m in messages if m.sender_user_id != current_user.user_id]
    if inbound:
        already_read = set(
            db.scalars(
                select(GroupMessageRead.message_id).where(
                    GroupMessageRead.user_id == current_user.user_id,
                    GroupMessageRead.message_id.in_(inbound),
                )
            )
        )
        for message_id in inbound:
            if message_id not in already_read:
                db.add(GroupMessageRead(message_id=message_id, user_id=current_user.user_id, read_at=now))
    result = [serialize_group_message(message) for message in messages]
    db.commit()
    return result


@router.post("/{group_id}/leave")
async def leave_group(
    group_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    now: NowDep,
    broker: BrokerDep,
) -> dict[str, Any]:
    """Leave a group. Remaining admins are expected to rotate the key afterwards."""
    group = _load_group(db, group_id, current_user)
    if group.creator_user_id == current_user.user_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="The group creator cannot leave the group")

    member = group.member(current_user.user_id)
    group.members.remove(member)
    group.updated_at = now
    remaining = [m.user_id for m in group.members]
    db.commit()

    payload = {"groupId": group_id, "userId": encode_user_id(current_user.user_id)}
    _notify(broker, remaining, events.GROUP_LEFT, payload)
    return payload


@router.delete("/{group_id}")
async def delete_group(
    group_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    broker: BrokerDep,
) -> dict[str, Any]:
    """Delete a group with its messages; only the creator may do this."""
    group = _load_group(db, group_id, current_user)
    if group.creator_user_id != current_user.user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only the group creator can delete the group")

    others = [m.user_id for m in group.members if m.user_id != current_user.user_id]
    message_ids = select(GroupMessage.id).where(GroupMessage.group_id == group_id)
    db.execute(delete(GroupMessageRead).where(GroupMessageRead.message_id.in_(message_ids)))
    db.execute(delete(GroupMessage).where(GroupMessage.group_id == group_id))
    db.delete(group)
    db.commit()

    payload = {"groupId": group_id, "deleted": True}
    _notify(broker, others, events.GROUP_UPDATED, payload)
    return payload
