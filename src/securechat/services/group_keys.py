# src/securechat/services/group_keys.py
"""Group key distribution.

A group shares one random AES-256 key per ``version``. Each member receives the
key individually, wrapped with the pairwise engine under their identity key.
Group messages are then sealed directly with AES-256-GCM under the raw group key.

Every operation here is pure: it computes member records and leaves persistence
to the caller. Re-wrapping operations build all records before swapping them in,
so a failure leaves the previous state untouched.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from securechat.services import envelope as pairwise
from securechat.services.envelope import EncryptedEnvelope
from securechat.services.errors import DecryptError, GroupKeyNotReady, GroupKeyOutdated
from securechat.utils.encoding import b64decode, b64encode

logger = logging.getLogger(__name__)

ROLE_ADMIN = "admin"
ROLE_MEMBER = "member"
PENDING_STATE = "pending"
WRAPPED_STATE = "wrapped"


@dataclass(frozen=True)
class GroupKey:
    """Raw group key and the version it belongs to."""

    version: int
    key: bytes

    def __repr__(self) -> str:
        return f"GroupKey(version={self.version}, key=<redacted>)"


@dataclass(frozen=True)
class Pending:
    """Placeholder for a member whose copy of the key has not been wrapped yet."""


@dataclass(frozen=True)
class Wrapped:
    """Group key wrapped for one member at ``version``."""

    envelope: EncryptedEnvelope
    version: int


WrappedKey = Pending | Wrapped
PENDING = Pending()


@dataclass
class MemberKeyRecord:
    """One member's role and wrapped group key."""

    user_id: str
    role: str = ROLE_MEMBER
    wrapped: WrappedKey = PENDING

    @property
    def is_pending(self) -> bool:
        return isinstance(self.wrapped, Pending)

    def to_payload(self) -> dict[str, str]:
        """Return the ``{userId, encryptedGroupKey, ephemeralPublicKey, keyNonce}`` update form.

        Raises:
            GroupKeyNotReady: If the record is still pending.
        """
        if not isinstance(self.wrapped, Wrapped):
            raise GroupKeyNotReady(user_id=self.user_id)
        envelope = self.wrapped.envelope
        return {
            "userId": self.user_id,
            "encryptedGroupKey": b64encode(envelope.ciphertext),
            "ephemeralPublicKey": b64encode(envelope.ephemeral_public_key),
            "keyNonce": b64encode(envelope.nonce),
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> MemberKeyRecord:
        """Parse a member entry of a group as returned by the server."""
        user_id = payload["userId"]
        role = payload.get("role", ROLE_MEMBER)
        if payload.get("keyState") != WRAPPED_STATE or not payload.get("encryptedGroupKey"):
            return cls(user_id=user_id, role=role)
        try:
            envelope = EncryptedEnvelope(
                ciphertext=b64decode(payload["encryptedGroupKey"]),
                nonce=b64decode(payload["keyNonce"]),
                ephemeral_public_key=b64decode(payload["ephemeralPublicKey"]),
            )
        except (KeyError, TypeError, ValueError) as err:
            raise DecryptError(f"Malformed wrapped group key for {user_id}: {err}") from err
        return cls(
            user_id=user_id,
            role=role,
            wrapped=Wrapped(envelope=envelope, version=int(payload["keyVersion"])),
        )


@dataclass
class GroupKeyState:
    """Client view of a group's key distribution."""

    version: int
    members: dict[str, MemberKeyRecord] = field(default_factory=dict)
    last_key_rotation: datetime = field(default_factory=lambda: datetime.now(UTC))

    def record(self, user_id: str) -> MemberKeyRecord:
        try:
            return self.members[user_id]
        except KeyError as err:
            raise KeyError(f"{user_id} is not a member of this group") from err

    @property
    def pending_members(self) -> list[str]:
        return [user_id for user_id, record in self.members.items() if record.is_pending]

    def member_payloads(self, user_ids: Iterable[str] | None = None) -> list[dict[str, str]]:
        """Return wrapped-key update payloads for ``user_ids`` (default: every wrapped member)."""
        selected = self.members if user_ids is None else {uid: self.record(uid) for uid in user_ids}
        return [record.to_payload() for record in selected.values() if not record.is_pending]

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> GroupKeyState:
        """Build the state from a group document returned by the server."""
        members = [MemberKeyRecord.from_payload(entry) for entry in payload.get("members", [])]
        return cls(
            version=int(payload["groupKeyVersion"]),
            members={record.user_id: record for record in members},
        )


def _wrap_all(group_key: GroupKey, public_keys: Mapping[str, bytes]) -> dict[str, Wrapped]:
    return {
        user_id: Wrapped(envelope=pairwise.encrypt(public_key, group_key.key), version=group_key.version)
        for user_id, public_key in public_keys.items()
    }


def _require_keys(user_ids: Iterable[str], public_keys: Mapping[str, bytes]) -> dict[str, bytes]:
    missing = [user_id for user_id in user_ids if user_id not in public_keys]
    if missing:
        raise ValueError(f"Missing identity public keys for members: {', '.join(sorted(missing))}")
    return {user_id: public_keys[user_id] for user_id in user_ids}


class GroupKeyManager:
    """Creates, distributes, rotates and repairs group keys."""

    @staticmethod
    def create(
        creator_id: str,
        member_public_keys: Mapping[str, bytes],
    ) -> tuple[GroupKeyState, GroupKey]:
        """Create version 1 of a group key wrapped for every initial member.

        Args:
            creator_id: Identifier of the creating member (made admin)
            member_public_keys: Identity public key per initial member, creator included

        Returns:
            Tuple of (state, raw group key)
        """
        if creator_id not in member_public_keys:
            raise ValueError("The creator must be one of the initial members")
        group_key = GroupKey(version=1, key=pairwise.generate_symmetric_key())
        wrapped = _wrap_all(group_key, member_public_keys)
        state = GroupKeyState(
            version=group_key.version,
            members={
                user_id: MemberKeyRecord(
                    user_id=user_id,
                    role=ROLE_ADMIN if user_id == creator_id else ROLE_MEMBER,
                    wrapped=wrapped[user_id],
                )
                for user_id in member_public_keys
            },
        )
        return state, group_key

    @staticmethod
    def add_members(
        state: GroupKeyState,
        group_key: GroupKey,
        new_members: Mapping[str, bytes | None],
    ) -> list[str]:
        """Wrap the existing key for new members; existing records are untouched.

        Members mapped to ``None`` are added as pending.

        Returns:
            Identifiers of the members actually added
        """
        if group_key.version != state.version:
            raise GroupKeyOutdated(held_version=group_key.version, message_version=state.version)
        fresh = {user_id: key for user_id, key in new_members.items() if user_id not in state.members}
        wrapped = _wrap_all(group_key, {uid: key for uid, key in fresh.items() if key is not None})
        for user_id in fresh:
            state.members[user_id] = MemberKeyRecord(user_id=user_id, wrapped=wrapped.get(user_id, PENDING))
        return list(fresh)

    @staticmethod
    def rotate(state: GroupKeyState, member_public_keys: Mapping[str, bytes]) -> GroupKey:
        """Replace the group key and re-wrap it for every current member.

        Raises:
            ValueError: If a current member's public key is missing; ``state`` is unchanged.
        """
        public_keys = _require_keys(state.members, member_public_keys)
        group_key = GroupKey(version=state.version + 1, key=pairwise.generate_symmetric_key())
        wrapped = _wrap_all(group_key, public_keys)
        for user_id, record in state.members.items():
            record.wrapped = wrapped[user_id]
        state.version = group_key.version
        state.last_key_rotation = datetime.now(UTC)
        logger.info("Rotated group key to v%d for %d members", state.version, len(state.members))
        return group_key

    @staticmethod
    def remove_members(
        state: GroupKeyState,
        user_ids: Iterable[str],
        member_public_keys: Mapping[str, bytes] | None = None,
        rotate: bool = True,
    ) -> GroupKey | None:
        """Drop members and, by default, rotate so they cannot read later messages.

        Returns:
            The new group key when rotating, otherwise None
        """
        removed = set(user_ids)
        remaining = [user_id for user_id in state.members if user_id not in removed]
        if rotate:
            # Validate before touching the member list.
            _require_keys(remaining, member_public_keys or {})
        for user_id in removed:
            state.members.pop(user_id, None)
        if not rotate:
            return None
        return GroupKeyManager.rotate(state, member_public_keys or {})

    @staticmethod
    def repair(
        state: GroupKeyState,
        group_key: GroupKey,
        member_public_keys: Mapping[str, bytes],
    ) -> None:
        """Re-wrap the same key for every current member without changing the version."""
        if group_key.version != state.version:
            raise GroupKeyOutdated(held_version=group_key.version, message_version=state.version)
        wrapped = _wrap_all(group_key, _require_keys(state.members, member_public_keys))
        for user_id, record in state.members.items():
            record.wrapped = wrapped[user_id]

    @staticmethod
    def unwrap(record: MemberKeyRecord, secret_key: bytes | None) -> GroupKey:
        """Recover the raw group key from a member record.

        Raises:
            GroupKeyNotReady: If the record is pending.
            MissingKeyMaterial: If ``secret_key`` is absent.
            DecryptError: If the envelope does not open to a 256-bit key.
        """
        if not isinstance(record.wrapped, Wrapped):
            raise GroupKeyNotReady(user_id=record.user_id)
        raw = pairwise.decrypt(record.wrapped.envelope, secret_key)
        if len(raw) != pairwise.SYMMETRIC_KEY_LENGTH_BYTES:
            raise DecryptError("Wrapped group key has the wrong length")
        return GroupKey(version=record.wrapped.version, key=raw)


@dataclass(frozen=True)
class GroupCiphertext:
    """Group message sealed under the group key at ``key_version``."""

    ciphertext: bytes
    nonce: bytes
    key_version: int

    def to_payload(self) -> dict[str, Any]:
        return {
            "ciphertext": b64encode(self.ciphertext),
            "nonce": b64encode(self.nonce),
            "keyVersion": self.key_version,
        }


class GroupCipher:
    """Seals and opens group messages with a held group key."""

    def __init__(self, group_key: GroupKey) -> None:
        self.group_key = group_key

    def encrypt(self, plaintext: bytes | str) -> GroupCiphertext:
        data = plaintext.encode("utf-8") if isinstance(plaintext, str) else plaintext
        nonce, ciphertext = pairwise.aes_encrypt(self.group_key.key, data)
        return GroupCiphertext(ciphertext=ciphertext, nonce=nonce, key_version=self.group_key.version)

    def decrypt(self, message: GroupCiphertext) -> bytes:
        """Open a group message.

        Raises:
            GroupKeyOutdated: If the message was sealed under a different key version.
            DecryptError: On authentication failure.
        """
        if message.key_version != self.group_key.version:
            raise GroupKeyOutdated(
                held_version=self.group_key.version,
                message_version=message.key_version,
            )
        return pairwise.aes_decrypt(self.group_key.key, message.nonce, message.ciphertext)
