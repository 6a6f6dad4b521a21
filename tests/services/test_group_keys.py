# tests/services/test_group_keys.py
"""Tests for group key creation, distribution, rotation and the group cipher."""

from __future__ import annotations

import pytest

from securechat.services.errors import (
    DecryptError,
    GroupKeyNotReady,
    GroupKeyOutdated,
    MissingKeyMaterial,
)
from securechat.services.group_keys import (
    ROLE_ADMIN,
    GroupCipher,
    GroupKeyManager,
    GroupKeyState,
    MemberKeyRecord,
    Pending,
    Wrapped,
)
from securechat.services.keystore import KeyStore


@pytest.fixture()
def stores() -> dict[str, KeyStore]:
    return {name: KeyStore.create(user_id=name) for name in ("alice", "bob", "carol", "dave")}


def _public_keys(stores: dict[str, KeyStore], *names: str) -> dict[str, bytes]:
    return {name: stores[name].identity_public_key for name in names}


def _unwrap(state: GroupKeyState, stores: dict[str, KeyStore], name: str) -> bytes:
    return GroupKeyManager.unwrap(state.record(name), stores[name].identity_secret_key).key


def test_create_wraps_one_key_for_every_member(stores: dict[str, KeyStore]) -> None:
    state, group_key = GroupKeyManager.create("alice", _public_keys(stores, "alice", "bob", "carol"))

    assert state.version == group_key.version == 1
    assert state.record("alice").role == ROLE_ADMIN
    for name in ("alice", "bob", "carol"):
        assert _unwrap(state, stores, name) == group_key.key


def test_create_requires_creator_membership(stores: dict[str, KeyStore]) -> None:
    with pytest.raises(ValueError):
        GroupKeyManager.create("dave", _public_keys(stores, "alice", "bob"))


def test_membership_change_and_rotation_keep_members_consistent(stores: dict[str, KeyStore]) -> None:
    state, v1 = GroupKeyManager.create("alice", _public_keys(stores, "alice", "bob", "carol"))

    added = GroupKeyManager.add_members(state, v1, _public_keys(stores, "dave"))
    assert added == ["dave"]
    assert _unwrap(state, stores, "dave") == v1.key
    assert state.version == 1

    v2 = GroupKeyManager.rotate(state, _public_keys(stores, "alice", "bob", "carol", "dave"))
    assert v2.version == state.version == 2
    assert v2.key != v1.key
    for name in ("alice", "bob", "carol", "dave"):
        assert _unwrap(state, stores, name) == v2.key
        assert isinstance(state.record(name).wrapped, Wrapped)
        assert state.record(name).wrapped.version == 2


def test_add_members_without_key_are_pending(stores: dict[str, KeyStore]) -> None:
    state, v1 = GroupKeyManager.create("alice", _public_keys(stores, "alice"))
    GroupKeyManager.add_members(state, v1, {"bob": None})

    assert state.pending_members == ["bob"]
    assert isinstance(state.record("bob").wrapped, Pending)
    with pytest.raises(GroupKeyNotReady):
        GroupKeyManager.unwrap(state.record("bob"), stores["bob"].identity_secret_key)
    with pytest.raises(GroupKeyNotReady):
        state.record("bob").to_payload()


def test_add_members_with_stale_key_is_rejected(stores: dict[str, KeyStore]) -> None:
    state, v1 = GroupKeyManager.create("alice", _public_keys(stores, "alice", "bob"))
    GroupKeyManager.rotate(state, _public_keys(stores, "alice", "bob"))

    with pytest.raises(GroupKeyOutdated):
        GroupKeyManager.add_members(state, v1, _public_keys(stores, "carol"))


def test_rotation_is_all_or_nothing(stores: dict[str, KeyStore]) -> None:
    state, v1 = GroupKeyManager.create("alice", _public_keys(stores, "alice", "bob", "carol"))
    before = {name: record.wrapped for name, record in state.members.items()}

    with pytest.raises(ValueError):
        GroupKeyManager.rotate(state, _public_keys(stores, "alice", "bob"))

    assert state.version == 1
    assert {name: record.wrapped for name, record in state.members.items()} == before


def test_removal_rotates_by_default(stores: dict[str, KeyStore]) -> None:
    state, v1 = GroupKeyManager.create("alice", _public_keys(stores, "alice", "bob", "carol"))

    v2 = GroupKeyManager.remove_members(state, ["carol"], _public_keys(stores, "alice", "bob"))

    assert v2 is not None and v2.version == 2
    assert "carol" not in state.members
    assert _unwrap(state, stores, "bob") == v2.key


def test_removal_without_rotation_keeps_version(stores: dict[str, KeyStore]) -> None:
    state, v1 = GroupKeyManager.create("alice", _public_keys(stores, "alice", "bob", "carol"))

    assert GroupKeyManager.remove_members(state, ["carol"], rotate=False) is None
    assert state.version == 1
    assert _unwrap(state, stores, "bob") == v1.key


def test_removal_with_missing_keys_leaves_membership_untouched(stores: dict[str, KeyStore]) -> None:
    state, _ = GroupKeyManager.create("alice", _public_keys(stores, "alice", "bob", "carol"))

    with pytest.raises(ValueError):
        GroupKeyManager.remove_members(state, ["carol"], _public_keys(stores, "alice"))
    assert set(state.members) == {"alice", "bob", "carol"}


def test_repair_rewraps_same_version(stores: dict[str, KeyStore]) -> None:
    state, v1 = GroupKeyManager.create("alice", _public_keys(stores, "alice"))
    GroupKeyManager.add_members(state, v1, {"bob": None})

    GroupKeyManager.repair(state, v1, _public_keys(stores, "alice", "bob"))

    assert state.pending_members == []
    assert state.version == 1
    assert _unwrap(state, stores, "bob") == v1.key


def test_unwrap_needs_the_right_secret(stores: dict[str, KeyStore]) -> None:
    state, _ = GroupKeyManager.create("alice", _public_keys(stores, "alice", "bob"))

    with pytest.raises(MissingKeyMaterial):
        GroupKeyManager.unwrap(state.record("bob"), None)
    with pytest.raises(DecryptError):
        GroupKeyManager.unwrap(state.record("bob"), stores["carol"].identity_secret_key)


def test_state_survives_server_payload_form(stores: dict[str, KeyStore]) -> None:
    state, v1 = GroupKeyManager.create("alice", _public_keys(stores, "alice", "bob"))
    GroupKeyManager.add_members(state, v1, {"carol": None})
    document = {
        "groupKeyVersion": state.version,
        "members": [
            {**record.to_payload(), "role": record.role, "keyState": "wrapped", "keyVersion": 1}
            for record in state.members.values()
            if not record.is_pending
        ]
        + [{"userId": "carol", "role": "member", "keyState": "pending"}],
    }

    parsed = GroupKeyState.from_payload(document)

    assert parsed.version == 1
    assert parsed.pending_members == ["carol"]
    assert _unwrap(parsed, stores, "bob") == v1.key
    assert MemberKeyRecord.from_payload({"userId": "x"}).is_pending


def test_group_cipher_round_trip_and_version_mismatch(stores: dict[str, KeyStore]) -> None:
    state, v1 = GroupKeyManager.create("alice", _public_keys(stores, "alice", "bob"))
    sealed = GroupCipher(v1).encrypt("hi group")

    assert sealed.key_version == 1
    assert sealed.to_payload()["keyVersion"] == 1
    assert GroupCipher(v1).decrypt(sealed) == b"hi group"

    v2 = GroupKeyManager.rotate(state, _public_keys(stores, "alice", "bob"))
    with pytest.raises(GroupKeyOutdated) as exc_info:
        GroupCipher(v2).decrypt(sealed)
    assert exc_info.value.held_version == 2
    assert exc_info.value.message_version == 1
