# tests/v1/test_groups.py
"""Tests for group creation, key distribution and group messaging."""

from __future__ import annotations

from typing import Any

from fastapi import status
from fastapi.testclient import TestClient

from securechat.services import events
from securechat.services.events import Event, EventBroker
from securechat.services.group_keys import (
    GroupCipher,
    GroupCiphertext,
    GroupKey,
    GroupKeyManager,
    GroupKeyState,
)
from securechat.utils.encoding import b64decode
from tests.helpers import Identity, register_identity


def _keys(*identities: Identity) -> dict[str, bytes]:
    return {identity.user_id_b64: identity.public_key for identity in identities}


def _create_group(
    client: TestClient,
    creator: Identity,
    members: list[Identity],
    wrapped_for: list[Identity] | None = None,
) -> tuple[dict[str, Any], GroupKey]:
    recipients = wrapped_for if wrapped_for is not None else [creator, *members]
    state, group_key = GroupKeyManager.create(creator.user_id_b64, _keys(creator, *recipients))
    body = {
        "name": "Project",
        "description": "Weekly sync",
        "memberIds": [member.user_id_b64 for member in members],
        "members": state.member_payloads(),
    }
    response = client.post("/api/v1/groups/", json=body, headers=creator.headers)
    assert response.status_code == status.HTTP_201_CREATED, response.text
    return response.json(), group_key


def _fetch(client: TestClient, viewer: Identity, group_id: int) -> dict[str, Any]:
    response = client.get(f"/api/v1/groups/{group_id}", headers=viewer.headers)
    assert response.status_code == status.HTTP_200_OK
    return response.json()


def _held_key(client: TestClient, viewer: Identity, group_id: int) -> GroupKey:
    state = GroupKeyState.from_payload(_fetch(client, viewer, group_id))
    group_key = GroupKeyManager.unwrap(state.record(viewer.user_id_b64), viewer.keystore.identity_secret_key)
    viewer.keystore.remember_group_key(group_id, group_key)
    return group_key


def _post(client: TestClient, sender: Identity, group_id: int, sealed: GroupCiphertext) -> Any:
    return client.post(f"/api/v1/groups/{group_id}/messages", json=sealed.to_payload(), headers=sender.headers)


def test_membership_and_rotation_keep_every_member_on_one_key(
    client: TestClient,
    alice: Identity,
    bob: Identity,
    carol: Identity,
) -> None:
    dave = register_identity(client, "Dave")
    group, v1 = _create_group(client, alice, [bob, carol])
    assert group["groupKeyVersion"] == 1
    assert {m["role"] for m in group["members"] if m["userId"] == alice.user_id_b64} == {"admin"}
    for member in (alice, bob, carol):
        assert _held_key(client, member, group["id"]) == v1

    state = GroupKeyState.from_payload(group)
    GroupKeyManager.add_members(state, v1, _keys(dave))
    response = client.patch(
        f"/api/v1/groups/{group['id']}",
        json={"addMembers": [dave.user_id_b64], "members": state.member_payloads([dave.user_id_b64])},
        headers=alice.headers,
    )
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["groupKeyVersion"] == 1
    assert _held_key(client, dave, group["id"]) == v1

    state = GroupKeyState.from_payload(response.json())
    v2 = GroupKeyManager.rotate(state, _keys(alice, bob, carol, dave))
    response = client.patch(
        f"/api/v1/groups/{group['id']}",
        json={"rotateKey": True, "members": state.member_payloads()},
        headers=alice.headers,
    )
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["groupKeyVersion"] == 2
    for member in (alice, bob, carol, dave):
        held = _held_key(client, member, group["id"])
        assert held.version == 2
        assert held.key == v2.key


def test_rotation_without_every_member_is_rejected(
    client: TestClient,
    alice: Identity,
    bob: Identity,
    carol: Identity,
) -> None:
    group, _ = _create_group(client, alice, [bob, carol])
    partial = GroupKeyState.from_payload(group)
    partial.members.pop(carol.user_id_b64)
    GroupKeyManager.rotate(partial, _keys(alice, bob))

    response = client.patch(
        f"/api/v1/groups/{group['id']}",
        json={"rotateKey": True, "members": partial.member_payloads()},
        headers=alice.headers,
    )
    assert response.status_code == status.HTTP_409_CONFLICT
    assert _fetch(client, alice, group["id"])["groupKeyVersion"] == 1


def test_removal_rotates_key(
    client: TestClient,
    broker: EventBroker,
    alice: Identity,
    bob: Identity,
    carol: Identity,
) -> None:
    carol_events: list[Event] = []
    broker.subscribe(carol.user_id, carol_events.append)
    group, _ = _create_group(client, alice, [bob, carol])

    no_keys = client.patch(
        f"/api/v1/groups/{group['id']}",
        json={"removeMembers": [carol.user_id_b64]},
        headers=alice.headers,
    )
    assert no_keys.status_code == status.HTTP_409_CONFLICT

    state = GroupKeyState.from_payload(group)
    v2 = GroupKeyManager.remove_members(state, [carol.user_id_b64], _keys(alice, bob))
    response = client.patch(
        f"/api/v1/groups/{group['id']}",
        json={"removeMembers": [carol.user_id_b64], "members": state.member_payloads()},
        headers=alice.headers,
    )
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["groupKeyVersion"] == 2
    assert _held_key(client, bob, group["id"]) == v2
    assert client.get(f"/api/v1/groups/{group['id']}", headers=carol.headers).status_code == 403
    assert [event.name for event in carol_events] == [events.GROUP_CREATED, events.GROUP_LEFT]


def test_group_messages_enforce_key_state(
    client: TestClient,
    broker: EventBroker,
    alice: Identity,
    bob: Identity,
    carol: Identity,
) -> None:
    bob_events: list[Event] = []
    broker.subscribe(bob.user_id, bob_events.append)
    carol_events: list[Event] = []
    broker.subscribe(carol.user_id, carol_events.append)
    group, v1 = _create_group(client, alice, [bob, carol], wrapped_for=[alice, bob])
    pending = [m for m in group["members"] if m["keyState"] == "pending"]
    assert [m["userId"] for m in pending] == [carol.user_id_b64]
    assert pending[0]["encryptedGroupKey"] is None

    sent = _post(client, alice, group["id"], GroupCipher(v1).encrypt("hello team"))
    assert sent.status_code == status.HTTP_201_CREATED

    listed = client.get(f"/api/v1/groups/{group['id']}/messages", headers=bob.headers).json()
    sealed = GroupCiphertext(
        ciphertext=b64decode(listed[0]["ciphertext"]),
        nonce=b64decode(listed[0]["nonce"]),
        key_version=listed[0]["keyVersion"],
    )
    assert GroupCipher(_held_key(client, bob, group["id"])).decrypt(sealed) == b"hello team"
    assert [event.name for event in bob_events] == [events.GROUP_CREATED, events.NEW_GROUP_MESSAGE]
    assert [event.name for event in carol_events] == [events.GROUP_CREATED]

    not_ready = _post(client, carol, group["id"], GroupCipher(v1).encrypt("me too"))
    assert not_ready.status_code == status.HTTP_409_CONFLICT
    assert not_ready.json()["detail"] == "Group key not ready"

    stale = GroupCipher(GroupKey(version=7, key=v1.key)).encrypt("old")
    response = _post(client, bob, group["id"], stale)
    assert response.status_code == status.HTTP_409_CONFLICT
    assert response.json()["detail"] == "Group key version is stale"

    state = GroupKeyState.from_payload(group)
    GroupKeyManager.repair(state, v1, _keys(alice, bob, carol))
    repaired = client.patch(
        f"/api/v1/groups/{group['id']}",
        json={"members": state.member_payloads([carol.user_id_b64])},
        headers=alice.headers,
    )
    assert repaired.status_code == status.HTTP_200_OK
    assert _held_key(client, carol, group["id"]) == v1
    assert _post(client, carol, group["id"], GroupCipher(v1).encrypt("me too")).status_code == 201

    _post(client, alice, group["id"], GroupCipher(v1).encrypt("welcome"))
    assert carol_events[-1].name == events.NEW_GROUP_MESSAGE


def test_group_permissions(
    client: TestClient,
    alice: Identity,
    bob: Identity,
    carol: Identity,
) -> None:
    group, _ = _create_group(client, alice, [bob])
    group_url = f"/api/v1/groups/{group['id']}"

    assert client.patch(group_url, json={"name": "Mine now"}, headers=bob.headers).status_code == 403
    assert client.get(group_url, headers=carol.headers).status_code == 403
    assert client.get("/api/v1/groups/999999", headers=alice.headers).status_code == 404

    renamed = client.patch(group_url, json={"name": "Renamed"}, headers=alice.headers)
    assert renamed.json()["name"] == "Renamed"
    assert [g["id"] for g in client.get("/api/v1/groups/", headers=bob.headers).json()] == [group["id"]]

    assert client.post(f"{group_url}/leave", headers=alice.headers).status_code == 400
    assert client.delete(group_url, headers=bob.headers).status_code == 403
    assert client.post(f"{group_url}/leave", headers=bob.headers).status_code == 200
    assert client.get(group_url, headers=bob.headers).status_code == 403

    assert client.delete(group_url, headers=alice.headers).status_code == 200
    assert client.get(group_url, headers=alice.headers).status_code == 404


def test_wrapped_key_for_non_member_is_rejected(client: TestClient, alice: Identity, bob: Identity, carol: Identity) -> None:
    state, _ = GroupKeyManager.create(alice.user_id_b64, _keys(alice, bob, carol))
    body = {"name": "Typo", "memberIds": [bob.user_id_b64], "members": state.member_payloads()}

    response = client.post("/api/v1/groups/", json=body, headers=alice.headers)
    assert response.status_code == status.HTTP_400_BAD_REQUEST
