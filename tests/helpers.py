# tests/helpers.py
"""Client-side helpers shared by the API tests."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from fastapi.testclient import TestClient

from securechat.services import envelope
from securechat.services.crypto import CryptoService
from securechat.services.keystore import KeyStore
from securechat.utils.encoding import b64decode, b64encode, decode_user_id


@dataclass
class Identity:
    """A registered account together with the device-side key store."""

    name: str
    keystore: KeyStore
    user_id_b64: str
    access_token: str
    published_prekeys: list[int] = field(default_factory=list)

    @property
    def user_id(self) -> bytes:
        return decode_user_id(self.user_id_b64)

    @property
    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}

    @property
    def public_key(self) -> bytes:
        return self.keystore.identity_public_key


class FrozenClock:
    """Stand-in for the request clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> datetime:
        self.current += timedelta(seconds=seconds)
        return self.current


def build_register_payload(keystore: KeyStore, name: str, prekey_count: int = 3) -> dict[str, Any]:
    identity_key = CryptoService.load_private_key(keystore.identity_secret_key)
    signed = CryptoService.generate_identity_key_pair()
    signature = identity_key.sign(signed.public_key, ec.ECDSA(hashes.SHA256()))
    return {
        "displayName": name,
        "identityPublicKey": b64encode(keystore.identity_public_key),
        "signedPreKey": {"keyId": 1, "publicKey": b64encode(signed.public_key), "signature": b64encode(signature)},
        "preKeys": [
            {"keyId": prekey.key_id, "publicKey": b64encode(prekey.public_key)}
            for prekey in keystore.generate_prekeys(prekey_count)
        ],
    }


def register_identity(client: TestClient, name: str, prekey_count: int = 3) -> Identity:
    keystore = KeyStore.create()
    payload = build_register_payload(keystore, name, prekey_count)
    response = client.post("/api/v1/auth/register", json=payload)
    assert response.status_code == 201, response.text
    data = response.json()
    keystore.user_id = data["userId"]
    return Identity(
        name=name,
        keystore=keystore,
        user_id_b64=data["userId"],
        access_token=data["accessToken"],
        published_prekeys=[prekey["keyId"] for prekey in payload["preKeys"]],
    )


def fetch_identity_key(client: TestClient, viewer: Identity, target: Identity) -> bytes:
    response = client.get(f"/api/v1/users/{target.user_id_b64}/keys", headers=viewer.headers)
    assert response.status_code == 200, response.text
    return b64decode(response.json()["identityPublicKey"])


def send_text(
    client: TestClient,
    sender: Identity,
    recipient: Identity,
    text: str,
    **extra: Any,
) -> Any:
    """Encrypt ``text`` to the recipient's identity key and post it."""
    sealed = envelope.encrypt(recipient.public_key, text)
    body = {"recipientId": recipient.user_id_b64, **sealed.to_payload(), **extra}
    return client.post("/api/v1/messages/", json=body, headers=sender.headers)
