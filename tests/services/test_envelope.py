# tests/services/test_envelope.py
"""Tests for the pairwise ECDH + HKDF + AES-GCM engine."""

from __future__ import annotations

import dataclasses

import pytest

from securechat.services import envelope
from securechat.services.envelope import (
    DECRYPT_ERROR_MARKER,
    MISSING_KEY_MARKER,
    EncryptedEnvelope,
    aes_decrypt,
    aes_encrypt,
    generate_symmetric_key,
)
from securechat.services.errors import CryptoError, DecryptError, MissingKeyMaterial
from securechat.services.keystore import KeyStore


@pytest.fixture()
def recipient() -> KeyStore:
    return KeyStore.create()


def test_round_trip(recipient: KeyStore) -> None:
    sealed = envelope.encrypt(recipient.identity_public_key, "Hello Bob")

    assert envelope.decrypt(sealed, recipient.identity_secret_key) == b"Hello Bob"
    assert len(sealed.nonce) == 12


def test_empty_plaintext_round_trips(recipient: KeyStore) -> None:
    sealed = envelope.encrypt(recipient.identity_public_key, b"")

    assert envelope.decrypt(sealed, recipient.identity_secret_key) == b""


def test_every_envelope_uses_a_fresh_ephemeral_key(recipient: KeyStore) -> None:
    first = envelope.encrypt(recipient.identity_public_key, "same text")
    second = envelope.encrypt(recipient.identity_public_key, "same text")

    assert first.ephemeral_public_key != second.ephemeral_public_key
    assert first.nonce != second.nonce
    assert first.ciphertext != second.ciphertext


def test_wrong_recipient_cannot_decrypt(recipient: KeyStore) -> None:
    sealed = envelope.encrypt(recipient.identity_public_key, "for your eyes only")
    eavesdropper = KeyStore.create()

    with pytest.raises(DecryptError):
        envelope.decrypt(sealed, eavesdropper.identity_secret_key)


@pytest.mark.parametrize("field", ["ciphertext", "nonce"])
def test_tampering_is_detected(recipient: KeyStore, field: str) -> None:
    sealed = envelope.encrypt(recipient.identity_public_key, "integrity matters")
    value = bytearray(getattr(sealed, field))
    value[0] ^= 0x01
    tampered = dataclasses.replace(sealed, **{field: bytes(value)})

    with pytest.raises(DecryptError):
        envelope.decrypt(tampered, recipient.identity_secret_key)


def test_swapped_ephemeral_key_is_detected(recipient: KeyStore) -> None:
    sealed = envelope.encrypt(recipient.identity_public_key, "integrity matters")
    other = envelope.encrypt(recipient.identity_public_key, "another")
    tampered = dataclasses.replace(sealed, ephemeral_public_key=other.ephemeral_public_key)

    with pytest.raises(DecryptError):
        envelope.decrypt(tampered, recipient.identity_secret_key)


def test_malformed_ephemeral_key_is_a_decrypt_error(recipient: KeyStore) -> None:
    sealed = envelope.encrypt(recipient.identity_public_key, "x")
    broken = dataclasses.replace(sealed, ephemeral_public_key=b"\x04" + b"\x01" * 10)

    with pytest.raises(DecryptError):
        envelope.decrypt(broken, recipient.identity_secret_key)


def test_missing_secret_key_is_distinct_from_decrypt_error(recipient: KeyStore) -> None:
    sealed = envelope.encrypt(recipient.identity_public_key, "x")

    with pytest.raises(MissingKeyMaterial):
        envelope.decrypt(sealed, None)
    assert not issubclass(MissingKeyMaterial, DecryptError)
    assert issubclass(MissingKeyMaterial, CryptoError)


def test_invalid_recipient_key_is_rejected() -> None:
    with pytest.raises(ValueError):
        envelope.encrypt(b"\x04" + b"\x00" * 64, "x")


def test_payload_round_trip_and_malformed_payload(recipient: KeyStore) -> None:
    sealed = envelope.encrypt(recipient.identity_public_key, "wire")
    payload = sealed.to_payload()

    assert set(payload) == {"ciphertext", "nonce", "ephemeralPublicKey"}
    assert EncryptedEnvelope.from_payload(payload) == sealed
    with pytest.raises(DecryptError):
        EncryptedEnvelope.from_payload({"ciphertext": "@@@", "nonce": "", "ephemeralPublicKey": ""})
    with pytest.raises(DecryptError):
        EncryptedEnvelope.from_payload({"nonce": payload["nonce"]})


def test_open_text_renders_markers(recipient: KeyStore) -> None:
    sealed = envelope.encrypt(recipient.identity_public_key, "visible")

    assert envelope.open_text(sealed.to_payload(), recipient) == "visible"
    assert envelope.open_text(sealed, KeyStore()) == MISSING_KEY_MARKER
    assert envelope.open_text(sealed, KeyStore.create()) == DECRYPT_ERROR_MARKER
    assert envelope.open_text({"ciphertext": "!"}, recipient) == DECRYPT_ERROR_MARKER


def test_raw_aes_helpers() -> None:
    key = generate_symmetric_key()
    nonce, ciphertext = aes_encrypt(key, b"file body")

    assert len(key) == 32
    assert aes_decrypt(key, nonce, ciphertext) == b"file body"
    with pytest.raises(DecryptError):
        aes_decrypt(generate_symmetric_key(), nonce, ciphertext)
    with pytest.raises(DecryptError):
        aes_decrypt(key, nonce[:8], ciphertext)
    with pytest.raises(ValueError):
        aes_encrypt(b"short", b"data")
