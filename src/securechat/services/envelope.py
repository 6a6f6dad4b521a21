# src/securechat/services/envelope.py
"""Pairwise encryption engine.

Every call to :func:`encrypt` performs a fresh ephemeral P-256 ECDH against the
recipient's public key, stretches the shared secret with HKDF-SHA256 and seals
the payload with AES-256-GCM. There is no ratchet: each envelope is independently
decryptable with the recipient's secret key and nothing else.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from securechat.services.crypto import CryptoService
from securechat.services.errors import DecryptError, MissingKeyMaterial
from securechat.utils.encoding import b64decode, b64encode

if TYPE_CHECKING:  # pragma: no cover - typing helper
    from securechat.services.keystore import KeyStore

logger = logging.getLogger(__name__)

# Shared by every client; changing it breaks decryption of all stored envelopes.
HKDF_INFO = b"SecureChat-AES-v1"
SYMMETRIC_KEY_LENGTH_BYTES = 32
NONCE_LENGTH_BYTES = 12

MISSING_KEY_MARKER = "[no-secret-key]"
DECRYPT_ERROR_MARKER = "[decrypt-error]"


@dataclass(frozen=True)
class EncryptedEnvelope:
    """Ciphertext (tag included), AEAD nonce and the one-time ephemeral public key."""

    ciphertext: bytes
    nonce: bytes
    ephemeral_public_key: bytes

    def to_payload(self) -> dict[str, str]:
        """Return the base64 wire form of the envelope."""
        return {
            "ciphertext": b64encode(self.ciphertext),
            "nonce": b64encode(self.nonce),
            "ephemeralPublicKey": b64encode(self.ephemeral_public_key),
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> EncryptedEnvelope:
        """Parse the base64 wire form.

        Raises:
            DecryptError: If a field is missing or not valid base64.
        """
        try:
            return cls(
                ciphertext=b64decode(payload["ciphertext"]),
                nonce=b64decode(payload["nonce"]),
                ephemeral_public_key=b64decode(payload["ephemeralPublicKey"]),
            )
        except (KeyError, TypeError, ValueError) as err:
            raise DecryptError(f"Malformed envelope: {err}") from err


def derive_key(shared_secret: bytes) -> bytes:
    """Stretch an ECDH shared secret into a 256-bit AES key."""
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=SYMMETRIC_KEY_LENGTH_BYTES,
        salt=b"",
        info=HKDF_INFO,
    )
    return hkdf.derive(shared_secret)


def generate_symmetric_key() -> bytes:
    """Return a fresh random 256-bit AES key."""
    return AESGCM.generate_key(bit_length=SYMMETRIC_KEY_LENGTH_BYTES * 8)


def aes_encrypt(key: bytes, data: bytes) -> tuple[bytes, bytes]:
    """Seal ``data`` under ``key`` with a fresh random nonce.

    Returns:
        Tuple of (nonce, ciphertext_with_tag)
    """
    if len(key) != SYMMETRIC_KEY_LENGTH_BYTES:
        raise ValueError("AES-256-GCM keys must be 32 bytes")
    nonce = os.urandom(NONCE_LENGTH_BYTES)
    return nonce, AESGCM(key).encrypt(nonce, data, None)


def aes_decrypt(key: bytes, nonce: bytes, ciphertext: bytes) -> bytes:
    """Open an AES-256-GCM ciphertext.

    Raises:
        DecryptError: On a wrong key/nonce length or an authentication failure.
    """
    if len(key) != SYMMETRIC_KEY_LENGTH_BYTES:
        raise DecryptError("AES-256-GCM keys must be 32 bytes")
    if len(nonce) != NONCE_LENGTH_BYTES:
        raise DecryptError("AES-GCM nonces must be 12 bytes")
    try:
        return AESGCM(key).decrypt(nonce, ciphertext, None)
    except InvalidTag as err:
        raise DecryptError("Authentication tag mismatch") from err


def _to_bytes(plaintext: bytes | str) -> bytes:
    if isinstance(plaintext, str):
        return plaintext.encode("utf-8")
    return bytes(plaintext)


def encrypt(recipient_public_key: bytes, plaintext: bytes | str) -> EncryptedEnvelope:
    """Encrypt ``plaintext`` for the holder of ``recipient_public_key``.

    The ephemeral private key and the shared secret exist only inside this call.

    Raises:
        ValueError: If ``recipient_public_key`` is not a valid P-256 point.
        UnsupportedEnvironment: If P-256 is unavailable.
    """
    recipient_key = CryptoService.load_public_key(recipient_public_key)
    ephemeral_key = CryptoService.generate_private_key()
    aes_key = derive_key(ephemeral_key.exchange(ec.ECDH(), recipient_key))
    nonce, ciphertext = aes_encrypt(aes_key, _to_bytes(plaintext))
    return EncryptedEnvelope(
        ciphertext=ciphertext,
        nonce=nonce,
        ephemeral_public_key=CryptoService.encode_public_key(ephemeral_key.public_key()),
    )


def decrypt(envelope: EncryptedEnvelope, secret_key: bytes | None) -> bytes:
    """Recover the plaintext of ``envelope`` with the recipient's secret key.

    Raises:
        MissingKeyMaterial: If ``secret_key`` is absent.
        DecryptError: If the key or envelope is malformed or authentication fails.
    """
    if not secret_key:
        raise MissingKeyMaterial("No local secret key available to open this envelope")
    try:
        own_key = CryptoService.load_private_key(secret_key)
    except ValueError as err:
        raise DecryptError(f"Unusable secret key: {err}") from err
    try:
        ephemeral_public = CryptoService.load_public_key(envelope.ephemeral_public_key)
    except ValueError as err:
        raise DecryptError(f"Malformed ephemeral public key: {err}") from err

    aes_key = derive_key(own_key.exchange(ec.ECDH(), ephemeral_public))
    return aes_decrypt(aes_key, envelope.nonce, envelope.ciphertext)


def open_text(envelope: EncryptedEnvelope | Mapping[str, Any], keystore: KeyStore) -> str:
    """Decrypt a text message for display, rendering failures as markers."""
    try:
        if not isinstance(envelope, EncryptedEnvelope):
            envelope = EncryptedEnvelope.from_payload(envelope)
        return keystore.decrypt(envelope).decode("utf-8")
    except MissingKeyMaterial:
        return MISSING_KEY_MARKER
    except (DecryptError, UnicodeDecodeError) as err:
        logger.debug("Rendering undecryptable message: %s", err)
        return DECRYPT_ERROR_MARKER
