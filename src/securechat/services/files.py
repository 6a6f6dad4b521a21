# src/securechat/services/files.py
"""Two-layer file encryption.

The file body is sealed with a per-file random AES-256-GCM key; that key is then
wrapped for the recipient with the pairwise engine.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from securechat.services import envelope as pairwise
from securechat.services.envelope import EncryptedEnvelope
from securechat.services.errors import DecryptError
from securechat.utils.encoding import b64decode, b64encode


@dataclass(frozen=True)
class EncryptedFilePayload:
    """Encrypted file body, its IV and the wrapped per-file key."""

    ciphertext: bytes
    iv: bytes
    wrapped_key: EncryptedEnvelope

    def to_upload(self, recipient_id: str, filename: str, mime_type: str, size: int) -> dict[str, Any]:
        """Return the body of a ``POST /files/`` request."""
        return {
            "recipientId": recipient_id,
            "filename": filename,
            "mimeType": mime_type,
            "size": size,
            "encryptedFile": b64encode(self.ciphertext),
            "fileIv": b64encode(self.iv),
            "encryptedFileKey": b64encode(self.wrapped_key.ciphertext),
            "ephemeralPublicKey": b64encode(self.wrapped_key.ephemeral_public_key),
            "fileKeyNonce": b64encode(self.wrapped_key.nonce),
        }

    @classmethod
    def from_download(cls, payload: dict[str, Any]) -> EncryptedFilePayload:
        """Parse a ``GET /files/{id}`` response."""
        try:
            return cls(
                ciphertext=b64decode(payload["encryptedFile"]),
                iv=b64decode(payload["fileIv"]),
                wrapped_key=EncryptedEnvelope(
                    ciphertext=b64decode(payload["encryptedFileKey"]),
                    nonce=b64decode(payload["fileKeyNonce"]),
                    ephemeral_public_key=b64decode(payload["ephemeralPublicKey"]),
                ),
            )
        except (KeyError, TypeError, ValueError) as err:
            raise DecryptError(f"Malformed encrypted file: {err}") from err


def encrypt_file(recipient_public_key: bytes, data: bytes) -> EncryptedFilePayload:
    """Encrypt ``data`` for the holder of ``recipient_public_key``."""
    file_key = pairwise.generate_symmetric_key()
    iv, ciphertext = pairwise.aes_encrypt(file_key, data)
    return EncryptedFilePayload(
        ciphertext=ciphertext,
        iv=iv,
        wrapped_key=pairwise.encrypt(recipient_public_key, file_key),
    )


def decrypt_file(payload: EncryptedFilePayload, secret_key: bytes | None) -> bytes:
    """Unwrap the per-file key and decrypt the body.

    Raises:
        MissingKeyMaterial: If ``secret_key`` is absent.
        DecryptError: If either layer fails to authenticate.
    """
    file_key = pairwise.decrypt(payload.wrapped_key, secret_key)
    return pairwise.aes_decrypt(file_key, payload.iv, payload.ciphertext)
