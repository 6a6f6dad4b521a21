# src/securechat/schemas/file.py
"""Encrypted file transfer schemas."""

from __future__ import annotations

from typing import Any

from pydantic import Field

from securechat.db.time import as_utc
from securechat.models import EncryptedFile
from securechat.utils.encoding import b64encode, encode_user_id

from .common import ApiModel, Base64Bytes, UserIdBytes


class FileUpload(ApiModel):
    """Already-encrypted file plus its wrapped per-file key."""

    recipient_id: UserIdBytes
    filename: str = Field(..., min_length=1, max_length=255)
    mime_type: str = Field("application/octet-stream", max_length=255)
    size: int = Field(0, ge=0, description="Plaintext size in bytes")
    encrypted_file: Base64Bytes
    file_iv: Base64Bytes
    encrypted_file_key: Base64Bytes
    ephemeral_public_key: Base64Bytes
    file_key_nonce: Base64Bytes


def serialize_file_metadata(record: EncryptedFile) -> dict[str, Any]:
    return {
        "id": record.id,
        "senderId": encode_user_id(record.sender_user_id),
        "recipientId": encode_user_id(record.recipient_user_id),
        "filename": record.filename,
        "mimeType": record.mime_type,
        "size": record.size,
        "createdAt": as_utc(record.created_at).isoformat(),
    }


def serialize_file(record: EncryptedFile) -> dict[str, Any]:
    """Full record including the ciphertext layers."""
    payload = serialize_file_metadata(record)
    payload.update(
        {
            "encryptedFile": b64encode(record.encrypted_file),
            "fileIv": b64encode(record.file_iv),
            "encryptedFileKey": b64encode(record.encrypted_file_key),
            "ephemeralPublicKey": b64encode(record.ephemeral_public_key),
            "fileKeyNonce": b64encode(record.file_key_nonce),
            "downloaded": record.downloaded,
        }
    )
    return payload
