# src/securechat/api/v1/endpoints/files.py
"""Encrypted file transfer endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, status
from sqlalchemy import select

from securechat.api.v1.dependencies import BrokerDep, CurrentUserDep, NowDep, SessionDep
from securechat.core.settings import settings
from securechat.models import EncryptedFile, User
from securechat.schemas.file import FileUpload, serialize_file, serialize_file_metadata
from securechat.services import events
from securechat.services.crypto import CryptoService
from securechat.services.envelope import NONCE_LENGTH_BYTES

router = APIRouter(prefix="/files", tags=["files"])


@router.post("/", status_code=status.HTTP_201_CREATED)
async def upload_file(
    upload: FileUpload,
    current_user: CurrentUserDep,
    db: SessionDep,
    now: NowDep,
    broker: BrokerDep,
) -> dict[str, Any]:
    """Store an encrypted file; the recipient is notified with metadata only."""
    if len(upload.encrypted_file) > settings.max_file_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"Encrypted file exceeds {settings.max_file_bytes} bytes",
        )
    recipient = db.get(User, upload.recipient_id)
    if recipient is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Recipient not found")
    if len(upload.file_iv) != NONCE_LENGTH_BYTES or len(upload.file_key_nonce) != NONCE_LENGTH_BYTES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"fileIv and fileKeyNonce must be {NONCE_LENGTH_BYTES} bytes",
        )
    try:
        CryptoService.validate_public_key(upload.ephemeral_public_key)
    except ValueError as err:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid ephemeralPublicKey: {err}",
        ) from err

    record = EncryptedFile(
        sender_user_id=current_user.user_id,
        recipient_user_id=recipient.user_id,
        filename=upload.filename,
        mime_type=upload.mime_type,
        size=upload.size,
        encrypted_file=upload.encrypted_file,
        file_iv=upload.file_iv,
        encrypted_file_key=upload.encrypted_file_key,
        ephemeral_public_key=upload.ephemeral_public_key,
        file_key_nonce=upload.file_key_nonce,
        created_at=now,
    )
    db.add(record)
    db.commit()
    db.refresh(record)

    metadata = serialize_file_metadata(record)
    broker.publish(recipient.user_id, events.NEW_FILE, metadata)
    return metadata


@router.get("/")
async def list_received_files(current_user: CurrentUserDep, db: SessionDep) -> list[dict[str, Any]]:
    records = db.scalars(
        select(EncryptedFile)
        .where(EncryptedFile.recipient_user_id == current_user.user_id)
        .order_by(EncryptedFile.id.desc())
    )
    return [serialize_file_metadata(record) for record in records]


@router.get("/{file_id}")
async def download_file(file_id: int, current_user: CurrentUserDep, db: SessionDep) -> dict[str, Any]:
    """Return the encrypted file to its sender or recipient."""
    record = db.get(EncryptedFile, file_id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")
    if current_user.user_id not in (record.sender_user_id, record.recipient_user_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed to access this file")

    if current_user.user_id == record.recipient_user_id and not record.downloaded:
        record.downloaded = True
        db.commit()
    return serialize_file(record)
