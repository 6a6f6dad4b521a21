# src/securechat/api/v1/endpoints/devices.py
"""Device registration and sealed key store sync."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Query, Response, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from securechat.api.v1.dependencies import CurrentUserDep, NowDep, SessionDep
from securechat.core.settings import settings
from securechat.models import Device, User
from securechat.schemas.device import (
    DeviceRegister,
    DeviceSync,
    SealedKeyStore,
    serialize_device,
    serialize_key_store,
)
from securechat.services.envelope import NONCE_LENGTH_BYTES
from securechat.utils.hash import blake3_digest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/devices", tags=["devices"])


def _check_key_store(key_store: SealedKeyStore) -> None:
    if len(key_store.nonce) != NONCE_LENGTH_BYTES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Key store nonce must be {NONCE_LENGTH_BYTES} bytes",
        )
    size = len(key_store.salt) + len(key_store.nonce) + len(key_store.ciphertext)
    if size > settings.max_key_store_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"Key store exceeds {settings.max_key_store_bytes} bytes",
        )


def _store(device: Device, key_store: SealedKeyStore) -> None:
    device.export_format = key_store.format
    device.kdf = key_store.kdf
    device.kdf_iterations = key_store.iterations
    device.kdf_salt = key_store.salt
    device.nonce = key_store.nonce
    device.ciphertext = key_store.ciphertext


def _find_device(db: Session, user: User, device_key: str, *, active_only: bool = True) -> Device | None:
    query = select(Device).where(
        Device.user_id == user.user_id,
        Device.device_key_digest == blake3_digest(device_key.encode("utf-8")),
    )
    if active_only:
        query = query.where(Device.is_active.is_(True))
    return db.scalars(query).first()


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register_device(
    registration: DeviceRegister,
    response: Response,
    current_user: CurrentUserDep,
    db: SessionDep,
    now: NowDep,
) -> dict[str, Any]:
    """Store a device's sealed key store.

    Registering a device key that is already known refreshes and reactivates
    that device instead of creating a new one.
    """
    _check_key_store(registration.key_store)

    device = _find_device(db, current_user, registration.device_key, active_only=False)
    if device is None:
        device = Device(
            user_id=current_user.user_id,
            device_key_digest=blake3_digest(registration.device_key.encode("utf-8")),
            created_at=now,
        )
        db.add(device)
    else:
        response.status_code = status.HTTP_200_OK

    device.device_name = registration.device_name
    device.device_type = registration.device_type
    device.user_agent = registration.user_agent
    device.is_active = True
    device.last_sync_at = now
    _store(device, registration.key_store)
    db.commit()
    db.refresh(device)

    logger.info("Device %d registered (%s)", device.id, device.device_type)
    return serialize_device(device)


@router.get("/")
async def list_devices(current_user: CurrentUserDep, db: SessionDep) -> list[dict[str, Any]]:
    """Active devices, most recently synced first."""
    devices = db.scalars(
        select(Device)
        .where(Device.user_id == current_user.user_id, Device.is_active.is_(True))
        .order_by(Device.last_sync_at.desc(), Device.id.desc())
    )
    return [serialize_device(device) for device in devices]


@router.post("/sync")
async def sync_device(
    sync: DeviceSync,
    current_user: CurrentUserDep,
    db: SessionDep,
    now: NowDep,
) -> dict[str, Any]:
    _check_key_store(sync.key_store)
    device = _find_device(db, current_user, sync.device_key)
    if device is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Device not found")

    _store(device, sync.key_store)
    device.last_sync_at = now
    db.commit()
    return serialize_device(device)


@router.get("/keys")
async def get_device_keys(
    current_user: CurrentUserDep,
    db: SessionDep,
    device_key: str = Query(..., alias="deviceKey", min_length=16, max_length=256),
) -> dict[str, Any]:
    """Return the sealed key store in the shape ``KeyStore.from_export`` accepts."""
    device = _find_device(db, current_user, device_key)
    if device is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Device not found")
    return {"device": serialize_device(device), "keyStore": serialize_key_store(device)}


@router.delete("/{device_id}")
async def deactivate_device(device_id: int, current_user: CurrentUserDep, db: SessionDep) -> dict[str, Any]:
    device = db.get(Device, device_id)
    # Someone else's device is reported as missing.
    if device is None or device.user_id != current_user.user_id or not device.is_active:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Device not found")

    device.is_active = False
    db.commit()
    logger.info("Device %d deactivated", device.id)
    return {"id": device.id, "isActive": False}
