# src/securechat/schemas/device.py
"""Device registration and key sync schemas."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import Field

from securechat.db.time import as_utc
from securechat.models import Device
from securechat.utils.encoding import b64encode

from .common import ApiModel, Base64Bytes

DeviceType = Literal["desktop", "mobile", "tablet", "browser"]


class SealedKeyStore(ApiModel):
    """Passphrase-sealed key store export; opaque to the server."""

    format: int = Field(..., ge=1)
    kdf: Literal["pbkdf2-sha256"]
    iterations: int = Field(..., ge=1, le=2**31 - 1)
    salt: Base64Bytes
    nonce: Base64Bytes
    ciphertext: Base64Bytes


class DeviceRegister(ApiModel):
    device_name: str = Field("Unknown Device", min_length=1, max_length=100)
    device_type: DeviceType = "browser"
    user_agent: str = Field("", max_length=500)
    device_key: str = Field(..., min_length=16, max_length=256, description="Client-held device secret")
    key_store: SealedKeyStore


class DeviceSync(ApiModel):
    device_key: str = Field(..., min_length=16, max_length=256)
    key_store: SealedKeyStore


def serialize_device(device: Device) -> dict[str, Any]:
    """Device metadata; never includes the sealed key store."""
    return {
        "id": device.id,
        "deviceName": device.device_name,
        "deviceType": device.device_type,
        "lastSyncAt": as_utc(device.last_sync_at).isoformat(),
        "createdAt": as_utc(device.created_at).isoformat(),
    }


def serialize_key_store(device: Device) -> dict[str, Any]:
    """Rebuild the export exactly as ``KeyStore.export_state`` produced it."""
    return {
        "format": device.export_format,
        "kdf": device.kdf,
        "iterations": device.kdf_iterations,
        "salt": b64encode(device.kdf_salt),
        "nonce": b64encode(device.nonce),
        "ciphertext": b64encode(device.ciphertext),
    }
