# src/securechat/schemas/__init__.py
"""
Pydantic schemas for API request/response models.

These schemas define the structure of API data for serialization and validation.
"""

from .device import DeviceRegister, DeviceSync, SealedKeyStore
from .direct_message import DirectMessageCreate, DirectMessageEdit, PinUpdate
from .file import FileUpload
from .group import GroupCreate, GroupMessageCreate, GroupUpdate, MemberKeyEnvelope
from .keys import (
    ChallengeRequest,
    LoginRequest,
    PreKeyBatch,
    PreKeyUpload,
    RegisterRequest,
    SignedPreKeyUpload,
    UserSettingsUpdate,
)

__all__ = [
    "DeviceRegister", "DeviceSync", "SealedKeyStore",
    "DirectMessageCreate", "DirectMessageEdit", "PinUpdate",
    "FileUpload",
    "GroupCreate", "GroupMessageCreate", "GroupUpdate", "MemberKeyEnvelope",
    "ChallengeRequest", "LoginRequest", "PreKeyBatch", "PreKeyUpload",
    "RegisterRequest", "SignedPreKeyUpload", "UserSettingsUpdate",
]
