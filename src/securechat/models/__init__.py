# src/securechat/models/__init__.py
"""SQLAlchemy models for the SecureChat application."""

from .device import Device
from .direct_message import DirectMessage
from .file import EncryptedFile
from .group import Group, GroupMember, GroupMessage, GroupMessageRead
from .user import PreKey, User

__all__ = [
    "Device",
    "DirectMessage",
    "EncryptedFile",
    "Group", "GroupMember", "GroupMessage", "GroupMessageRead",
    "PreKey", "User",
]
