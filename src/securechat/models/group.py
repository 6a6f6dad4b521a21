# src/securechat/models/group.py
"""SQLAlchemy models for groups, their members and group messages."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, LargeBinary, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from securechat.db.session import Base
from securechat.db.time import utcnow

ROLE_ADMIN = "admin"
ROLE_MEMBER = "member"

KEY_STATE_PENDING = "pending"
KEY_STATE_WRAPPED = "wrapped"


class Group(Base):
    """Group conversation sharing one symmetric key per ``group_key_version``."""

    __tablename__ = "chat_group"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    creator_user_id: Mapped[bytes] = mapped_column(
        LargeBinary(32), ForeignKey("user_account.user_id"), nullable=False, index=True
    )
    group_key_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    last_key_rotation: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    members: Mapped[list[GroupMember]] = relationship(
        "GroupMember",
        back_populates="group",
        cascade="all, delete-orphan",
        order_by="GroupMember.id",
    )

    def member(self, user_id: bytes) -> GroupMember | None:
        """Return the membership row for ``user_id`` if present."""
        for member in self.members:
            if member.user_id == user_id:
                return member
        return None

    def is_admin(self, user_id: bytes) -> bool:
        """Return True for the creator and for members holding the admin role."""
        if self.creator_user_id == user_id:
            return True
        member = self.member(user_id)
        return member is not None and member.role == ROLE_ADMIN


class GroupMember(Base):
    """Per-member record holding that member's wrapped copy of the group key.

    While ``key_state`` is ``pending`` the envelope columns are empty and must
    never be treated as ciphertext.
    """

    __tablename__ = "group_member"
    __table_args__ = (Index("ix_group_member_user", "user_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    group_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("chat_group.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[bytes] = mapped_column(
        LargeBinary(32), ForeignKey("user_account.user_id"), nullable=False
    )
    role: Mapped[str] = mapped_column(Text, nullable=False, default=ROLE_MEMBER)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    key_state: Mapped[str] = mapped_column(Text, nullable=False, default=KEY_STATE_PENDING)
    encrypted_group_key: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True)
    ephemeral_public_key: Mapped[bytes | None] = mapped_column(LargeBinary(65), nullable=True)
    key_nonce: Mapped[bytes | None] = mapped_column(LargeBinary(12), nullable=True)
    key_version: Mapped[int | None] = mapped_column(Integer, nullable=True)

    group: Mapped[Group] = relationship("Group", back_populates="members")

    @property
    def is_pending(self) -> bool:
        """Return True while no usable envelope is stored for this member."""
        return self.key_state != KEY_STATE_WRAPPED

    def set_envelope(self, ciphertext: bytes, nonce: bytes, ephemeral_public_key: bytes, version: int) -> None:
        """Store a wrapped group key for ``version``."""
        self.encrypted_group_key = ciphertext
        self.key_nonce = nonce
        self.ephemeral_public_key = ephemeral_public_key
        self.key_version = version
        self.key_state = KEY_STATE_WRAPPED

    def mark_pending(self) -> None:
        """Drop the stored envelope; the member must be re-wrapped."""
        self.encrypted_group_key = None
        self.key_nonce = None
        self.ephemeral_public_key = None
        self.key_version = None
        self.key_state = KEY_STATE_PENDING


class GroupMessage(Base):
    """Message encrypted directly under the group key at ``key_version``."""

    __tablename__ = "group_message"
    __table_args__ = (Index("ix_group_message_group", "group_id", "created_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    group_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("chat_group.id", ondelete="CASCADE"), nullable=False
    )
    sender_user_id: Mapped[bytes] = mapped_column(
        LargeBinary(32), ForeignKey("user_account.user_id"), nullable=False
    )
    ciphertext: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    nonce: Mapped[bytes] = mapped_column(LargeBinary(12), nullable=False)
    key_version: Mapped[int] = mapped_column(Integer, nullable=False)
    message_type: Mapped[str] = mapped_column(Text, nullable=False, default="text")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    edited: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    edited_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class GroupMessageRead(Base):
    """Read receipt of one member for one group message."""

    __tablename__ = "group_message_read"

    message_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("group_message.id", ondelete="CASCADE"), primary_key=True
    )
    user_id: Mapped[bytes] = mapped_column(
        LargeBinary(32), ForeignKey("user_account.user_id"), primary_key=True
    )
    read_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
