# src/securechat/models/direct_message.py
"""Models describing direct messages between users."""

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, Index, Integer, LargeBinary, Text
from sqlalchemy.orm import Mapped, mapped_column

from securechat.db.session import Base
from securechat.db.time import utcnow


class DirectMessage(Base):
    """Encrypted message exchanged between two users.

    The sender and the recipient read the same row; only the recipient's identity
    secret key can open it. Lifecycle flags are plaintext metadata.
    """

    __tablename__ = "direct_message"
    __table_args__ = (
        Index("ix_direct_message_pair", "sender_user_id", "recipient_user_id"),
        Index("ix_direct_message_scheduled", "is_scheduled", "scheduled_for"),
        Index("ix_direct_message_self_destruct", "self_destruct_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    sender_user_id: Mapped[bytes] = mapped_column(
        LargeBinary(32), ForeignKey("user_account.user_id"), nullable=False
    )
    recipient_user_id: Mapped[bytes] = mapped_column(
        LargeBinary(32), ForeignKey("user_account.user_id"), nullable=False
    )

    # Envelope: all three are needed to decrypt.
    ciphertext: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    nonce: Mapped[bytes] = mapped_column(LargeBinary(12), nullable=False)
    ephemeral_public_key: Mapped[bytes] = mapped_column(LargeBinary(65), nullable=False)
    # One-time prekey consumed when this conversation was opened, if any.
    prekey_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    message_type: Mapped[str] = mapped_column(Text, nullable=False, default="text")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    delivered: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    edited: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    edited_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # First pre-edit envelope, written once.
    original_ciphertext: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True)
    original_nonce: Mapped[bytes | None] = mapped_column(LargeBinary(12), nullable=True)
    original_ephemeral_public_key: Mapped[bytes | None] = mapped_column(
        LargeBinary(65), nullable=True
    )

    deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    pinned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    pinned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    self_destruct_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    scheduled_for: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_scheduled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
