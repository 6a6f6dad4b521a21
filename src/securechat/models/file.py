# src/securechat/models/file.py
"""Model for end-to-end encrypted file transfers."""

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, Index, Integer, LargeBinary, Text
from sqlalchemy.orm import Mapped, mapped_column

from securechat.db.session import Base
from securechat.db.time import utcnow


class EncryptedFile(Base):
    """File body encrypted under a per-file AES key, plus that key wrapped for the recipient."""

    __tablename__ = "encrypted_file"
    __table_args__ = (Index("ix_encrypted_file_pair", "recipient_user_id", "sender_user_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sender_user_id: Mapped[bytes] = mapped_column(
        LargeBinary(32), ForeignKey("user_account.user_id"), nullable=False
    )
    recipient_user_id: Mapped[bytes] = mapped_column(
        LargeBinary(32), ForeignKey("user_account.user_id"), nullable=False
    )
    filename: Mapped[str] = mapped_column(Text, nullable=False)
    mime_type: Mapped[str] = mapped_column(Text, nullable=False)
    size: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    encrypted_file: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    file_iv: Mapped[bytes] = mapped_column(LargeBinary(12), nullable=False)
    encrypted_file_key: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    ephemeral_public_key: Mapped[bytes] = mapped_column(LargeBinary(65), nullable=False)
    file_key_nonce: Mapped[bytes] = mapped_column(LargeBinary(12), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    downloaded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
