# src/securechat/models/user.py
"""SQLAlchemy models for account identities and their published keys."""

from __future__ import annotations

import base64
from datetime import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, Integer, LargeBinary, Text
from sqlalchemy import UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from securechat.db.session import Base
from securechat.db.time import utcnow


class User(Base):
    """Account identity keyed by the BLAKE3 digest of its identity public key.

    Only public key material is stored; identity secret keys never reach the server.
    """

    __tablename__ = "user_account"

    user_id: Mapped[bytes] = mapped_column(LargeBinary(32), primary_key=True)
    identity_public_key: Mapped[bytes] = mapped_column(LargeBinary(65), unique=True, nullable=False)
    display_name: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Medium-term signed prekey, advertised alongside the one-time prekeys.
    signed_prekey_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    signed_prekey_public: Mapped[bytes | None] = mapped_column(LargeBinary(65), nullable=True)
    signed_prekey_signature: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True)

    read_receipts_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    typing_indicators_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    prekeys: Mapped[list[PreKey]] = relationship(
        "PreKey",
        back_populates="user",
        cascade="all, delete-orphan",
    )

    @property
    def user_id_b64(self) -> str:
        """Return the user identifier encoded in URL-safe base64."""
        return base64.urlsafe_b64encode(self.user_id).decode().rstrip("=")


class PreKey(Base):
    """Single-use public key handed out to at most one correspondent."""

    __tablename__ = "prekey"
    __table_args__ = (UniqueConstraint("user_id", "key_id", name="uq_prekey_user_key_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[bytes] = mapped_column(
        LargeBinary(32),
        ForeignKey("user_account.user_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    key_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    public_key: Mapped[bytes] = mapped_column(LargeBinary(65), nullable=False)
    used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    user: Mapped[User] = relationship("User", back_populates="prekeys")
