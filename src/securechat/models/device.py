# src/securechat/models/device.py
"""Model for per-device sealed copies of a user's key store."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, LargeBinary, Text
from sqlalchemy import UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from securechat.db.session import Base
from securechat.db.time import utcnow

DEVICE_TYPES = ("desktop", "mobile", "tablet", "browser")


class Device(Base):
    """A device holding a passphrase-sealed export of its owner's secrets.

    The server cannot open the export; it only keeps the latest copy per device so
    a user can recover or sync keys. The client's device key is stored as a BLAKE3
    digest and used purely for lookup.
    """

    __tablename__ = "device"
    __table_args__ = (
        UniqueConstraint("user_id", "device_key_digest", name="uq_device_user_key"),
        Index("ix_device_user_active", "user_id", "is_active"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[bytes] = mapped_column(
        LargeBinary(32), ForeignKey("user_account.user_id", ondelete="CASCADE"), nullable=False
    )
    device_name: Mapped[str] = mapped_column(Text, nullable=False, default="Unknown Device")
    device_type: Mapped[str] = mapped_column(Text, nullable=False, default="browser")
    user_agent: Mapped[str] = mapped_column(Text, nullable=False, default="")
    device_key_digest: Mapped[bytes] = mapped_column(LargeBinary(32), nullable=False)

    # Sealed key store, as produced by KeyStore.export_state().
    export_format: Mapped[int] = mapped_column(Integer, nullable=False)
    kdf: Mapped[str] = mapped_column(Text, nullable=False)
    kdf_iterations: Mapped[int] = mapped_column(Integer, nullable=False)
    kdf_salt: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    nonce: Mapped[bytes] = mapped_column(LargeBinary(12), nullable=False)
    ciphertext: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)

    last_sync_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
