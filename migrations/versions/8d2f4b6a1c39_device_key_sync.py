"""device key sync

Revision ID: 8d2f4b6a1c39
Revises: 5c1e0a9d7b21
Create Date: 2026-10-19 15:41:07.552310

"""
from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "8d2f4b6a1c39"
down_revision: Union[str, Sequence[str], None] = "5c1e0a9d7b21"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "device",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.LargeBinary(length=32), nullable=False),
        sa.Column("device_name", sa.Text(), nullable=False),
        sa.Column("device_type", sa.Text(), nullable=False),
        sa.Column("user_agent", sa.Text(), nullable=False),
        sa.Column("device_key_digest", sa.LargeBinary(length=32), nullable=False),
        sa.Column("export_format", sa.Integer(), nullable=False),
        sa.Column("kdf", sa.Text(), nullable=False),
        sa.Column("kdf_iterations", sa.Integer(), nullable=False),
        sa.Column("kdf_salt", sa.LargeBinary(), nullable=False),
        sa.Column("nonce", sa.LargeBinary(length=12), nullable=False),
        sa.Column("ciphertext", sa.LargeBinary(), nullable=False),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["user_account.user_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "device_key_digest", name="uq_device_user_key"),
    )
    op.create_index("ix_device_user_active", "device", ["user_id", "is_active"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_device_user_active", table_name="device")
    op.drop_table("device")
