"""initial schema

Revision ID: 5c1e0a9d7b21
Revises:
Create Date: 2026-10-19 09:12:40.318822

"""
from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "5c1e0a9d7b21"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "user_account",
        sa.Column("user_id", sa.LargeBinary(length=32), nullable=False),
        sa.Column("identity_public_key", sa.LargeBinary(length=65), nullable=False),
        sa.Column("display_name", sa.Text(), nullable=True),
        sa.Column("signed_prekey_id", sa.BigInteger(), nullable=True),
        sa.Column("signed_prekey_public", sa.LargeBinary(length=65), nullable=True),
        sa.Column("signed_prekey_signature", sa.LargeBinary(), nullable=True),
        sa.Column("read_receipts_enabled", sa.Boolean(), nullable=False),
        sa.Column("typing_indicators_enabled", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("user_id"),
        sa.UniqueConstraint("identity_public_key"),
    )
    op.create_table(
        "prekey",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.LargeBinary(length=32), nullable=False),
        sa.Column("key_id", sa.BigInteger(), nullable=False),
        sa.Column("public_key", sa.LargeBinary(length=65), nullable=False),
        sa.Column("used", sa.Boolean(), nullable=False),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["user_account.user_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "key_id", name="uq_prekey_user_key_id"),
    )
    op.create_index(op.f("ix_prekey_user_id"), "prekey", ["user_id"], unique=False)

    op.create_table(
        "direct_message",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("sender_user_id", sa.LargeBinary(length=32), nullable=False),
        sa.Column("recipient_user_id", sa.LargeBinary(length=32), nullable=False),
        sa.Column("ciphertext", sa.LargeBinary(), nullable=False),
        sa.Column("nonce", sa.LargeBinary(length=12), nullable=False),
        sa.Column("ephemeral_public_key", sa.LargeBinary(length=65), nullable=False),
        sa.Column("prekey_id", sa.BigInteger(), nullable=True),
        sa.Column("message_type", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivered", sa.Boolean(), nullable=False),
        sa.Column("read", sa.Boolean(), nullable=False),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("edited", sa.Boolean(), nullable=False),
        sa.Column("edited_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("original_ciphertext", sa.LargeBinary(), nullable=True),
        sa.Column("original_nonce", sa.LargeBinary(length=12), nullable=True),
        sa.Column("original_ephemeral_public_key", sa.LargeBinary(length=65), nullable=True),
        sa.Column("deleted", sa.Boolean(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("pinned", sa.Boolean(), nullable=False),
        sa.Column("pinned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("self_destruct_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("scheduled_for", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_scheduled", sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(["recipient_user_id"], ["user_account.user_id"]),
        sa.ForeignKeyConstraint(["sender_user_id"], ["user_account.user_id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_direct_message_pair", "direct_message", ["sender_user_id", "recipient_user_id"])
    op.create_index("ix_direct_message_scheduled", "direct_message", ["is_scheduled", "scheduled_for"])
    op.create_index("ix_direct_message_self_destruct", "direct_message", ["self_destruct_at"])

    op.create_table(
        "chat_group",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("creator_user_id", sa.LargeBinary(length=32), nullable=False),
        sa.Column("group_key_version", sa.Integer(), nullable=False),
        sa.Column("last_key_rotation", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["creator_user_id"], ["user_account.user_id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_chat_group_creator_user_id"), "chat_group", ["creator_user_id"], unique=False)

    op.create_table(
        "group_member",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("group_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.LargeBinary(length=32), nullable=False),
        sa.Column("role", sa.Text(), nullable=False),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("key_state", sa.Text(), nullable=False),
        sa.Column("encrypted_group_key", sa.LargeBinary(), nullable=True),
        sa.Column("ephemeral_public_key", sa.LargeBinary(length=65), nullable=True),
        sa.Column("key_nonce", sa.LargeBinary(length=12), nullable=True),
        sa.Column("key_version", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["group_id"], ["chat_group.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["user_account.user_id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_group_member_user", "group_member", ["user_id"])

    op.create_table(
        "group_message",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("group_id", sa.Integer(), nullable=False),
        sa.Column("sender_user_id", sa.LargeBinary(length=32), nullable=False),
        sa.Column("ciphertext", sa.LargeBinary(), nullable=False),
        sa.Column("nonce", sa.LargeBinary(length=12), nullable=False),
        sa.Column("key_version", sa.Integer(), nullable=False),
        sa.Column("message_type", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("edited", sa.Boolean(), nullable=False),
        sa.Column("edited_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted", sa.Boolean(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["group_id"], ["chat_group.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["sender_user_id"], ["user_account.user_id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_group_message_group", "group_message", ["group_id", "created_at"])

    op.create_table(
        "group_message_read",
        sa.Column("message_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.LargeBinary(length=32), nullable=False),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["message_id"], ["group_message.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["user_account.user_id"]),
        sa.PrimaryKeyConstraint("message_id", "user_id"),
    )

    op.create_table(
        "encrypted_file",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("sender_user_id", sa.LargeBinary(length=32), nullable=False),
        sa.Column("recipient_user_id", sa.LargeBinary(length=32), nullable=False),
        sa.Column("filename", sa.Text(), nullable=False),
        sa.Column("mime_type", sa.Text(), nullable=False),
        sa.Column("size", sa.BigInteger(), nullable=False),
        sa.Column("encrypted_file", sa.LargeBinary(), nullable=False),
        sa.Column("file_iv", sa.LargeBinary(length=12), nullable=False),
        sa.Column("encrypted_file_key", sa.LargeBinary(), nullable=False),
        sa.Column("ephemeral_public_key", sa.LargeBinary(length=65), nullable=False),
        sa.Column("file_key_nonce", sa.LargeBinary(length=12), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("downloaded", sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(["recipient_user_id"], ["user_account.user_id"]),
        sa.ForeignKeyConstraint(["sender_user_id"], ["user_account.user_id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_encrypted_file_pair", "encrypted_file", ["recipient_user_id", "sender_user_id"])


def downgrade() -> None:
    op.drop_index("ix_encrypted_file_pair", table_name="encrypted_file")
    op.drop_table("encrypted_file")
    op.drop_table("group_message_read")
    op.drop_index("ix_group_message_group", table_name="group_message")
    op.drop_table("group_message")
    op.drop_index("ix_group_member_user", table_name="group_member")
    op.drop_table("group_member")
    op.drop_index(op.f("ix_chat_group_creator_user_id"), table_name="chat_group")
    op.drop_table("chat_group")
    op.drop_index("ix_direct_message_self_destruct", table_name="direct_message")
    op.drop_index("ix_direct_message_scheduled", table_name="direct_message")
    op.drop_index("ix_direct_message_pair", table_name="direct_message")
    op.drop_table("direct_message")
    op.drop_index(op.f("ix_prekey_user_id"), table_name="prekey")
    op.drop_table("prekey")
    op.drop_table("user_account")
