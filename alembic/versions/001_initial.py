"""Initial schema.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

import sqlalchemy as sa
from alembic import op

revision = "001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # --- users ---
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(320), nullable=False, unique=True),
        sa.Column("emailVerified", sa.DateTime(timezone=True), nullable=True),
        sa.Column("avatar", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_users_email", "users", ["email"])

    # --- accounts ---
    op.create_table(
        "accounts",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("userId", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("provider", sa.String(64), nullable=False),
        sa.Column("providerAccountId", sa.String(255), nullable=False),
        sa.Column("access_token", sa.LargeBinary, nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("id_token", sa.LargeBinary, nullable=True),
    )
    op.create_index("ix_accounts_userId", "accounts", ["userId"])
    op.create_unique_constraint("uq_provider_account", "accounts", ["provider", "providerAccountId"])

    # --- sessions ---
    op.create_table(
        "sessions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("userId", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("sessionToken", sa.String(255), nullable=False, unique=True),
        sa.Column("expires", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_sessions_userId", "sessions", ["userId"])
    op.create_index("ix_sessions_expires", "sessions", ["expires"])

    # --- chat_history ---
    op.create_table(
        "chat_history",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("userId", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("userMessage", sa.Text, nullable=False),
        sa.Column("aiResponse", sa.Text, nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_chat_history_userId", "chat_history", ["userId"])
    op.create_index("ix_chat_history_timestamp", "chat_history", ["timestamp"])


def downgrade() -> None:
    op.drop_table("chat_history")
    op.drop_table("sessions")
    op.drop_table("accounts")
    op.drop_table("users")
