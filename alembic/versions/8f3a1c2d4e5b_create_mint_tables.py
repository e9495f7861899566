"""Create mint tables.

Revision ID: 8f3a1c2d4e5b
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "8f3a1c2d4e5b"
down_revision = None
branch_labels = None
depends_on = None

_ACTIVE_STATUS_SQL = "status IN ('PENDING', 'GENERATING', 'AWAITING_PAYMENT', 'PAYMENT_RECEIVED', 'INSCRIBING')"


def upgrade() -> None:
  """Upgrade schema."""
  op.create_table(
    "users",
    sa.Column("id", sa.String(), nullable=False),
    sa.Column("wallet_address", sa.String(), nullable=False),
    sa.Column("login_count", sa.Integer(), server_default=sa.text("0"), nullable=False),
    sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.PrimaryKeyConstraint("id"),
    sa.UniqueConstraint("wallet_address"),
  )

  op.create_table(
    "auth_challenges",
    sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
    sa.Column("nonce", sa.String(), nullable=False),
    sa.Column("wallet_address", sa.String(), nullable=True),
    sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("used", sa.Boolean(), server_default=sa.text("false"), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.PrimaryKeyConstraint("id"),
    sa.UniqueConstraint("nonce"),
  )
  op.create_index(op.f("ix_auth_challenges_expires_at"), "auth_challenges", ["expires_at"], unique=False)

  op.create_table(
    "token_counters",
    sa.Column("id", sa.String(), nullable=False),
    sa.Column("last_issued", sa.Integer(), server_default=sa.text("0"), nullable=False),
    sa.Column("max_supply", sa.Integer(), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.CheckConstraint("last_issued >= 0 AND last_issued <= max_supply", name="ck_token_counters_bounds"),
    sa.PrimaryKeyConstraint("id"),
  )

  op.create_table(
    "artifacts",
    sa.Column("id", sa.String(), nullable=False),
    sa.Column("token_id", sa.Integer(), nullable=False),
    sa.Column("rarity_tier", sa.String(), nullable=False),
    sa.Column("rarity_role", sa.String(), nullable=False),
    sa.Column("mask_type", sa.String(), nullable=False),
    sa.Column("material_type", sa.String(), nullable=False),
    sa.Column("encryption_type", sa.String(), nullable=False),
    sa.Column("glitch_level", sa.String(), nullable=False),
    sa.Column("background_style", sa.String(), nullable=False),
    sa.Column("accent_color", sa.String(), nullable=False),
    sa.Column("trait_metadata", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column("generation_prompt", sa.Text(), nullable=True),
    sa.Column("generation_model", sa.String(), nullable=True),
    sa.Column("content_reference", sa.String(), nullable=True),
    sa.Column("inscription_id", sa.String(), nullable=True),
    sa.Column("inscription_tx", sa.String(), nullable=True),
    sa.Column("inscribed_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("status", sa.String(), nullable=False),
    sa.Column("owner_address", sa.String(), nullable=False),
    sa.Column("user_id", sa.String(), nullable=True),
    sa.Column("mint_price", sa.Float(), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.PrimaryKeyConstraint("id"),
    sa.UniqueConstraint("token_id"),
    sa.UniqueConstraint("inscription_id"),
  )
  op.create_index(op.f("ix_artifacts_rarity_tier"), "artifacts", ["rarity_tier"], unique=False)
  op.create_index(op.f("ix_artifacts_status"), "artifacts", ["status"], unique=False)
  op.create_index(op.f("ix_artifacts_owner_address"), "artifacts", ["owner_address"], unique=False)
  op.create_index(op.f("ix_artifacts_user_id"), "artifacts", ["user_id"], unique=False)

  op.create_table(
    "mint_sessions",
    sa.Column("id", sa.String(), nullable=False),
    sa.Column("session_id", sa.String(), nullable=False),
    sa.Column("user_id", sa.String(), nullable=False),
    sa.Column("wallet_address", sa.String(), nullable=False),
    sa.Column("status", sa.String(), nullable=False),
    sa.Column("progress", sa.Integer(), server_default=sa.text("0"), nullable=False),
    sa.Column("status_message", sa.Text(), nullable=True),
    sa.Column("assigned_token_id", sa.Integer(), nullable=False),
    sa.Column("payment_address", sa.String(), nullable=True),
    sa.Column("payment_amount", sa.Float(), nullable=False),
    sa.Column("payment_tx_hash", sa.String(), nullable=True),
    sa.Column("payment_confirmed_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("artifact_id", sa.String(), nullable=True),
    sa.Column("error_code", sa.String(), nullable=True),
    sa.Column("error_message", sa.Text(), nullable=True),
    sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.CheckConstraint("progress >= 0 AND progress <= 100", name="ck_mint_sessions_progress"),
    sa.ForeignKeyConstraint(["artifact_id"], ["artifacts.id"]),
    sa.PrimaryKeyConstraint("id"),
    sa.UniqueConstraint("session_id"),
    sa.UniqueConstraint("assigned_token_id"),
    sa.UniqueConstraint("artifact_id"),
  )
  op.create_index(op.f("ix_mint_sessions_user_id"), "mint_sessions", ["user_id"], unique=False)
  op.create_index(op.f("ix_mint_sessions_expires_at"), "mint_sessions", ["expires_at"], unique=False)
  op.create_index("ix_mint_sessions_status_updated", "mint_sessions", ["status", "updated_at"], unique=False)
  op.create_index("ux_mint_sessions_active_user", "mint_sessions", ["user_id"], unique=True, postgresql_where=sa.text(_ACTIVE_STATUS_SQL))

  op.create_table(
    "mint_logs",
    sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
    sa.Column("session_pk", sa.String(), nullable=False),
    sa.Column("level", sa.String(), nullable=False),
    sa.Column("message", sa.Text(), nullable=False),
    sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.ForeignKeyConstraint(["session_pk"], ["mint_sessions.id"], ondelete="CASCADE"),
    sa.PrimaryKeyConstraint("id"),
  )
  op.create_index(op.f("ix_mint_logs_session_pk"), "mint_logs", ["session_pk"], unique=False)


def downgrade() -> None:
  """Downgrade schema."""
  op.drop_index(op.f("ix_mint_logs_session_pk"), table_name="mint_logs")
  op.drop_table("mint_logs")
  op.drop_index("ux_mint_sessions_active_user", table_name="mint_sessions")
  op.drop_index("ix_mint_sessions_status_updated", table_name="mint_sessions")
  op.drop_index(op.f("ix_mint_sessions_expires_at"), table_name="mint_sessions")
  op.drop_index(op.f("ix_mint_sessions_user_id"), table_name="mint_sessions")
  op.drop_table("mint_sessions")
  op.drop_index(op.f("ix_artifacts_user_id"), table_name="artifacts")
  op.drop_index(op.f("ix_artifacts_owner_address"), table_name="artifacts")
  op.drop_index(op.f("ix_artifacts_status"), table_name="artifacts")
  op.drop_index(op.f("ix_artifacts_rarity_tier"), table_name="artifacts")
  op.drop_table("artifacts")
  op.drop_table("token_counters")
  op.drop_index(op.f("ix_auth_challenges_expires_at"), table_name="auth_challenges")
  op.drop_table("auth_challenges")
  op.drop_table("users")
