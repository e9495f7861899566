from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, Float, ForeignKey, Index, Integer, String, Text, func, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from mint_engine.core.database import Base

# Non-terminal statuses; a user may own at most one session in any of them.
_ACTIVE_STATUS_SQL = "status IN ('PENDING', 'GENERATING', 'AWAITING_PAYMENT', 'PAYMENT_RECEIVED', 'INSCRIBING')"


class User(Base):
  __tablename__ = "users"

  id: Mapped[str] = mapped_column(String, primary_key=True)
  wallet_address: Mapped[str] = mapped_column(String, nullable=False, unique=True)
  login_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AuthChallenge(Base):
  __tablename__ = "auth_challenges"

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  nonce: Mapped[str] = mapped_column(String, nullable=False, unique=True)
  wallet_address: Mapped[str | None] = mapped_column(String, nullable=True)
  expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
  used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class TokenCounter(Base):
  __tablename__ = "token_counters"
  __table_args__ = (CheckConstraint("last_issued >= 0 AND last_issued <= max_supply", name="ck_token_counters_bounds"),)

  id: Mapped[str] = mapped_column(String, primary_key=True)
  last_issued: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  max_supply: Mapped[int] = mapped_column(Integer, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class Artifact(Base):
  __tablename__ = "artifacts"

  id: Mapped[str] = mapped_column(String, primary_key=True)
  token_id: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)
  rarity_tier: Mapped[str] = mapped_column(String, nullable=False, index=True)
  rarity_role: Mapped[str] = mapped_column(String, nullable=False)
  mask_type: Mapped[str] = mapped_column(String, nullable=False)
  material_type: Mapped[str] = mapped_column(String, nullable=False)
  encryption_type: Mapped[str] = mapped_column(String, nullable=False)
  glitch_level: Mapped[str] = mapped_column(String, nullable=False)
  background_style: Mapped[str] = mapped_column(String, nullable=False)
  accent_color: Mapped[str] = mapped_column(String, nullable=False)
  trait_metadata: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
  generation_prompt: Mapped[str | None] = mapped_column(Text, nullable=True)
  generation_model: Mapped[str | None] = mapped_column(String, nullable=True)
  content_reference: Mapped[str | None] = mapped_column(String, nullable=True)
  inscription_id: Mapped[str | None] = mapped_column(String, nullable=True, unique=True)
  inscription_tx: Mapped[str | None] = mapped_column(String, nullable=True)
  inscribed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  status: Mapped[str] = mapped_column(String, nullable=False, index=True)
  owner_address: Mapped[str] = mapped_column(String, nullable=False, index=True)
  user_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
  mint_price: Mapped[float] = mapped_column(Float, nullable=False)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class MintSession(Base):
  __tablename__ = "mint_sessions"
  __table_args__ = (
    Index("ux_mint_sessions_active_user", "user_id", unique=True, postgresql_where=text(_ACTIVE_STATUS_SQL)),
    Index("ix_mint_sessions_status_updated", "status", "updated_at"),
    CheckConstraint("progress >= 0 AND progress <= 100", name="ck_mint_sessions_progress"),
  )

  id: Mapped[str] = mapped_column(String, primary_key=True)
  session_id: Mapped[str] = mapped_column(String, nullable=False, unique=True)
  user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
  wallet_address: Mapped[str] = mapped_column(String, nullable=False)
  status: Mapped[str] = mapped_column(String, nullable=False)
  progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  status_message: Mapped[str | None] = mapped_column(Text, nullable=True)
  assigned_token_id: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)
  payment_address: Mapped[str | None] = mapped_column(String, nullable=True)
  payment_amount: Mapped[float] = mapped_column(Float, nullable=False)
  payment_tx_hash: Mapped[str | None] = mapped_column(String, nullable=True)
  payment_confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  artifact_id: Mapped[str | None] = mapped_column(ForeignKey("artifacts.id"), nullable=True, unique=True)
  error_code: Mapped[str | None] = mapped_column(String, nullable=True)
  error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
  expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
  completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class MintLog(Base):
  __tablename__ = "mint_logs"

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  session_pk: Mapped[str] = mapped_column(ForeignKey("mint_sessions.id", ondelete="CASCADE"), nullable=False, index=True)
  level: Mapped[str] = mapped_column(String, nullable=False)
  message: Mapped[str] = mapped_column(Text, nullable=False)
  metadata_json: Mapped[dict | None] = mapped_column("metadata", JSONB, nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
