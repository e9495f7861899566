"""Postgres-backed repository for mint sessions using SQLAlchemy."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Any

from sqlalchemy import case, func, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mint_engine.jobs.models import ACTIVE_STATUSES, TERMINAL_STATUSES, ArtifactRecord, LogLevel, MintLogRecord, SessionRecord, Traits
from mint_engine.schema.mint import Artifact, MintLog, MintSession
from mint_engine.storage.mint_repo import ActiveSessionExistsError, GalleryPage, GallerySort, MintRepository, validate_transition

_ACTIVE_INDEX_NAME = "ux_mint_sessions_active_user"
# Gallery rarity ordering from rarest to most common.
_RARITY_RANK = case({"LEGENDARY": 0, "EPIC": 1, "RARE": 2, "COMMON": 3}, value=Artifact.rarity_tier, else_=4)


class PostgresMintRepository(MintRepository):
  """Persist sessions, artifacts and audit logs to Postgres using SQLAlchemy."""

  def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
    self._session_factory = session_factory

  async def create_session(self, record: SessionRecord) -> None:
    async with self._session_factory() as session:
      session.add(
        MintSession(
          id=record.id,
          session_id=record.session_id,
          user_id=record.user_id,
          wallet_address=record.wallet_address,
          status=record.status,
          progress=record.progress,
          status_message=record.status_message,
          assigned_token_id=record.assigned_token_id,
          payment_amount=record.payment_amount,
          expires_at=record.expires_at,
          created_at=record.created_at,
          updated_at=record.updated_at,
        )
      )
      try:
        await session.commit()
      except IntegrityError as exc:
        await session.rollback()
        # The partial unique index is the last line of defence for one in-flight session per user.
        if _ACTIVE_INDEX_NAME in str(exc.orig):
          raise ActiveSessionExistsError(record.user_id) from exc
        raise

  async def get_session(self, session_id: str) -> SessionRecord | None:
    async with self._session_factory() as session:
      row = await session.scalar(select(MintSession).where(MintSession.session_id == session_id))
      return None if row is None else self._session_to_record(row)

  async def find_active_sessions(self, user_id: str) -> list[SessionRecord]:
    async with self._session_factory() as session:
      stmt = select(MintSession).where(MintSession.user_id == user_id, MintSession.status.in_(ACTIVE_STATUSES)).order_by(MintSession.created_at.desc())
      rows = (await session.scalars(stmt)).all()
      return [self._session_to_record(row) for row in rows]

  async def has_active_session(self, user_id: str) -> bool:
    async with self._session_factory() as session:
      stmt = select(func.count()).select_from(MintSession).where(MintSession.user_id == user_id, MintSession.status.in_(ACTIVE_STATUSES))
      return int(await session.scalar(stmt) or 0) > 0

  async def transition(self, session_id: str, *, expected: Iterable[str], **fields: Any) -> SessionRecord | None:
    expected_statuses = validate_transition(expected, fields)
    values: dict[str, Any] = dict(fields)
    # Progress never moves backwards, even when a late writer reports a smaller value.
    if "progress" in values:
      values["progress"] = func.greatest(MintSession.progress, values["progress"])
    values["updated_at"] = func.now()

    stmt = update(MintSession).where(MintSession.session_id == session_id, MintSession.status.in_(expected_statuses)).values(**values).returning(MintSession)
    async with self._session_factory() as session:
      row = (await session.scalars(stmt.execution_options(synchronize_session=False))).one_or_none()
      await session.commit()
      return None if row is None else self._session_to_record(row)

  async def attach_artifact(self, session_id: str, record: ArtifactRecord, *, payment_address: str, status_message: str) -> tuple[SessionRecord, ArtifactRecord] | None:
    traits = record.traits
    artifact_stmt = (
      insert(Artifact)
      .values(
        id=record.id,
        token_id=record.token_id,
        rarity_tier=traits.rarity_tier,
        rarity_role=traits.rarity_role,
        mask_type=traits.mask_type,
        material_type=traits.material_type,
        encryption_type=traits.encryption_type,
        glitch_level=traits.glitch_level,
        background_style=traits.background_style,
        accent_color=traits.accent_color,
        trait_metadata=record.trait_metadata,
        generation_prompt=record.generation_prompt,
        generation_model=record.generation_model,
        content_reference=record.content_reference,
        status=record.status,
        owner_address=record.owner_address,
        user_id=record.user_id,
        mint_price=record.mint_price,
        created_at=record.created_at,
        updated_at=record.updated_at,
      )
      .on_conflict_do_nothing(index_elements=[Artifact.token_id])
    )
    async with self._session_factory() as session:
      await session.execute(artifact_stmt)
      # Redelivered generation steps land here; reuse whatever the first delivery stored.
      artifact = await session.scalar(select(Artifact).where(Artifact.token_id == record.token_id))
      if artifact is None:
        await session.rollback()
        raise RuntimeError(f"artifact for token {record.token_id} vanished after insert")

      session_stmt = (
        update(MintSession)
        .where(MintSession.session_id == session_id, MintSession.status == "GENERATING")
        .values(
          status="AWAITING_PAYMENT",
          progress=func.greatest(MintSession.progress, 50),
          status_message=status_message,
          artifact_id=artifact.id,
          payment_address=payment_address,
          updated_at=func.now(),
        )
        .returning(MintSession)
      )
      row = (await session.scalars(session_stmt.execution_options(synchronize_session=False))).one_or_none()
      if row is None:
        # The session was cancelled or expired mid-generation; drop the artifact insert with it.
        await session.rollback()
        return None
      attached = self._session_to_record(row), self._artifact_to_record(artifact)
      await session.commit()
      return attached

  async def get_artifact(self, artifact_id: str) -> ArtifactRecord | None:
    async with self._session_factory() as session:
      row = await session.get(Artifact, artifact_id)
      return None if row is None else self._artifact_to_record(row)

  async def get_artifact_by_token(self, token_id: int) -> ArtifactRecord | None:
    async with self._session_factory() as session:
      row = await session.scalar(select(Artifact).where(Artifact.token_id == token_id))
      return None if row is None else self._artifact_to_record(row)

  async def finalize_mint(self, session_id: str, *, artifact_id: str, inscription_id: str, inscription_tx: str, inscribed_at: datetime, status_message: str) -> SessionRecord | None:
    async with self._session_factory() as session:
      session_stmt = (
        update(MintSession)
        .where(MintSession.session_id == session_id, MintSession.status == "INSCRIBING")
        .values(status="CONFIRMED", progress=100, status_message=status_message, completed_at=inscribed_at, updated_at=func.now())
        .returning(MintSession)
      )
      row = (await session.scalars(session_stmt.execution_options(synchronize_session=False))).one_or_none()
      if row is None:
        # Rolling back keeps the artifact untouched when the session already left INSCRIBING.
        await session.rollback()
        return None

      # The inscription reference is written once; a second finalize leaves the first one intact.
      artifact_stmt = (
        update(Artifact)
        .where(Artifact.id == artifact_id, Artifact.inscription_id.is_(None))
        .values(inscription_id=inscription_id, inscription_tx=inscription_tx, inscribed_at=inscribed_at, status="CONFIRMED", updated_at=func.now())
      )
      await session.execute(artifact_stmt.execution_options(synchronize_session=False))
      await session.commit()
      return self._session_to_record(row)

  async def append_log(self, session_pk: str, level: LogLevel, message: str, metadata: dict[str, Any] | None = None) -> None:
    async with self._session_factory() as session:
      session.add(MintLog(session_pk=session_pk, level=level, message=message, metadata_json=metadata))
      await session.commit()

  async def list_logs(self, session_pk: str, limit: int = 100) -> list[MintLogRecord]:
    async with self._session_factory() as session:
      stmt = select(MintLog).where(MintLog.session_pk == session_pk).order_by(MintLog.id.asc()).limit(limit)
      rows = (await session.scalars(stmt)).all()
      return [MintLogRecord(session_pk=row.session_pk, level=row.level, message=row.message, metadata=row.metadata_json, created_at=row.created_at) for row in rows]

  async def list_expired_sessions(self, now: datetime, limit: int = 100) -> list[SessionRecord]:
    async with self._session_factory() as session:
      stmt = select(MintSession).where(MintSession.status.in_(ACTIVE_STATUSES), MintSession.expires_at < now).order_by(MintSession.expires_at.asc()).limit(limit)
      rows = (await session.scalars(stmt)).all()
      return [self._session_to_record(row) for row in rows]

  async def list_stale_sessions(self, statuses: Iterable[str], *, updated_before: datetime, limit: int = 100) -> list[SessionRecord]:
    wanted = [status for status in statuses if status not in TERMINAL_STATUSES]
    if not wanted:
      return []
    async with self._session_factory() as session:
      stmt = select(MintSession).where(MintSession.status.in_(wanted), MintSession.updated_at < updated_before).order_by(MintSession.updated_at.asc()).limit(limit)
      rows = (await session.scalars(stmt)).all()
      return [self._session_to_record(row) for row in rows]

  async def count_confirmed_by_tier(self) -> dict[str, int]:
    async with self._session_factory() as session:
      stmt = select(Artifact.rarity_tier, func.count()).where(Artifact.status == "CONFIRMED").group_by(Artifact.rarity_tier)
      rows = (await session.execute(stmt)).all()
      return {str(tier): int(count) for tier, count in rows}

  async def list_confirmed_artifacts(self, *, page: int, limit: int, rarity: str | None = None, sort: GallerySort = "newest") -> GalleryPage:
    filters = [Artifact.status == "CONFIRMED"]
    if rarity:
      filters.append(Artifact.rarity_tier == rarity)

    order_by = {
      "newest": [Artifact.inscribed_at.desc(), Artifact.token_id.desc()],
      "oldest": [Artifact.inscribed_at.asc(), Artifact.token_id.asc()],
      "tokenId": [Artifact.token_id.asc()],
      "rarity": [_RARITY_RANK.asc(), Artifact.token_id.asc()],
    }[sort]

    async with self._session_factory() as session:
      total = int(await session.scalar(select(func.count()).select_from(Artifact).where(*filters)) or 0)
      stmt = select(Artifact).where(*filters).order_by(*order_by).offset((page - 1) * limit).limit(limit)
      rows = (await session.scalars(stmt)).all()
      return GalleryPage(items=[self._artifact_to_record(row) for row in rows], total=total)

  def _session_to_record(self, row: MintSession) -> SessionRecord:
    return SessionRecord(
      id=row.id,
      session_id=row.session_id,
      user_id=row.user_id,
      wallet_address=row.wallet_address,
      status=row.status,  # type: ignore[arg-type]
      progress=row.progress,
      assigned_token_id=row.assigned_token_id,
      payment_amount=row.payment_amount,
      expires_at=row.expires_at,
      created_at=row.created_at,
      updated_at=row.updated_at,
      status_message=row.status_message,
      payment_address=row.payment_address,
      payment_tx_hash=row.payment_tx_hash,
      payment_confirmed_at=row.payment_confirmed_at,
      artifact_id=row.artifact_id,
      error_code=row.error_code,
      error_message=row.error_message,
      completed_at=row.completed_at,
    )

  def _artifact_to_record(self, row: Artifact) -> ArtifactRecord:
    traits = Traits(
      rarity_tier=row.rarity_tier,  # type: ignore[arg-type]
      rarity_role=row.rarity_role,
      mask_type=row.mask_type,
      material_type=row.material_type,
      encryption_type=row.encryption_type,
      glitch_level=row.glitch_level,
      background_style=row.background_style,
      accent_color=row.accent_color,
    )
    return ArtifactRecord(
      id=row.id,
      token_id=row.token_id,
      traits=traits,
      status=row.status,  # type: ignore[arg-type]
      owner_address=row.owner_address,
      user_id=row.user_id,
      mint_price=row.mint_price,
      created_at=row.created_at,
      updated_at=row.updated_at,
      trait_metadata=dict(row.trait_metadata or {}),
      generation_prompt=row.generation_prompt,
      generation_model=row.generation_model,
      content_reference=row.content_reference,
      inscription_id=row.inscription_id,
      inscription_tx=row.inscription_tx,
      inscribed_at=row.inscribed_at,
    )
