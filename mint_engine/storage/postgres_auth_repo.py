"""Postgres-backed repository for wallet challenges and users."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mint_engine.schema.mint import AuthChallenge, User
from mint_engine.storage.auth_repo import AuthRepository, ChallengeRecord, UserRecord


class PostgresAuthRepository(AuthRepository):
  def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
    self._session_factory = session_factory

  async def create_challenge(self, nonce: str, wallet_address: str | None, expires_at: datetime) -> None:
    async with self._session_factory() as session:
      session.add(AuthChallenge(nonce=nonce, wallet_address=wallet_address, expires_at=expires_at, used=False))
      await session.commit()

  async def get_challenge(self, nonce: str) -> ChallengeRecord | None:
    async with self._session_factory() as session:
      row = await session.scalar(select(AuthChallenge).where(AuthChallenge.nonce == nonce))
      if row is None:
        return None
      return ChallengeRecord(nonce=row.nonce, wallet_address=row.wallet_address, expires_at=row.expires_at, used=row.used)

  async def consume_challenge(self, nonce: str) -> bool:
    stmt = update(AuthChallenge).where(AuthChallenge.nonce == nonce, AuthChallenge.used.is_(False)).values(used=True).returning(AuthChallenge.id)
    async with self._session_factory() as session:
      consumed = (await session.execute(stmt)).scalar_one_or_none()
      await session.commit()
      return consumed is not None

  async def upsert_user(self, wallet_address: str, now: datetime) -> UserRecord:
    stmt = (
      insert(User)
      .values(id=str(uuid.uuid4()), wallet_address=wallet_address, login_count=1, last_login_at=now, created_at=now)
      .on_conflict_do_update(index_elements=[User.wallet_address], set_={"login_count": User.login_count + 1, "last_login_at": now})
      .returning(User)
    )
    async with self._session_factory() as session:
      row = (await session.scalars(stmt.execution_options(synchronize_session=False))).one()
      await session.commit()
      return UserRecord(id=row.id, wallet_address=row.wallet_address, login_count=row.login_count, last_login_at=row.last_login_at)

  async def delete_stale_challenges(self, now: datetime, used_before: datetime) -> int:
    stmt = delete(AuthChallenge).where(or_(AuthChallenge.expires_at < now, and_(AuthChallenge.used.is_(True), AuthChallenge.created_at < used_before)))
    async with self._session_factory() as session:
      result = await session.execute(stmt)
      await session.commit()
      return int(result.rowcount or 0)
