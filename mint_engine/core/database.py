from __future__ import annotations

import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from mint_engine.config import DatabaseSettings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
  pass


def database_url(raw_dsn: str | None) -> str | None:
  """Normalize a Postgres DSN to the asyncpg driver."""
  if raw_dsn and raw_dsn.startswith("postgresql://"):
    return raw_dsn.replace("postgresql://", "postgresql+asyncpg://", 1)
  if raw_dsn and raw_dsn.startswith("postgres://"):
    return raw_dsn.replace("postgres://", "postgresql+asyncpg://", 1)
  return raw_dsn


class Database:
  """Owns the async engine and session factory for one application instance."""

  def __init__(self, settings: DatabaseSettings) -> None:
    self._settings = settings
    self._engine: AsyncEngine | None = None
    self._session_factory: async_sessionmaker[AsyncSession] | None = None

  def connect(self) -> None:
    """Create the engine and session factory; raise when no DSN is configured."""
    if self._engine is not None:
      return

    url = database_url(self._settings.pg_dsn)
    if not url:
      raise RuntimeError("Database connection is not configured (MINT_PG_DSN is missing).")

    connect_args = {"timeout": self._settings.pg_connect_timeout}
    self._engine = create_async_engine(url, echo=self._settings.debug, pool_pre_ping=True, connect_args=connect_args)
    self._session_factory = async_sessionmaker(bind=self._engine, expire_on_commit=False, class_=AsyncSession)

  @property
  def engine(self) -> AsyncEngine:
    if self._engine is None:
      raise RuntimeError("Database is not connected.")
    return self._engine

  @property
  def session_factory(self) -> async_sessionmaker[AsyncSession]:
    if self._session_factory is None:
      raise RuntimeError("Database is not connected.")
    return self._session_factory

  async def ping(self) -> bool:
    """Return True when a trivial query succeeds."""
    try:
      async with self.engine.connect() as connection:
        await connection.execute(text("SELECT 1"))
    except Exception:  # noqa: BLE001
      logger.warning("Database readiness probe failed.", exc_info=True)
      return False
    return True

  async def dispose(self) -> None:
    if self._engine is None:
      return
    await self._engine.dispose()
    self._engine = None
    self._session_factory = None
