"""Issue token ids from the single shared counter row."""

from __future__ import annotations

import logging
from typing import Protocol

from sqlalchemy import select, text
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mint_engine.schema.mint import TokenCounter
from mint_engine.utils.db_retry import execute_with_retry

logger = logging.getLogger(__name__)

COUNTER_ID = "main"

# Compare-and-increment in one statement; the row lock serializes concurrent allocators.
_ALLOCATE_SQL = text(
  """
  UPDATE token_counters
  SET last_issued = last_issued + 1, updated_at = now()
  WHERE id = :counter_id AND last_issued < max_supply
  RETURNING last_issued
  """
)


class CounterMissingError(RuntimeError):
  """Raised when the token counter row has not been seeded."""


class TokenAllocator(Protocol):
  """Contract for issuing token ids."""

  async def allocate(self) -> int | None:
    """Return the next token id, or None when supply is exhausted."""

  async def snapshot(self) -> tuple[int, int]:
    """Return (last_issued, max_supply)."""


class PostgresTokenAllocator(TokenAllocator):
  """Token allocator backed by the `token_counters` row."""

  def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
    self._session_factory = session_factory

  async def allocate(self) -> int | None:
    async def _attempt() -> int | None:
      async with self._session_factory() as session:
        result = await session.execute(_ALLOCATE_SQL, {"counter_id": COUNTER_ID})
        token_id = result.scalar_one_or_none()
        await session.commit()
        if token_id is not None:
          return int(token_id)

        # Zero rows means either sold out or an unseeded counter; only the latter is an error.
        exists = await session.scalar(select(TokenCounter.id).where(TokenCounter.id == COUNTER_ID))
        if exists is None:
          raise CounterMissingError(f"token counter '{COUNTER_ID}' is not initialized")
        return None

    token_id = await execute_with_retry(operation_name="token_allocate", func=_attempt)
    if token_id is None:
      logger.info("Token allocation refused: supply exhausted")
    else:
      logger.debug("Token allocated token_id=%s", token_id)
    return token_id

  async def snapshot(self) -> tuple[int, int]:
    async with self._session_factory() as session:
      row = await session.get(TokenCounter, COUNTER_ID)
      if row is None:
        raise CounterMissingError(f"token counter '{COUNTER_ID}' is not initialized")
      return row.last_issued, row.max_supply


async def ensure_counter(session_factory: async_sessionmaker[AsyncSession], max_supply: int) -> None:
  """Seed the counter row if it does not exist yet; an existing row keeps its progress."""
  async with session_factory() as session:
    stmt = insert(TokenCounter).values(id=COUNTER_ID, last_issued=0, max_supply=max_supply).on_conflict_do_nothing(index_elements=[TokenCounter.id])
    await session.execute(stmt)
    await session.commit()
    row = await session.get(TokenCounter, COUNTER_ID)

  if row is not None and row.max_supply != max_supply:
    logger.warning("Token counter max_supply=%s differs from configured MINT_MAX_SUPPLY=%s; keeping stored value.", row.max_supply, max_supply)
