"""Storage interfaces for wallet challenges and users."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol


@dataclass(frozen=True)
class ChallengeRecord:
  nonce: str
  wallet_address: str | None
  expires_at: datetime
  used: bool


@dataclass(frozen=True)
class UserRecord:
  id: str
  wallet_address: str
  login_count: int
  last_login_at: datetime | None


class AuthRepository(Protocol):
  """Repository contract for challenge and user persistence."""

  async def create_challenge(self, nonce: str, wallet_address: str | None, expires_at: datetime) -> None:
    """Store a fresh, unused challenge."""

  async def get_challenge(self, nonce: str) -> ChallengeRecord | None:
    """Fetch a challenge by nonce."""

  async def consume_challenge(self, nonce: str) -> bool:
    """Mark a challenge used; return False when it was already used."""

  async def upsert_user(self, wallet_address: str, now: datetime) -> UserRecord:
    """Create the user on first login or bump its login stats."""

  async def delete_stale_challenges(self, now: datetime, used_before: datetime) -> int:
    """Delete expired challenges and used ones older than `used_before`."""
