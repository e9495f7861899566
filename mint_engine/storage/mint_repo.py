"""Storage interfaces for mint sessions, artifacts and their audit log."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal, Protocol

from mint_engine.jobs.models import TERMINAL_STATUSES, ArtifactRecord, LogLevel, MintLogRecord, SessionRecord

GallerySort = Literal["newest", "oldest", "tokenId", "rarity"]

# Columns a status transition is allowed to patch alongside the status itself.
SESSION_PATCH_FIELDS = frozenset(
  {
    "status",
    "progress",
    "status_message",
    "payment_address",
    "payment_tx_hash",
    "payment_confirmed_at",
    "artifact_id",
    "error_code",
    "error_message",
    "completed_at",
  }
)


@dataclass(frozen=True)
class GalleryPage:
  """A page of confirmed artifacts plus the total matching count."""

  items: list[ArtifactRecord]
  total: int


def validate_transition(expected: Iterable[str], fields: dict[str, Any]) -> tuple[str, ...]:
  """Reject patches that would rewrite a terminal session or touch immutable columns."""
  expected_statuses = tuple(expected)
  if not expected_statuses:
    raise ValueError("transition requires at least one expected status")
  terminal = TERMINAL_STATUSES.intersection(expected_statuses)
  if terminal:
    raise ValueError(f"terminal sessions are immutable: {sorted(terminal)}")
  unknown = set(fields) - SESSION_PATCH_FIELDS
  if unknown:
    raise ValueError(f"unsupported session fields: {sorted(unknown)}")
  return expected_statuses


class MintRepository(Protocol):
  """Repository contract for mint session persistence."""

  async def create_session(self, record: SessionRecord) -> None:
    """Persist a new session; raise ActiveSessionExistsError when the user already has one in flight."""

  async def get_session(self, session_id: str) -> SessionRecord | None:
    """Fetch a session by its public identifier."""

  async def find_active_sessions(self, user_id: str) -> list[SessionRecord]:
    """Return the user's non-terminal sessions."""

  async def has_active_session(self, user_id: str) -> bool:
    """Return True when the user has a non-terminal session."""

  async def transition(self, session_id: str, *, expected: Iterable[str], **fields: Any) -> SessionRecord | None:
    """Patch a session only if its status is one of `expected`; return None when the status already moved."""

  async def attach_artifact(self, session_id: str, record: ArtifactRecord, *, payment_address: str, status_message: str) -> tuple[SessionRecord, ArtifactRecord] | None:
    """Store the artifact and move the GENERATING session to AWAITING_PAYMENT in one transaction.

    Returns None and writes nothing when the session already left GENERATING. A token id that
    already has an artifact reuses it.
    """

  async def get_artifact(self, artifact_id: str) -> ArtifactRecord | None:
    """Fetch an artifact by identifier."""

  async def get_artifact_by_token(self, token_id: int) -> ArtifactRecord | None:
    """Fetch an artifact by token id."""

  async def finalize_mint(self, session_id: str, *, artifact_id: str, inscription_id: str, inscription_tx: str, inscribed_at: datetime, status_message: str) -> SessionRecord | None:
    """Confirm the artifact and the INSCRIBING session in one transaction."""

  async def append_log(self, session_pk: str, level: LogLevel, message: str, metadata: dict[str, Any] | None = None) -> None:
    """Append an audit entry for a session."""

  async def list_logs(self, session_pk: str, limit: int = 100) -> list[MintLogRecord]:
    """Return audit entries for a session in insertion order."""

  async def list_expired_sessions(self, now: datetime, limit: int = 100) -> list[SessionRecord]:
    """Return non-terminal sessions whose expiry has passed."""

  async def list_stale_sessions(self, statuses: Iterable[str], *, updated_before: datetime, limit: int = 100) -> list[SessionRecord]:
    """Return sessions in `statuses` that have not been touched since `updated_before`."""

  async def count_confirmed_by_tier(self) -> dict[str, int]:
    """Count confirmed artifacts grouped by rarity tier."""

  async def list_confirmed_artifacts(self, *, page: int, limit: int, rarity: str | None = None, sort: GallerySort = "newest") -> GalleryPage:
    """Return one page of confirmed artifacts for the public gallery."""


class ActiveSessionExistsError(Exception):
  """Raised when inserting a session would give a user two in-flight sessions."""
