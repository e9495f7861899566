"""Domain models for mint sessions and the artifacts they produce."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

MintStatus = Literal["PENDING", "GENERATING", "GENERATION_FAILED", "AWAITING_PAYMENT", "PAYMENT_RECEIVED", "INSCRIBING", "INSCRIPTION_FAILED", "CONFIRMED", "FAILED"]
RarityTier = Literal["LEGENDARY", "EPIC", "RARE", "COMMON"]
LogLevel = Literal["DEBUG", "INFO", "WARN", "ERROR"]
StepName = Literal["generation", "inscription"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"CONFIRMED", "GENERATION_FAILED", "INSCRIPTION_FAILED", "FAILED"})
ACTIVE_STATUSES: tuple[str, ...] = ("PENDING", "GENERATING", "AWAITING_PAYMENT", "PAYMENT_RECEIVED", "INSCRIBING")
# Cancellation is only allowed before a payment reference has been accepted.
CANCELLABLE_STATUSES: tuple[str, ...] = ("PENDING", "GENERATING", "AWAITING_PAYMENT")
RARITY_TIERS: tuple[str, ...] = ("LEGENDARY", "EPIC", "RARE", "COMMON")

# Error codes persisted on sessions and returned to clients.
SESSION_EXPIRED = "SESSION_EXPIRED"
CANCELLED = "CANCELLED"
GENERATION_FAILED = "GENERATION_FAILED"
GENERATION_TIMEOUT = "GENERATION_TIMEOUT"
MALFORMED_GENERATION = "MALFORMED_GENERATION"
INSCRIPTION_FAILED = "INSCRIPTION_FAILED"
INSCRIPTION_TIMEOUT = "INSCRIPTION_TIMEOUT"
INSCRIPTION_STALLED = "INSCRIPTION_STALLED"


def is_terminal(status: str) -> bool:
  return status in TERMINAL_STATUSES


@dataclass(frozen=True)
class Identity:
  """Authenticated caller resolved from a bearer token."""

  user_id: str
  wallet_address: str


@dataclass
class SessionRecord:
  """Represents one mint attempt by one identity."""

  id: str
  session_id: str
  user_id: str
  wallet_address: str
  status: MintStatus
  progress: int
  assigned_token_id: int
  payment_amount: float
  expires_at: datetime
  created_at: datetime
  updated_at: datetime
  status_message: str | None = None
  payment_address: str | None = None
  payment_tx_hash: str | None = None
  payment_confirmed_at: datetime | None = None
  artifact_id: str | None = None
  error_code: str | None = None
  error_message: str | None = None
  completed_at: datetime | None = None

  @property
  def is_terminal(self) -> bool:
    return is_terminal(self.status)

  def is_expired(self, now: datetime) -> bool:
    return not self.is_terminal and now > self.expires_at


@dataclass(frozen=True)
class Traits:
  """Trait set rolled for one collectible."""

  rarity_tier: RarityTier
  rarity_role: str
  mask_type: str
  material_type: str
  encryption_type: str
  glitch_level: str
  background_style: str
  accent_color: str


@dataclass
class ArtifactRecord:
  """A generated collectible bound to exactly one token id."""

  id: str
  token_id: int
  traits: Traits
  status: MintStatus
  owner_address: str
  user_id: str | None
  mint_price: float
  created_at: datetime
  updated_at: datetime
  trait_metadata: dict[str, Any] = field(default_factory=dict)
  generation_prompt: str | None = None
  generation_model: str | None = None
  content_reference: str | None = None
  inscription_id: str | None = None
  inscription_tx: str | None = None
  inscribed_at: datetime | None = None

  @property
  def name(self) -> str:
    return str(self.trait_metadata.get("name") or f"Cypher #{self.token_id}")


@dataclass(frozen=True)
class MintLogRecord:
  """Append-only audit entry attached to a session."""

  session_pk: str
  level: LogLevel
  message: str
  metadata: dict[str, Any] | None
  created_at: datetime
