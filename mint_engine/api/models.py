from __future__ import annotations

from datetime import datetime
from typing import Any, Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, StrictStr, field_validator

T = TypeVar("T")


def _to_camel(string: str) -> str:
  """Convert snake_case to camelCase so payloads match the web client."""
  parts = string.split("_")
  return parts[0] + "".join(part[:1].upper() + part[1:] for part in parts[1:])


class CamelModel(BaseModel):
  model_config = ConfigDict(populate_by_name=True, alias_generator=_to_camel)


class ApiResponse(BaseModel, Generic[T]):
  """Success envelope wrapping every JSON response body."""

  success: bool = True
  data: T


def ok(data: T) -> ApiResponse[T]:
  return ApiResponse(data=data)


class CypherPreview(CamelModel):
  token_id: int
  rarity_tier: str
  rarity_role: str
  name: str


class SessionSummary(CamelModel):
  """Client-facing view of a mint session; every response carries status, message and progress."""

  session_id: str
  status: str
  status_message: str | None = None
  progress: int
  token_id: int
  payment_address: str | None = None
  payment_amount: float | None = None
  cypher: CypherPreview | None = None
  error_code: str | None = None
  error_message: str | None = None
  expires_at: datetime


class ConfirmPaymentRequest(CamelModel):
  model_config = ConfigDict(populate_by_name=True, alias_generator=_to_camel, extra="forbid")

  session_id: StrictStr = Field(min_length=1, max_length=64)
  tx_hash: StrictStr = Field(min_length=10, max_length=128, description="Payment transaction reference.")

  @field_validator("tx_hash")
  @classmethod
  def _strip_tx_hash(cls, value: str) -> str:
    stripped = value.strip()
    if len(stripped) < 10:
      raise ValueError("txHash must be at least 10 characters")
    return stripped


class PaymentStatusResponse(CamelModel):
  received: bool
  amount: float
  confirmations: int
  tx_hash: str | None = None


class MintStats(CamelModel):
  total_minted: int
  remaining: int
  max_supply: int
  by_rarity_tier: dict[str, int]


class PriceResponse(CamelModel):
  price: float
  currency: Literal["DOGE"] = "DOGE"
  max_supply: int


class CypherDetail(CamelModel):
  token_id: int
  name: str
  description: str | None = None
  rarity_tier: str
  rarity_role: str
  mask_type: str
  material_type: str
  encryption_type: str
  glitch_level: str
  background_style: str
  accent_color: str
  attributes: list[dict[str, Any]] = Field(default_factory=list)
  owner_address: str
  content_reference: str | None = None
  inscription_id: str | None = None
  inscription_tx: str | None = None
  inscribed_at: datetime | None = None


class GalleryPageResponse(CamelModel):
  items: list[CypherDetail]
  page: int
  limit: int
  total: int
  total_pages: int


class ChallengeRequest(CamelModel):
  wallet_address: StrictStr | None = Field(default=None, max_length=64)


class ChallengeResponse(CamelModel):
  nonce: str
  message: str
  expires_at: datetime


class VerifyRequest(CamelModel):
  nonce: StrictStr = Field(min_length=1, max_length=64)
  signature: StrictStr = Field(min_length=1, max_length=512)
  wallet_address: StrictStr = Field(min_length=1, max_length=64)


class UserInfo(CamelModel):
  id: str
  wallet_address: str


class VerifyResponse(CamelModel):
  token: str
  expires_at: datetime
  user: UserInfo


class TaskPayload(CamelModel):
  session_id: StrictStr = Field(min_length=1)
  step: Literal["generation", "inscription"]
