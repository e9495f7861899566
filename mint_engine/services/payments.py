"""Payment acceptance for mint sessions and the Dogecoin payment-status read path."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from mint_engine.config import Settings
from mint_engine.core.exceptions import ConflictError
from mint_engine.jobs.models import SessionRecord
from mint_engine.services.tasks.interface import TaskEnqueuer
from mint_engine.storage.mint_repo import MintRepository
from mint_engine.utils.clock import Clock, utc_now

logger = logging.getLogger(__name__)

UNCONFIGURED_PAYMENT_ADDRESS = "D_PAYMENT_ADDRESS_NOT_CONFIGURED"
PAYMENT_RECEIVED_MESSAGE = "Payment received! Starting inscription..."
PAYMENT_RECEIVED_PROGRESS = 60


class PaymentCheckError(RuntimeError):
  """Raised when the payment backend cannot be queried."""


@dataclass(frozen=True)
class PaymentStatus:
  received: bool
  amount: float
  confirmations: int
  tx_hash: str | None = None

  def to_payload(self) -> dict[str, Any]:
    return {"received": self.received, "amount": self.amount, "confirmations": self.confirmations, "txHash": self.tx_hash}


class PaymentChecker(Protocol):
  """Contract for querying whether an address has been paid."""

  async def check(self, address: str, expected_amount: float) -> PaymentStatus:
    """Return what the chain knows about payments to `address`."""


def generate_payment_address(fee_address: str | None, session_id: str) -> str:
  """Return the address a session should be paid to; all sessions share the fee address for now."""
  if not fee_address:
    logger.warning("No fee address configured session_id=%s; using placeholder", session_id)
    return UNCONFIGURED_PAYMENT_ADDRESS
  logger.info("Payment address assigned session_id=%s address=%s", session_id, fee_address)
  return fee_address


class UnconfiguredPaymentChecker:
  """Checker used when no Dogecoin node is configured; it never observes a payment."""

  async def check(self, address: str, expected_amount: float) -> PaymentStatus:
    return PaymentStatus(received=False, amount=0.0, confirmations=0)


class RpcReply(BaseModel):
  """JSON-RPC 1.0 envelope returned by Dogecoin Core."""

  model_config = ConfigDict(extra="ignore")

  result: Any = None
  error: Any = None


class ReceivedEntry(BaseModel):
  """One row of `listreceivedbyaddress`."""

  model_config = ConfigDict(extra="ignore")

  address: str
  amount: float = 0.0
  confirmations: int = 0
  txids: list[str] = Field(default_factory=list)


class ReceivedByAddress(BaseModel):
  entries: list[ReceivedEntry]


class DogeRpcPaymentChecker:
  """Query a Dogecoin Core node over JSON-RPC (`listreceivedbyaddress`)."""

  def __init__(self, *, rpc_url: str, rpc_user: str | None, rpc_pass: str | None, timeout_seconds: float = 10.0) -> None:
    self._rpc_url = rpc_url
    self._auth = (rpc_user, rpc_pass or "") if rpc_user else None
    self._timeout = timeout_seconds

  async def _call(self, method: str, params: list[Any]) -> Any:
    payload = {"jsonrpc": "1.0", "id": "mint-engine", "method": method, "params": params}
    async with httpx.AsyncClient(timeout=self._timeout, auth=self._auth) as client:
      try:
        response = await client.post(self._rpc_url, json=payload)
        response.raise_for_status()
      except httpx.HTTPError as exc:
        raise PaymentCheckError(f"dogecoin rpc {method} failed: {exc}") from exc

    # Proxies in front of the node can answer 200 with an HTML error page.
    try:
      reply = RpcReply.model_validate(response.json())
    except (ValueError, ValidationError) as exc:
      raise PaymentCheckError(f"dogecoin rpc {method} returned an unreadable reply") from exc
    if reply.error:
      raise PaymentCheckError(f"dogecoin rpc {method} error: {reply.error}")
    return reply.result

  async def check(self, address: str, expected_amount: float) -> PaymentStatus:
    # minconf=0 so unconfirmed payments are visible; confirmations are reported separately.
    result = await self._call("listreceivedbyaddress", [0, True, True])
    try:
      received = ReceivedByAddress.model_validate({"entries": result or []})
    except ValidationError as exc:
      raise PaymentCheckError("dogecoin rpc listreceivedbyaddress returned unexpected entries") from exc

    for entry in received.entries:
      if entry.address != address:
        continue
      return PaymentStatus(received=entry.amount >= expected_amount, amount=entry.amount, confirmations=entry.confirmations, tx_hash=entry.txids[-1] if entry.txids else None)
    return PaymentStatus(received=False, amount=0.0, confirmations=0)


def build_payment_checker(settings: Settings) -> PaymentChecker:
  if settings.doge_rpc_user:
    return DogeRpcPaymentChecker(rpc_url=settings.doge_rpc_url, rpc_user=settings.doge_rpc_user, rpc_pass=settings.doge_rpc_pass)
  if settings.payment_verification == "verified":
    raise ValueError("MINT_DOGE_RPC_USER must be set when MINT_PAYMENT_VERIFICATION is 'verified'.")
  return UnconfiguredPaymentChecker()


class PaymentStep:
  """Accept a payment reference for a session and hand it to the inscription step."""

  def __init__(self, *, repo: MintRepository, enqueuer: TaskEnqueuer, checker: PaymentChecker, verification: str = "claimed", min_confirmations: int = 1, clock: Clock = utc_now) -> None:
    self._repo = repo
    self._enqueuer = enqueuer
    self._checker = checker
    self._verification = verification
    self._min_confirmations = min_confirmations
    self._clock = clock

  async def confirm(self, session: SessionRecord, tx_hash: str) -> SessionRecord:
    """Move AWAITING_PAYMENT to PAYMENT_RECEIVED; raise ConflictError without mutating otherwise."""
    if session.status != "AWAITING_PAYMENT" or session.artifact_id is None:
      raise ConflictError(f"Cannot confirm payment in status {session.status}", code="INVALID_STATE")

    if self._verification == "verified":
      await self._require_observed_payment(session)

    updated = await self._repo.transition(
      session.session_id,
      expected=("AWAITING_PAYMENT",),
      status="PAYMENT_RECEIVED",
      progress=PAYMENT_RECEIVED_PROGRESS,
      status_message=PAYMENT_RECEIVED_MESSAGE,
      payment_tx_hash=tx_hash,
      payment_confirmed_at=self._clock(),
    )
    if updated is None:
      # Another writer (cancel, expiry, a duplicate confirm) moved the session first.
      raise ConflictError("Session changed while confirming payment", code="INVALID_STATE")

    await self._repo.append_log(session.id, "INFO", f"Payment confirmed: {tx_hash}", {"txHash": tx_hash, "mode": self._verification})
    logger.info("Payment accepted session_id=%s tx_hash=%s mode=%s", session.session_id, tx_hash, self._verification)
    try:
      await self._enqueuer.enqueue(session.session_id, "inscription")
    except Exception:  # noqa: BLE001
      # PAYMENT_RECEIVED is resumable; the reconcile sweep re-enqueues the inscription.
      logger.error("Failed to enqueue inscription session_id=%s", session.session_id, exc_info=True)
    return updated

  async def _require_observed_payment(self, session: SessionRecord) -> None:
    if not session.payment_address:
      raise ConflictError("Session has no payment address", code="PAYMENT_NOT_DETECTED")
    status = await self._checker.check(session.payment_address, session.payment_amount)
    if not status.received or status.confirmations < self._min_confirmations:
      logger.info("Payment not yet detected session_id=%s received=%s confirmations=%s", session.session_id, status.received, status.confirmations)
      raise ConflictError("Payment not detected on-chain yet", code="PAYMENT_NOT_DETECTED")

  async def check(self, session: SessionRecord) -> PaymentStatus:
    """Report payment state for a session; never mutates it."""
    if not session.payment_address:
      return PaymentStatus(received=False, amount=0.0, confirmations=0)

    try:
      status = await self._checker.check(session.payment_address, session.payment_amount)
    except PaymentCheckError:
      logger.warning("Payment check failed session_id=%s", session.session_id, exc_info=True)
      status = PaymentStatus(received=False, amount=0.0, confirmations=0)

    # A payment reference already accepted for the session counts as received.
    if not status.received and session.payment_tx_hash and session.payment_confirmed_at:
      return PaymentStatus(received=True, amount=session.payment_amount, confirmations=status.confirmations, tx_hash=session.payment_tx_hash)
    return status
