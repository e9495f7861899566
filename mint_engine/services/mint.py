"""Mint session orchestration: start, poll, pay, cancel and supply stats."""

from __future__ import annotations

import logging
import uuid
from datetime import timedelta

from mint_engine.api.models import CypherPreview, MintStats, PaymentStatusResponse, PriceResponse, SessionSummary
from mint_engine.core.exceptions import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from mint_engine.jobs.models import ACTIVE_STATUSES, CANCELLABLE_STATUSES, CANCELLED, RARITY_TIERS, SESSION_EXPIRED, Identity, SessionRecord, StepName
from mint_engine.services.payments import PaymentStep
from mint_engine.services.tasks.interface import TaskEnqueuer
from mint_engine.storage.mint_repo import ActiveSessionExistsError, MintRepository
from mint_engine.storage.token_allocator import TokenAllocator
from mint_engine.utils.clock import Clock, utc_now
from mint_engine.utils.ids import generate_session_id

logger = logging.getLogger(__name__)

STARTED_MESSAGE = "Session started, generating your unique Cypher..."
STARTED_PROGRESS = 5
EXPIRED_MESSAGE = "Session expired"
CANCELLED_MESSAGE = "Cancelled by user"


class MintOrchestrator:
  """Coordinates mint sessions across the allocator, the session store and the background steps."""

  def __init__(
    self,
    *,
    repo: MintRepository,
    allocator: TokenAllocator,
    enqueuer: TaskEnqueuer,
    payments: PaymentStep,
    price: float,
    max_supply: int,
    session_ttl_seconds: int,
    clock: Clock = utc_now,
  ) -> None:
    self._repo = repo
    self._allocator = allocator
    self._enqueuer = enqueuer
    self._payments = payments
    self._price = price
    self._max_supply = max_supply
    self._session_ttl = timedelta(seconds=session_ttl_seconds)
    self._clock = clock

  async def start(self, identity: Identity) -> SessionSummary:
    """Reserve a token and open a session; generation runs in the background."""
    # Lapsed sessions must not block a fresh attempt, so expire them before the active check.
    for active in await self._repo.find_active_sessions(identity.user_id):
      await self.expire_if_lapsed(active)
    if await self._repo.has_active_session(identity.user_id):
      raise ConflictError("You already have an active mint session", code="ACTIVE_SESSION_EXISTS")

    token_id = await self._allocator.allocate()
    if token_id is None:
      raise BadRequestError("All Cyphers have been minted", code="SOLD_OUT")

    now = self._clock()
    record = SessionRecord(
      id=str(uuid.uuid4()),
      session_id=generate_session_id(),
      user_id=identity.user_id,
      wallet_address=identity.wallet_address,
      status="PENDING",
      progress=STARTED_PROGRESS,
      status_message=STARTED_MESSAGE,
      assigned_token_id=token_id,
      payment_amount=self._price,
      expires_at=now + self._session_ttl,
      created_at=now,
      updated_at=now,
    )
    try:
      await self._repo.create_session(record)
    except ActiveSessionExistsError as exc:
      # A concurrent start for the same user won the insert; the token reserved here stays burned.
      logger.warning("Concurrent start rejected user_id=%s burned_token_id=%s", identity.user_id, token_id)
      raise ConflictError("You already have an active mint session", code="ACTIVE_SESSION_EXISTS") from exc

    await self._repo.append_log(record.id, "INFO", "Mint session started", {"tokenId": token_id})
    logger.info("Mint session started session_id=%s user_id=%s token_id=%s", record.session_id, identity.user_id, token_id)
    await self._dispatch(record.session_id, "generation")
    return await self._summary(record)

  async def get_status(self, session_id: str, identity: Identity | None = None) -> SessionSummary:
    session = await self._load(session_id, identity)
    session = await self.expire_if_lapsed(session)
    return await self._summary(session)

  async def confirm_payment(self, session_id: str, tx_hash: str, identity: Identity | None = None) -> SessionSummary:
    session = await self._load(session_id, identity)
    session = await self.expire_if_lapsed(session)
    if session.error_code == SESSION_EXPIRED:
      raise ConflictError("Mint session has expired", code=SESSION_EXPIRED)
    updated = await self._payments.confirm(session, tx_hash)
    return await self._summary(updated)

  async def check_payment(self, session_id: str, identity: Identity | None = None) -> PaymentStatusResponse:
    session = await self._load(session_id, identity)
    status = await self._payments.check(session)
    return PaymentStatusResponse(received=status.received, amount=status.amount, confirmations=status.confirmations, tx_hash=status.tx_hash)

  async def cancel(self, session_id: str, identity: Identity) -> SessionSummary:
    """Cancel a session that has not been paid; the reserved token is not released."""
    session = await self._load(session_id, identity)
    session = await self.expire_if_lapsed(session)
    if session.status == "CONFIRMED":
      raise ConflictError("Cannot cancel a completed mint", code="ALREADY_CONFIRMED")
    if session.payment_tx_hash:
      raise ConflictError("Cannot cancel after payment has been submitted", code="PAYMENT_SUBMITTED")
    if session.is_terminal:
      raise ConflictError("Mint session is already finished", code="SESSION_FINISHED")

    updated = await self._repo.transition(
      session_id,
      expected=CANCELLABLE_STATUSES,
      status="FAILED",
      status_message=CANCELLED_MESSAGE,
      error_code=CANCELLED,
      error_message=CANCELLED_MESSAGE,
    )
    if updated is None:
      raise ConflictError("Mint session changed while cancelling", code="INVALID_STATE")

    await self._repo.append_log(session.id, "INFO", "Session cancelled by user", {"tokenId": session.assigned_token_id})
    logger.info("Mint session cancelled session_id=%s token_id=%s", session_id, session.assigned_token_id)
    return await self._summary(updated)

  async def stats(self) -> MintStats:
    counts = await self._repo.count_confirmed_by_tier()
    last_issued, max_supply = await self._allocator.snapshot()
    by_tier = {tier: int(counts.get(tier, 0)) for tier in RARITY_TIERS}
    return MintStats(total_minted=sum(by_tier.values()), remaining=max_supply - last_issued, max_supply=max_supply, by_rarity_tier=by_tier)

  def price(self) -> PriceResponse:
    return PriceResponse(price=self._price, max_supply=self._max_supply)

  async def expire_if_lapsed(self, session: SessionRecord) -> SessionRecord:
    """Move a non-terminal session past its expiry to FAILED; safe to call repeatedly."""
    if not session.is_expired(self._clock()):
      return session

    updated = await self._repo.transition(
      session.session_id,
      expected=ACTIVE_STATUSES,
      status="FAILED",
      status_message=EXPIRED_MESSAGE,
      error_code=SESSION_EXPIRED,
      error_message="Mint session expired before completion",
    )
    if updated is None:
      # Someone else finished or expired it first; report whatever is stored now.
      current = await self._repo.get_session(session.session_id)
      return current or session

    await self._repo.append_log(session.id, "WARN", "Session expired", {"previousStatus": session.status, "tokenId": session.assigned_token_id})
    logger.info("Mint session expired session_id=%s previous_status=%s", session.session_id, session.status)
    return updated

  async def _load(self, session_id: str, identity: Identity | None) -> SessionRecord:
    session = await self._repo.get_session(session_id)
    if session is None:
      raise NotFoundError("Mint session not found", code="SESSION_NOT_FOUND")
    if identity is not None and session.user_id != identity.user_id:
      raise ForbiddenError("Access denied", code="FORBIDDEN")
    return session

  async def _dispatch(self, session_id: str, step: StepName) -> None:
    try:
      await self._enqueuer.enqueue(session_id, step)
    except Exception:  # noqa: BLE001
      # The session is already persisted in a resumable state; the reconcile sweep re-enqueues it.
      logger.error("Failed to enqueue step=%s session_id=%s", step, session_id, exc_info=True)

  async def _summary(self, session: SessionRecord) -> SessionSummary:
    cypher = None
    if session.artifact_id:
      artifact = await self._repo.get_artifact(session.artifact_id)
      if artifact is not None:
        cypher = CypherPreview(token_id=artifact.token_id, rarity_tier=artifact.traits.rarity_tier, rarity_role=artifact.traits.rarity_role, name=artifact.name)

    return SessionSummary(
      session_id=session.session_id,
      status=session.status,
      status_message=session.status_message,
      progress=session.progress,
      token_id=session.assigned_token_id,
      payment_address=session.payment_address,
      payment_amount=session.payment_amount,
      cypher=cypher,
      error_code=session.error_code,
      error_message=session.error_message,
      expires_at=session.expires_at,
    )
