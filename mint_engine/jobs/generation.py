"""Generation step: produce the artifact for a session's reserved token."""

from __future__ import annotations

import asyncio
import logging
import uuid

from mint_engine.jobs.models import GENERATION_FAILED, GENERATION_TIMEOUT, MALFORMED_GENERATION, ArtifactRecord, SessionRecord
from mint_engine.services.generator import CypherGenerator, GenerationResult, MalformedGenerationError, validate_generation
from mint_engine.services.payments import generate_payment_address
from mint_engine.storage.mint_repo import MintRepository
from mint_engine.utils.clock import Clock, utc_now

logger = logging.getLogger(__name__)

GENERATING_MESSAGE = "Generating your unique encrypted identity..."
GENERATED_MESSAGE = "Cypher generated! Awaiting payment..."
GENERATION_FAILED_MESSAGE = "Generation failed. Please try again."


class GenerationStep:
  """Drive PENDING/GENERATING sessions to AWAITING_PAYMENT or GENERATION_FAILED."""

  def __init__(self, *, repo: MintRepository, generator: CypherGenerator, fee_address: str | None, timeout_seconds: float, clock: Clock = utc_now) -> None:
    self._repo = repo
    self._generator = generator
    self._fee_address = fee_address
    self._timeout_seconds = timeout_seconds
    self._clock = clock

  async def run(self, session_id: str) -> None:
    session = await self._repo.get_session(session_id)
    if session is None:
      logger.warning("Generation requested for unknown session_id=%s", session_id)
      return
    if session.status not in ("PENDING", "GENERATING"):
      logger.info("Generation skipped session_id=%s status=%s", session_id, session.status)
      return
    if session.is_expired(self._clock()):
      logger.info("Generation skipped for expired session_id=%s", session_id)
      return

    claimed = await self._repo.transition(session_id, expected=("PENDING", "GENERATING"), status="GENERATING", progress=10, status_message=GENERATING_MESSAGE)
    if claimed is None:
      return
    await self._repo.append_log(session.id, "INFO", "Generation started", {"tokenId": session.assigned_token_id})

    token_id = session.assigned_token_id
    try:
      result = await asyncio.wait_for(self._generator.generate(token_id), timeout=self._timeout_seconds)
      validate_generation(result, token_id)
    except TimeoutError:
      await self._record_failure(claimed, GENERATION_TIMEOUT, f"Generator did not finish within {self._timeout_seconds}s")
      return
    except MalformedGenerationError as exc:
      await self._record_failure(claimed, MALFORMED_GENERATION, str(exc))
      return
    except Exception as exc:  # noqa: BLE001
      logger.warning("Generator failed session_id=%s token_id=%s", session_id, token_id, exc_info=True)
      await self._record_failure(claimed, GENERATION_FAILED, f"{type(exc).__name__}: {exc}")
      return

    try:
      await self._record_success(claimed, result)
    except Exception:  # noqa: BLE001
      # The session stays GENERATING; the reconcile sweep re-enqueues it once it goes stale.
      logger.error("Stuck session: generation result not persisted session_id=%s token_id=%s", session_id, token_id, exc_info=True)

  async def _record_success(self, session: SessionRecord, result: GenerationResult) -> None:
    now = self._clock()
    record = ArtifactRecord(
      id=str(uuid.uuid4()),
      token_id=result.token_id,
      traits=result.traits,
      status="AWAITING_PAYMENT",
      owner_address=session.wallet_address,
      user_id=session.user_id,
      mint_price=session.payment_amount,
      created_at=now,
      updated_at=now,
      trait_metadata=result.metadata,
      generation_prompt=result.prompt,
      generation_model=result.model,
      content_reference=result.content_reference,
    )
    attached = await self._repo.attach_artifact(
      session.session_id,
      record,
      payment_address=generate_payment_address(self._fee_address, session.session_id),
      status_message=GENERATED_MESSAGE,
    )
    if attached is None:
      logger.info("Generation result discarded; session moved on session_id=%s", session.session_id)
      return

    _, artifact = attached
    await self._repo.append_log(session.id, "INFO", "Cypher generated", {"tokenId": artifact.token_id, "rarityTier": artifact.traits.rarity_tier, "artifactId": artifact.id})
    logger.info("Generation complete session_id=%s token_id=%s rarity=%s", session.session_id, artifact.token_id, artifact.traits.rarity_tier)

  async def _record_failure(self, session: SessionRecord, code: str, detail: str) -> None:
    logger.warning("Generation failed session_id=%s code=%s detail=%s", session.session_id, code, detail)
    try:
      updated = await self._repo.transition(
        session.session_id,
        expected=("GENERATING",),
        status="GENERATION_FAILED",
        status_message=GENERATION_FAILED_MESSAGE,
        error_code=code,
        error_message=detail[:500],
      )
      if updated is not None:
        await self._repo.append_log(session.id, "ERROR", "Generation failed", {"errorCode": code, "error": detail[:500]})
    except Exception:  # noqa: BLE001
      logger.error("Stuck session: generation failure not persisted session_id=%s code=%s", session.session_id, code, exc_info=True)
