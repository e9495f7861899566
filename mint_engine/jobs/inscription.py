"""Inscription step: inscribe a paid artifact and confirm the mint."""

from __future__ import annotations

import asyncio
import logging

from mint_engine.jobs.models import INSCRIPTION_FAILED, INSCRIPTION_TIMEOUT, ArtifactRecord, SessionRecord
from mint_engine.services.inscriber import Inscriber, InscriptionResult, build_inscription_content
from mint_engine.storage.mint_repo import MintRepository
from mint_engine.utils.clock import Clock, utc_now

logger = logging.getLogger(__name__)

INSCRIBING_MESSAGE = "Creating Doginal inscription..."
CONFIRMED_MESSAGE = "Cypher successfully inscribed!"
INSCRIPTION_FAILED_MESSAGE = "Inscription failed. Contact support."


class InscriptionStep:
  """Drive PAYMENT_RECEIVED sessions to CONFIRMED or INSCRIPTION_FAILED."""

  def __init__(self, *, repo: MintRepository, inscriber: Inscriber, timeout_seconds: float, clock: Clock = utc_now) -> None:
    self._repo = repo
    self._inscriber = inscriber
    self._timeout_seconds = timeout_seconds
    self._clock = clock

  async def run(self, session_id: str) -> None:
    session = await self._repo.get_session(session_id)
    if session is None:
      logger.warning("Inscription requested for unknown session_id=%s", session_id)
      return

    if session.status == "INSCRIBING":
      # A redelivery never starts a second inscription; the stall sweep handles stuck sessions.
      logger.info("Inscription already in flight session_id=%s; redelivery ignored", session_id)
      return
    if session.status != "PAYMENT_RECEIVED":
      logger.info("Inscription skipped session_id=%s status=%s", session_id, session.status)
      return

    # The PAYMENT_RECEIVED -> INSCRIBING transition is the claim; only one delivery inscribes.
    claimed = await self._repo.transition(session_id, expected=("PAYMENT_RECEIVED",), status="INSCRIBING", progress=80, status_message=INSCRIBING_MESSAGE)
    if claimed is None:
      return

    artifact = await self._repo.get_artifact(claimed.artifact_id) if claimed.artifact_id else None
    if artifact is None:
      await self._record_failure(claimed, INSCRIPTION_FAILED, "Session has no artifact to inscribe")
      return
    await self._repo.append_log(session.id, "INFO", "Inscription started", {"tokenId": artifact.token_id})

    try:
      result = await asyncio.wait_for(self._inscriber.inscribe(artifact, build_inscription_content(artifact)), timeout=self._timeout_seconds)
    except TimeoutError:
      await self._record_failure(claimed, INSCRIPTION_TIMEOUT, f"Inscriber did not finish within {self._timeout_seconds}s")
      return
    except Exception as exc:  # noqa: BLE001
      logger.warning("Inscriber failed session_id=%s token_id=%s", session_id, artifact.token_id, exc_info=True)
      await self._record_failure(claimed, INSCRIPTION_FAILED, f"{type(exc).__name__}: {exc}")
      return

    await self._finalize(claimed, artifact, result)

  async def _finalize(self, session: SessionRecord, artifact: ArtifactRecord, result: InscriptionResult) -> None:
    try:
      confirmed = await self._repo.finalize_mint(
        session.session_id,
        artifact_id=artifact.id,
        inscription_id=result.inscription_id,
        inscription_tx=result.tx_hash,
        inscribed_at=self._clock(),
        status_message=CONFIRMED_MESSAGE,
      )
    except Exception:  # noqa: BLE001
      logger.error("Stuck session: inscription %s not recorded session_id=%s token_id=%s", result.inscription_id, session.session_id, artifact.token_id, exc_info=True)
      return

    metadata = {"inscriptionId": result.inscription_id, "inscriptionTx": result.tx_hash, "tokenId": artifact.token_id}
    if confirmed is None:
      # The session left INSCRIBING (e.g. expired) after the inscription was broadcast.
      logger.error("Inscription completed for a session that is no longer INSCRIBING session_id=%s inscription_id=%s", session.session_id, result.inscription_id)
      await self._repo.append_log(session.id, "ERROR", "Inscription completed after session left INSCRIBING", metadata)
      return

    await self._repo.append_log(session.id, "INFO", f"Mint completed! Inscription: {result.inscription_id}", metadata)
    logger.info("Mint finalized session_id=%s token_id=%s inscription_id=%s", session.session_id, artifact.token_id, result.inscription_id)

  async def _record_failure(self, session: SessionRecord, code: str, detail: str) -> None:
    logger.warning("Inscription failed session_id=%s code=%s detail=%s", session.session_id, code, detail)
    try:
      updated = await self._repo.transition(
        session.session_id,
        expected=("INSCRIBING",),
        status="INSCRIPTION_FAILED",
        status_message=INSCRIPTION_FAILED_MESSAGE,
        error_code=code,
        error_message=detail[:500],
      )
      if updated is not None:
        await self._repo.append_log(session.id, "ERROR", "Inscription failed", {"errorCode": code, "error": detail[:500]})
    except Exception:  # noqa: BLE001
      logger.error("Stuck session: inscription failure not persisted session_id=%s code=%s", session.session_id, code, exc_info=True)
