"""Periodic sweep that expires lapsed sessions and recovers steps lost in flight."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta

from mint_engine.jobs.models import INSCRIPTION_STALLED
from mint_engine.jobs.inscription import INSCRIPTION_FAILED_MESSAGE
from mint_engine.services.mint import MintOrchestrator
from mint_engine.services.tasks.interface import TaskEnqueuer
from mint_engine.storage.auth_repo import AuthRepository
from mint_engine.storage.mint_repo import MintRepository
from mint_engine.utils.clock import Clock, utc_now

logger = logging.getLogger(__name__)

USED_CHALLENGE_RETENTION = timedelta(hours=1)


@dataclass
class ReconcileReport:
  expired: int = 0
  generation_requeued: int = 0
  inscription_requeued: int = 0
  inscriptions_stalled: int = 0
  challenges_deleted: int = 0


class ReconcileSweep:
  """Bring sessions whose background step was lost back in line with the state machine."""

  def __init__(
    self,
    *,
    repo: MintRepository,
    orchestrator: MintOrchestrator,
    enqueuer: TaskEnqueuer,
    stale_after_seconds: int,
    auth_repo: AuthRepository | None = None,
    batch_size: int = 100,
    clock: Clock = utc_now,
  ) -> None:
    self._repo = repo
    self._orchestrator = orchestrator
    self._enqueuer = enqueuer
    self._stale_after = timedelta(seconds=stale_after_seconds)
    self._auth_repo = auth_repo
    self._batch_size = batch_size
    self._clock = clock

  async def run_once(self) -> ReconcileReport:
    report = ReconcileReport()
    now = self._clock()

    for session in await self._repo.list_expired_sessions(now, limit=self._batch_size):
      expired = await self._orchestrator.expire_if_lapsed(session)
      if expired.error_code == "SESSION_EXPIRED":
        report.expired += 1

    stale_before = now - self._stale_after
    for session in await self._repo.list_stale_sessions(("PENDING", "GENERATING"), updated_before=stale_before, limit=self._batch_size):
      await self._enqueuer.enqueue(session.session_id, "generation")
      report.generation_requeued += 1

    for session in await self._repo.list_stale_sessions(("PAYMENT_RECEIVED",), updated_before=stale_before, limit=self._batch_size):
      await self._enqueuer.enqueue(session.session_id, "inscription")
      report.inscription_requeued += 1

    # An inscription may already be on-chain, so a stalled one is failed for manual review instead of retried.
    for session in await self._repo.list_stale_sessions(("INSCRIBING",), updated_before=stale_before, limit=self._batch_size):
      updated = await self._repo.transition(
        session.session_id,
        expected=("INSCRIBING",),
        status="INSCRIPTION_FAILED",
        status_message=INSCRIPTION_FAILED_MESSAGE,
        error_code=INSCRIPTION_STALLED,
        error_message=f"No inscription result after {int(self._stale_after.total_seconds())}s",
      )
      if updated is not None:
        await self._repo.append_log(session.id, "ERROR", "Inscription stalled", {"tokenId": session.assigned_token_id})
        logger.error("Inscription stalled session_id=%s token_id=%s", session.session_id, session.assigned_token_id)
        report.inscriptions_stalled += 1

    if self._auth_repo is not None:
      report.challenges_deleted = await self._auth_repo.delete_stale_challenges(now, now - USED_CHALLENGE_RETENTION)

    if any(vars(report).values()):
      logger.info(
        "Reconcile sweep expired=%s generation_requeued=%s inscription_requeued=%s inscriptions_stalled=%s challenges_deleted=%s",
        report.expired,
        report.generation_requeued,
        report.inscription_requeued,
        report.inscriptions_stalled,
        report.challenges_deleted,
      )
    return report

  async def run_forever(self, interval_seconds: float) -> None:
    """Run the sweep on a fixed interval until cancelled."""
    while True:
      try:
        await self.run_once()
      except asyncio.CancelledError:
        raise
      except Exception:  # noqa: BLE001
        logger.error("Reconcile sweep failed; retrying next interval", exc_info=True)
      await asyncio.sleep(interval_seconds)
