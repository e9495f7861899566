from __future__ import annotations

import asyncio
import logging

from mint_engine.jobs.models import StepName
from mint_engine.services.tasks.interface import StepDispatcher, TaskEnqueuer

logger = logging.getLogger(__name__)


class LocalTaskEnqueuer(TaskEnqueuer):
  """Runs steps on a pool of in-process asyncio workers fed by a bounded queue."""

  def __init__(self, dispatcher: StepDispatcher, *, workers: int = 4, max_queue: int = 1000) -> None:
    self._dispatcher = dispatcher
    self._workers = workers
    self._queue: asyncio.Queue[tuple[str, StepName]] = asyncio.Queue(maxsize=max_queue)
    self._tasks: list[asyncio.Task[None]] = []

  @property
  def running(self) -> bool:
    return bool(self._tasks)

  def start(self) -> None:
    if self._tasks:
      return
    self._tasks = [asyncio.create_task(self._worker(index), name=f"mint-step-worker-{index}") for index in range(self._workers)]
    logger.info("Local task workers started count=%s", self._workers)

  async def stop(self) -> None:
    """Cancel the workers; queued steps are picked up again by the reconcile sweep after restart."""
    tasks, self._tasks = self._tasks, []
    for task in tasks:
      task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
    if tasks:
      logger.info("Local task workers stopped pending=%s", self._queue.qsize())

  async def join(self) -> None:
    """Wait until every queued step, including ones enqueued by steps, has finished."""
    await self._queue.join()

  async def enqueue(self, session_id: str, step: StepName) -> None:
    if not self._tasks:
      raise RuntimeError("Local task workers are not running.")
    # A full queue raises QueueFull instead of stalling the HTTP caller; the sweep re-enqueues later.
    self._queue.put_nowait((session_id, step))
    logger.debug("Enqueued step=%s session_id=%s depth=%s", step, session_id, self._queue.qsize())

  async def _worker(self, index: int) -> None:
    while True:
      session_id, step = await self._queue.get()
      try:
        await self._dispatcher(session_id, step)
      except asyncio.CancelledError:
        raise
      except Exception:  # noqa: BLE001
        # Step handlers record domain failures themselves; anything reaching here is infrastructure.
        logger.error("Step crashed worker=%s step=%s session_id=%s", index, step, session_id, exc_info=True)
      finally:
        self._queue.task_done()
