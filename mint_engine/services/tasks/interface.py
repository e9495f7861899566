from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Protocol

from mint_engine.jobs.models import StepName

StepDispatcher = Callable[[str, StepName], Awaitable[None]]


class TaskEnqueuer(Protocol):
  """Interface for handing background steps to a worker."""

  async def enqueue(self, session_id: str, step: StepName) -> None:
    """Submit `step` for `session_id`; returns without waiting for the step to run."""
    ...
