"""Dependency-injected step dispatch helpers."""

from __future__ import annotations

import logging
from typing import Protocol

from mint_engine.jobs.models import StepName

logger = logging.getLogger(__name__)


class StepHandler(Protocol):
  """Runs one background step for a session; never raises for domain failures."""

  async def run(self, session_id: str) -> None:
    """Advance the session if it is in a state this step handles."""


class StepRegistry:
  """Registry mapping step names to handlers."""

  def __init__(self, handlers: dict[str, StepHandler]) -> None:
    self._handlers = handlers

  def resolve(self, step: str) -> StepHandler:
    handler = self._handlers.get(step)
    if handler is None:
      raise ValueError(f"Unsupported step: {step}")
    return handler

  async def dispatch(self, session_id: str, step: StepName) -> None:
    """Run the handler registered for `step` against `session_id`."""
    handler = self.resolve(step)
    logger.debug("Dispatching step=%s session_id=%s", step, session_id)
    await handler.run(session_id)
