from __future__ import annotations

import logging
import secrets
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, status

from mint_engine.api.deps import get_step_registry
from mint_engine.api.models import TaskPayload
from mint_engine.config import Settings, get_settings
from mint_engine.jobs.dispatch import StepRegistry

router = APIRouter(prefix="/tasks", tags=["tasks"])
logger = logging.getLogger(__name__)


@router.post("/process-step", status_code=status.HTTP_200_OK)
async def process_step_task(
  payload: TaskPayload,
  background_tasks: BackgroundTasks,
  settings: Annotated[Settings, Depends(get_settings)],
  registry: Annotated[StepRegistry, Depends(get_step_registry)],
  authorization: str | None = Header(default=None),
  x_mint_task_secret: str | None = Header(default=None),
) -> dict[str, str]:
  """
  Handler for Cloud Tasks deliveries.
  Accepts the task quickly and runs the step in the background; steps are idempotent under redelivery.
  """
  if not settings.task_secret:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Task authentication is not configured.")
  expected_auth = f"Bearer {settings.task_secret}"
  # Cloud Tasks OIDC occupies Authorization for Cloud Run invoker auth, so the dedicated header is checked first.
  shared_secret_valid = secrets.compare_digest((x_mint_task_secret or ""), settings.task_secret)
  bearer_valid = secrets.compare_digest((authorization or ""), expected_auth)
  if not shared_secret_valid and not bearer_valid:
    logger.warning("Unauthorized access attempt to /process-step")
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid task secret.")

  logger.info("Received task step=%s session_id=%s", payload.step, payload.session_id)
  background_tasks.add_task(registry.dispatch, payload.session_id, payload.step)
  return {"status": "accepted"}
