from __future__ import annotations

import asyncio
import json
import logging

from google.cloud import tasks_v2

from mint_engine.jobs.models import StepName
from mint_engine.services.tasks.interface import TaskEnqueuer

logger = logging.getLogger(__name__)

TASK_SECRET_HEADER = "x-mint-task-secret"


class CloudTasksEnqueuer(TaskEnqueuer):
  """Enqueues steps as Google Cloud Tasks HTTP tasks targeting /internal/tasks/process-step."""

  def __init__(self, *, queue_path: str, base_url: str, task_secret: str, client: tasks_v2.CloudTasksClient | None = None) -> None:
    self._queue_path = queue_path
    self._url = f"{base_url.rstrip('/')}/internal/tasks/process-step"
    self._task_secret = task_secret
    self._client = client or tasks_v2.CloudTasksClient()

  def _build_task(self, session_id: str, step: StepName) -> dict:
    return {
      "http_request": {
        "http_method": tasks_v2.HttpMethod.POST,
        "url": self._url,
        "headers": {"Content-Type": "application/json", TASK_SECRET_HEADER: self._task_secret},
        "body": json.dumps({"sessionId": session_id, "step": step}).encode(),
      }
    }

  async def enqueue(self, session_id: str, step: StepName) -> None:
    task = self._build_task(session_id, step)
    # The client is synchronous; keep the event loop free while it talks to the API.
    response = await asyncio.to_thread(self._client.create_task, request={"parent": self._queue_path, "task": task})
    logger.info("Enqueued cloud task name=%s step=%s session_id=%s", response.name, step, session_id)
