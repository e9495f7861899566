from __future__ import annotations

from mint_engine.config import Settings
from mint_engine.services.tasks.interface import StepDispatcher, TaskEnqueuer
from mint_engine.services.tasks.local import LocalTaskEnqueuer


def get_task_enqueuer(settings: Settings, dispatcher: StepDispatcher) -> TaskEnqueuer:
  """Factory to get the configured task enqueuer."""
  if settings.task_service_provider == "gcp":
    from mint_engine.services.tasks.gcp import CloudTasksEnqueuer

    if not settings.cloud_tasks_queue_path or not settings.base_url or not settings.task_secret:
      raise ValueError("Cloud Tasks requires MINT_CLOUD_TASKS_QUEUE_PATH, MINT_BASE_URL and MINT_TASK_SECRET.")
    return CloudTasksEnqueuer(queue_path=settings.cloud_tasks_queue_path, base_url=settings.base_url, task_secret=settings.task_secret)
  return LocalTaskEnqueuer(dispatcher, workers=settings.task_workers)
