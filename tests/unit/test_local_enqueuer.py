import asyncio
from unittest.mock import MagicMock

import pytest

from mint_engine.services.tasks.gcp import TASK_SECRET_HEADER, CloudTasksEnqueuer
from mint_engine.services.tasks.local import LocalTaskEnqueuer


@pytest.mark.anyio
async def test_local_enqueuer_runs_steps_on_workers():
  seen: list[tuple[str, str]] = []

  async def dispatcher(session_id: str, step: str) -> None:
    seen.append((session_id, step))

  enqueuer = LocalTaskEnqueuer(dispatcher, workers=2)
  enqueuer.start()
  try:
    await enqueuer.enqueue("s1", "generation")
    await enqueuer.enqueue("s2", "inscription")
    await enqueuer.join()
  finally:
    await enqueuer.stop()

  assert sorted(seen) == [("s1", "generation"), ("s2", "inscription")]
  assert enqueuer.running is False


@pytest.mark.anyio
async def test_local_enqueuer_full_queue_raises_without_waiting():
  release = asyncio.Event()

  async def dispatcher(session_id: str, step: str) -> None:
    await release.wait()

  enqueuer = LocalTaskEnqueuer(dispatcher, workers=1, max_queue=1)
  enqueuer.start()
  try:
    await enqueuer.enqueue("s1", "generation")
    # Let the worker pick up s1 and block on it.
    await asyncio.sleep(0)
    await enqueuer.enqueue("s2", "generation")
    with pytest.raises(asyncio.QueueFull):
      await enqueuer.enqueue("s3", "generation")
  finally:
    release.set()
    await enqueuer.stop()


@pytest.mark.anyio
async def test_local_enqueuer_survives_crashing_step():
  calls: list[str] = []

  async def dispatcher(session_id: str, step: str) -> None:
    calls.append(session_id)
    if session_id == "bad":
      raise RuntimeError("boom")

  enqueuer = LocalTaskEnqueuer(dispatcher, workers=1)
  enqueuer.start()
  try:
    await enqueuer.enqueue("bad", "generation")
    await enqueuer.enqueue("good", "generation")
    await asyncio.wait_for(enqueuer.join(), timeout=1)
  finally:
    await enqueuer.stop()

  assert calls == ["bad", "good"]


@pytest.mark.anyio
async def test_local_enqueuer_rejects_when_not_started():
  async def dispatcher(session_id: str, step: str) -> None:
    return None

  with pytest.raises(RuntimeError, match="not running"):
    await LocalTaskEnqueuer(dispatcher).enqueue("s1", "generation")


@pytest.mark.anyio
async def test_cloud_tasks_enqueuer_posts_step_payload():
  client = MagicMock()
  enqueuer = CloudTasksEnqueuer(queue_path="projects/p/locations/l/queues/q", base_url="https://mint.test/", task_secret="shh", client=client)

  await enqueuer.enqueue("s1", "inscription")

  request = client.create_task.call_args.kwargs["request"]
  assert request["parent"] == "projects/p/locations/l/queues/q"
  http_request = request["task"]["http_request"]
  assert http_request["url"] == "https://mint.test/internal/tasks/process-step"
  assert http_request["headers"][TASK_SECRET_HEADER] == "shh"
  assert http_request["body"] == b'{"sessionId": "s1", "step": "inscription"}'
