"""Time helpers shared by the orchestrator and repositories."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], datetime]


def utc_now() -> datetime:
  """Return the current timezone-aware UTC time."""
  return datetime.now(UTC)


def to_iso(value: datetime | None) -> str | None:
  if value is None:
    return None
  return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")
