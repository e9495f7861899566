"""Load mint-engine settings from a local .env file."""

from __future__ import annotations

import os
from collections.abc import Iterable, Mapping, MutableMapping
from pathlib import Path

ENV_FILE_VARIABLE = "MINT_ENV_FILE"
# Only service settings are read from the file; anything else stays with the shell.
SERVICE_KEY_PREFIX = "MINT_"
SERVICE_EXTRA_KEYS = frozenset({"DATABASE_URL", "OPENROUTER_API_KEY"})


def env_file_path(environ: Mapping[str, str] | None = None) -> Path:
  """Return MINT_ENV_FILE when set, otherwise `.env` in the project root."""
  source = os.environ if environ is None else environ
  configured = (source.get(ENV_FILE_VARIABLE) or "").strip()
  if configured:
    return Path(configured).expanduser()
  return Path(__file__).resolve().parents[2] / ".env"


def is_service_key(key: str) -> bool:
  return key.startswith(SERVICE_KEY_PREFIX) or key in SERVICE_EXTRA_KEYS


def _unquote(value: str) -> str:
  if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
    return value[1:-1]
  # Unquoted values may carry a trailing " # comment".
  comment = value.find(" #")
  return value if comment == -1 else value[:comment].rstrip()


def parse_env_lines(lines: Iterable[str]) -> dict[str, str]:
  """Parse `KEY=value` lines, keeping only mint-engine keys."""
  values: dict[str, str] = {}
  for raw_line in lines:
    line = raw_line.strip()
    if not line or line.startswith("#"):
      continue
    line = line.removeprefix("export ").lstrip()
    key, sep, value = line.partition("=")
    key = key.strip()
    if not sep or not is_service_key(key):
      continue
    values[key] = _unquote(value.strip())
  return values


def load_env_file(path: Path | None = None, *, override: bool = False, environ: MutableMapping[str, str] | None = None) -> dict[str, str]:
  """Copy mint-engine keys from the env file into the environment and return what was applied."""
  target = os.environ if environ is None else environ
  env_path = path or env_file_path(target)
  if not env_path.is_file():
    return {}

  applied: dict[str, str] = {}
  for key, value in parse_env_lines(env_path.read_text(encoding="utf-8").splitlines()).items():
    if not override and key in target:
      continue
    target[key] = value
    applied[key] = value
  return applied
