"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from mint_engine.utils.env import load_env_file

load_env_file(override=False)

_PAYMENT_VERIFICATION_MODES = {"claimed", "verified"}
_INSCRIBER_PROVIDERS = {"simulated", "http"}
_TASK_SERVICE_PROVIDERS = {"local", "gcp"}


@dataclass(frozen=True)
class Settings:
  """Typed settings for the mint engine service."""

  environment: str
  allowed_origins: tuple[str, ...]
  debug: bool
  log_max_bytes: int
  log_backup_count: int
  log_http_4xx: bool
  pg_dsn: str | None
  pg_connect_timeout: int
  jwt_secret: str
  jwt_issuer: str
  jwt_ttl_seconds: int
  demo_mode: bool
  price_doge: int
  max_supply: int
  session_ttl_seconds: int
  challenge_ttl_seconds: int
  fee_address: str | None
  payment_verification: str
  payment_min_confirmations: int
  doge_rpc_url: str
  doge_rpc_user: str | None
  doge_rpc_pass: str | None
  generator_model: str
  openrouter_api_key: str | None
  generation_timeout_seconds: int
  inscriber_provider: str
  inscriber_url: str | None
  inscriber_api_key: str | None
  inscription_timeout_seconds: int
  task_service_provider: str
  task_workers: int
  task_secret: str | None
  cloud_tasks_queue_path: str | None
  base_url: str | None
  reconcile_interval_seconds: int
  stale_step_seconds: int


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  if not raw:
    raise ValueError("MINT_ALLOWED_ORIGINS must be set to one or more origins.")

  origins = [origin.strip() for origin in raw.split(",") if origin.strip()]

  if not origins:
    raise ValueError("MINT_ALLOWED_ORIGINS must include at least one origin.")

  if "*" in origins:
    raise ValueError("MINT_ALLOWED_ORIGINS must not include wildcard origins.")

  return tuple(origins)


def _parse_bool(raw: str | None) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return False

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _positive_int(name: str, default: str) -> int:
  value = int(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


def _choice(name: str, default: str, allowed: set[str]) -> str:
  value = (os.getenv(name) or default).strip().lower()
  if value not in allowed:
    raise ValueError(f"{name} must be one of: {', '.join(sorted(allowed))}.")
  return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("MINT_ENV", "development").lower()

  # Toggle verbose error output and diagnostics in non-production environments.
  debug = _parse_bool(os.getenv("MINT_DEBUG"))
  demo_mode = _parse_bool(os.getenv("MINT_DEMO_MODE"))

  log_max_bytes = _positive_int("MINT_LOG_MAX_BYTES", "5242880")  # 5MB default
  log_backup_count = int(os.getenv("MINT_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("MINT_LOG_BACKUP_COUNT must be zero or a positive integer.")

  # Tokens are signed with HMAC, so a short secret is rejected outright.
  jwt_secret = _optional_str(os.getenv("MINT_JWT_SECRET"))
  if jwt_secret is None or len(jwt_secret) < 32:
    raise ValueError("MINT_JWT_SECRET must be set to at least 32 characters.")

  max_supply = _positive_int("MINT_MAX_SUPPLY", "1000")
  price_doge = _positive_int("MINT_PRICE_DOGE", "100")

  payment_verification = _choice("MINT_PAYMENT_VERIFICATION", "claimed", _PAYMENT_VERIFICATION_MODES)
  payment_min_confirmations = int(os.getenv("MINT_PAYMENT_MIN_CONFIRMATIONS", "1"))
  if payment_min_confirmations < 0:
    raise ValueError("MINT_PAYMENT_MIN_CONFIRMATIONS must be zero or a positive integer.")

  inscriber_provider = _choice("MINT_INSCRIBER_PROVIDER", "simulated", _INSCRIBER_PROVIDERS)
  inscriber_url = _optional_str(os.getenv("MINT_INSCRIBER_URL"))
  if inscriber_provider == "http" and not inscriber_url:
    raise ValueError("MINT_INSCRIBER_URL must be set when MINT_INSCRIBER_PROVIDER is 'http'.")

  task_service_provider = _choice("MINT_TASK_SERVICE_PROVIDER", "local", _TASK_SERVICE_PROVIDERS)
  cloud_tasks_queue_path = _optional_str(os.getenv("MINT_CLOUD_TASKS_QUEUE_PATH"))
  base_url = _optional_str(os.getenv("MINT_BASE_URL"))
  task_secret = _optional_str(os.getenv("MINT_TASK_SECRET"))
  # Cloud Tasks needs a queue, a public callback origin and a shared secret to authenticate deliveries.
  if task_service_provider == "gcp":
    if not cloud_tasks_queue_path or not base_url:
      raise ValueError("MINT_CLOUD_TASKS_QUEUE_PATH and MINT_BASE_URL must be set when MINT_TASK_SERVICE_PROVIDER is 'gcp'.")
    if not task_secret:
      raise ValueError("MINT_TASK_SECRET must be set when MINT_TASK_SERVICE_PROVIDER is 'gcp'.")

  generation_timeout_seconds = _positive_int("MINT_GENERATION_TIMEOUT_SECONDS", "60")
  inscription_timeout_seconds = _positive_int("MINT_INSCRIPTION_TIMEOUT_SECONDS", "120")
  # The sweep treats an idle INSCRIBING session as stalled, so a step must time out before it looks idle.
  stale_step_seconds = _positive_int("MINT_STALE_STEP_SECONDS", "300")
  if stale_step_seconds <= max(generation_timeout_seconds, inscription_timeout_seconds):
    raise ValueError("MINT_STALE_STEP_SECONDS must be greater than MINT_GENERATION_TIMEOUT_SECONDS and MINT_INSCRIPTION_TIMEOUT_SECONDS.")

  return Settings(
    environment=environment,
    allowed_origins=_parse_origins(os.getenv("MINT_ALLOWED_ORIGINS")),
    debug=debug,
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    log_http_4xx=_parse_bool(os.getenv("MINT_LOG_HTTP_4XX")),
    pg_dsn=os.getenv("MINT_PG_DSN") or os.getenv("DATABASE_URL"),
    pg_connect_timeout=_positive_int("MINT_PG_CONNECT_TIMEOUT", "5"),
    jwt_secret=jwt_secret,
    jwt_issuer=(os.getenv("MINT_JWT_ISSUER") or "the-cyphers").strip(),
    jwt_ttl_seconds=_positive_int("MINT_JWT_TTL_SECONDS", "604800"),
    demo_mode=demo_mode,
    price_doge=price_doge,
    max_supply=max_supply,
    session_ttl_seconds=_positive_int("MINT_SESSION_TTL_SECONDS", "1800"),
    challenge_ttl_seconds=_positive_int("MINT_CHALLENGE_TTL_SECONDS", "300"),
    fee_address=_optional_str(os.getenv("MINT_FEE_ADDRESS")),
    payment_verification=payment_verification,
    payment_min_confirmations=payment_min_confirmations,
    doge_rpc_url=(os.getenv("MINT_DOGE_RPC_URL") or "http://localhost:22555").strip(),
    doge_rpc_user=_optional_str(os.getenv("MINT_DOGE_RPC_USER")),
    doge_rpc_pass=_optional_str(os.getenv("MINT_DOGE_RPC_PASS")),
    generator_model=(os.getenv("MINT_GENERATOR_MODEL") or "anthropic/claude-3.5-sonnet").strip(),
    openrouter_api_key=_optional_str(os.getenv("OPENROUTER_API_KEY")),
    generation_timeout_seconds=generation_timeout_seconds,
    inscriber_provider=inscriber_provider,
    inscriber_url=inscriber_url,
    inscriber_api_key=_optional_str(os.getenv("MINT_INSCRIBER_API_KEY")),
    inscription_timeout_seconds=inscription_timeout_seconds,
    task_service_provider=task_service_provider,
    task_workers=_positive_int("MINT_TASK_WORKERS", "4"),
    task_secret=task_secret,
    cloud_tasks_queue_path=cloud_tasks_queue_path,
    base_url=base_url,
    reconcile_interval_seconds=_positive_int("MINT_RECONCILE_INTERVAL_SECONDS", "60"),
    stale_step_seconds=stale_step_seconds,
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load database settings without requiring web-runtime configuration like CORS."""
  # Keep database configuration isolated so migrations don't require unrelated env vars.
  debug = _parse_bool(os.getenv("MINT_DEBUG"))
  pg_connect_timeout = _positive_int("MINT_PG_CONNECT_TIMEOUT", "5")
  pg_dsn = os.getenv("MINT_PG_DSN") or os.getenv("DATABASE_URL")
  return DatabaseSettings(debug=debug, pg_dsn=pg_dsn, pg_connect_timeout=pg_connect_timeout)


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  if value == "":
    return None
  return value
