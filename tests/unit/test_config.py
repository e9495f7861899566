import os
from unittest.mock import patch

import pytest

from mint_engine.config import get_database_settings, get_settings


@pytest.fixture(autouse=True)
def _clear_settings_cache():
  get_settings.cache_clear()
  get_database_settings.cache_clear()
  yield
  get_settings.cache_clear()
  get_database_settings.cache_clear()


def test_defaults_match_collection_parameters():
  settings = get_settings()
  assert settings.price_doge == 100
  assert settings.max_supply == 1000
  assert settings.session_ttl_seconds == 1800
  assert settings.payment_verification == "claimed"
  assert settings.task_service_provider == "local"
  assert settings.inscriber_provider == "simulated"


def test_allowed_origins_are_required():
  with patch.dict(os.environ, {"MINT_ALLOWED_ORIGINS": ""}):
    with pytest.raises(ValueError, match="MINT_ALLOWED_ORIGINS"):
      get_settings()


def test_wildcard_origin_is_rejected():
  with patch.dict(os.environ, {"MINT_ALLOWED_ORIGINS": "http://a.test,*"}):
    with pytest.raises(ValueError, match="wildcard"):
      get_settings()


def test_short_jwt_secret_is_rejected():
  with patch.dict(os.environ, {"MINT_JWT_SECRET": "too-short"}):
    with pytest.raises(ValueError, match="MINT_JWT_SECRET"):
      get_settings()


def test_non_positive_supply_is_rejected():
  with patch.dict(os.environ, {"MINT_MAX_SUPPLY": "0"}):
    with pytest.raises(ValueError, match="MINT_MAX_SUPPLY"):
      get_settings()


def test_gcp_provider_requires_queue_and_secret():
  with patch.dict(os.environ, {"MINT_TASK_SERVICE_PROVIDER": "gcp", "MINT_CLOUD_TASKS_QUEUE_PATH": "projects/p/locations/l/queues/q", "MINT_BASE_URL": "https://mint.test"}):
    with pytest.raises(ValueError, match="MINT_TASK_SECRET"):
      get_settings()


def test_http_inscriber_requires_url():
  with patch.dict(os.environ, {"MINT_INSCRIBER_PROVIDER": "http"}):
    with pytest.raises(ValueError, match="MINT_INSCRIBER_URL"):
      get_settings()


def test_unknown_payment_mode_is_rejected():
  with patch.dict(os.environ, {"MINT_PAYMENT_VERIFICATION": "trust-me"}):
    with pytest.raises(ValueError, match="MINT_PAYMENT_VERIFICATION"):
      get_settings()


@pytest.mark.parametrize(
  "overrides",
  [
    {"MINT_STALE_STEP_SECONDS": "120"},
    {"MINT_STALE_STEP_SECONDS": "90", "MINT_INSCRIPTION_TIMEOUT_SECONDS": "30", "MINT_GENERATION_TIMEOUT_SECONDS": "90"},
  ],
)
def test_stale_window_must_exceed_step_timeouts(overrides):
  with patch.dict(os.environ, overrides):
    with pytest.raises(ValueError, match="MINT_STALE_STEP_SECONDS"):
      get_settings()


def test_stale_window_longer_than_timeouts_is_accepted():
  with patch.dict(os.environ, {"MINT_STALE_STEP_SECONDS": "121"}):
    assert get_settings().stale_step_seconds == 121


def test_database_url_falls_back_to_database_url_env():
  with patch.dict(os.environ, {"DATABASE_URL": "postgresql://u:p@db/mint"}):
    os.environ.pop("MINT_PG_DSN", None)
    assert get_database_settings().pg_dsn == "postgresql://u:p@db/mint"
