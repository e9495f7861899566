import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from urllib.parse import urlparse

from fastapi import FastAPI

from mint_engine.config import Settings, get_database_settings, get_settings
from mint_engine.core.database import Database
from mint_engine.core.logging import _initialize_logging
from mint_engine.jobs.dispatch import StepRegistry
from mint_engine.jobs.generation import GenerationStep
from mint_engine.jobs.inscription import InscriptionStep
from mint_engine.jobs.reconcile import ReconcileSweep
from mint_engine.services.auth import AuthService, build_signature_verifier
from mint_engine.services.gallery import GalleryService
from mint_engine.services.generator import build_generator
from mint_engine.services.inscriber import build_inscriber
from mint_engine.services.mint import MintOrchestrator
from mint_engine.services.payments import PaymentStep, build_payment_checker
from mint_engine.services.tasks.factory import get_task_enqueuer
from mint_engine.services.tasks.local import LocalTaskEnqueuer
from mint_engine.storage.postgres_auth_repo import PostgresAuthRepository
from mint_engine.storage.postgres_mint_repo import PostgresMintRepository
from mint_engine.storage.token_allocator import PostgresTokenAllocator, ensure_counter

logger = logging.getLogger("mint_engine.core.lifespan")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Wire the database, background steps and reconcile loop for the lifetime of the app."""
  settings = get_settings()
  _initialize_logging(settings)
  logger.info("Startup environment=%s demo_mode=%s tasks=%s", settings.environment, settings.demo_mode, settings.task_service_provider)

  database = Database(get_database_settings())
  logger.info("Connecting to database dsn=%s", _redact_dsn(settings.pg_dsn))
  database.connect()
  await ensure_counter(database.session_factory, settings.max_supply)

  enqueuer, sweep = build_app_state(app, settings, database)
  if isinstance(enqueuer, LocalTaskEnqueuer):
    enqueuer.start()
  reconcile_task = asyncio.create_task(sweep.run_forever(settings.reconcile_interval_seconds), name="mint-reconcile")
  logger.info("Startup complete.")

  try:
    yield
  finally:
    reconcile_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
      await reconcile_task
    if isinstance(enqueuer, LocalTaskEnqueuer):
      await enqueuer.stop()
    await database.dispose()
    logger.info("Shutdown complete.")


def build_app_state(app: FastAPI, settings: Settings, database: Database) -> tuple[object, ReconcileSweep]:
  """Construct repositories and services and publish them on app.state."""
  mint_repo = PostgresMintRepository(database.session_factory)
  auth_repo = PostgresAuthRepository(database.session_factory)
  allocator = PostgresTokenAllocator(database.session_factory)

  generation = GenerationStep(repo=mint_repo, generator=build_generator(settings), fee_address=settings.fee_address, timeout_seconds=settings.generation_timeout_seconds)
  inscription = InscriptionStep(repo=mint_repo, inscriber=build_inscriber(settings), timeout_seconds=settings.inscription_timeout_seconds)
  registry = StepRegistry({"generation": generation, "inscription": inscription})
  enqueuer = get_task_enqueuer(settings, registry.dispatch)

  payments = PaymentStep(
    repo=mint_repo,
    enqueuer=enqueuer,
    checker=build_payment_checker(settings),
    verification=settings.payment_verification,
    min_confirmations=settings.payment_min_confirmations,
  )
  orchestrator = MintOrchestrator(
    repo=mint_repo,
    allocator=allocator,
    enqueuer=enqueuer,
    payments=payments,
    price=settings.price_doge,
    max_supply=settings.max_supply,
    session_ttl_seconds=settings.session_ttl_seconds,
  )
  sweep = ReconcileSweep(repo=mint_repo, orchestrator=orchestrator, enqueuer=enqueuer, stale_after_seconds=settings.stale_step_seconds, auth_repo=auth_repo)

  app.state.database = database
  app.state.step_registry = registry
  app.state.orchestrator = orchestrator
  app.state.auth_service = AuthService(repo=auth_repo, verifier=build_signature_verifier(settings), settings=settings)
  app.state.gallery_service = GalleryService(mint_repo)
  return enqueuer, sweep


def _redact_dsn(raw: str | None) -> str:
  """Redact credentials from a DSN while keeping host/db visible."""
  if not raw:
    return "<unset>"

  parsed = urlparse(raw)
  if not parsed.scheme:
    return "<invalid>"

  user = parsed.username or ""
  host = parsed.hostname or ""
  port = f":{parsed.port}" if parsed.port else ""
  netloc = f"{user}@{host}{port}" if user else f"{host}{port}"
  database = parsed.path.lstrip("/")
  path = f"/{database}" if database else ""
  return f"{parsed.scheme}://{netloc}{path}"
