"""Test configuration and in-memory collaborators for the mint engine."""

from __future__ import annotations

import asyncio
import os
import random
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from typing import Any

os.environ.setdefault("MINT_ALLOWED_ORIGINS", "http://localhost:3000")
os.environ.setdefault("MINT_JWT_SECRET", "test-jwt-secret-that-is-long-enough-0123456789")

import pytest  # noqa: E402

from mint_engine.jobs.dispatch import StepRegistry  # noqa: E402
from mint_engine.jobs.generation import GenerationStep  # noqa: E402
from mint_engine.jobs.inscription import InscriptionStep  # noqa: E402
from mint_engine.jobs.models import ACTIVE_STATUSES, ArtifactRecord, MintLogRecord, SessionRecord  # noqa: E402
from mint_engine.services.generator import GenerationResult, TemplateCypherGenerator  # noqa: E402
from mint_engine.services.inscriber import InscriptionResult  # noqa: E402
from mint_engine.services.mint import MintOrchestrator  # noqa: E402
from mint_engine.services.payments import PaymentStatus, PaymentStep, UnconfiguredPaymentChecker  # noqa: E402
from mint_engine.storage.auth_repo import ChallengeRecord, UserRecord  # noqa: E402
from mint_engine.storage.mint_repo import ActiveSessionExistsError, GalleryPage, validate_transition  # noqa: E402

_RARITY_RANK = {"LEGENDARY": 0, "EPIC": 1, "RARE": 2, "COMMON": 3}


class FakeClock:
  """Controllable clock returning timezone-aware UTC datetimes."""

  def __init__(self, start: datetime | None = None) -> None:
    self.now = start or datetime.now(UTC).replace(microsecond=0)

  def __call__(self) -> datetime:
    return self.now

  def advance(self, seconds: float) -> None:
    self.now = self.now + timedelta(seconds=seconds)


class InMemoryMintRepository:
  """Dict-backed MintRepository with the same conditional-update semantics as Postgres."""

  def __init__(self, clock: FakeClock) -> None:
    self._clock = clock
    self.sessions: dict[str, SessionRecord] = {}
    self.artifacts: dict[str, ArtifactRecord] = {}
    self.logs: list[MintLogRecord] = []

  async def create_session(self, record: SessionRecord) -> None:
    if any(s.user_id == record.user_id and s.status in ACTIVE_STATUSES for s in self.sessions.values()):
      raise ActiveSessionExistsError(record.user_id)
    self.sessions[record.session_id] = replace(record)

  async def get_session(self, session_id: str) -> SessionRecord | None:
    session = self.sessions.get(session_id)
    return replace(session) if session else None

  async def find_active_sessions(self, user_id: str) -> list[SessionRecord]:
    return [replace(s) for s in self.sessions.values() if s.user_id == user_id and s.status in ACTIVE_STATUSES]

  async def has_active_session(self, user_id: str) -> bool:
    return bool(await self.find_active_sessions(user_id))

  async def transition(self, session_id: str, *, expected, **fields: Any) -> SessionRecord | None:
    expected_statuses = validate_transition(expected, fields)
    session = self.sessions.get(session_id)
    if session is None or session.status not in expected_statuses:
      return None
    if "progress" in fields:
      fields["progress"] = max(session.progress, fields["progress"])
    updated = replace(session, **fields, updated_at=self._clock())
    self.sessions[session_id] = updated
    return replace(updated)

  async def attach_artifact(self, session_id: str, record: ArtifactRecord, *, payment_address: str, status_message: str) -> tuple[SessionRecord, ArtifactRecord] | None:
    session = self.sessions.get(session_id)
    if session is None or session.status != "GENERATING":
      return None
    artifact = next((a for a in self.artifacts.values() if a.token_id == record.token_id), None)
    if artifact is None:
      artifact = replace(record)
      self.artifacts[artifact.id] = artifact
    updated = replace(
      session,
      status="AWAITING_PAYMENT",
      progress=max(session.progress, 50),
      status_message=status_message,
      artifact_id=artifact.id,
      payment_address=payment_address,
      updated_at=self._clock(),
    )
    self.sessions[session_id] = updated
    return replace(updated), replace(artifact)

  async def get_artifact(self, artifact_id: str) -> ArtifactRecord | None:
    artifact = self.artifacts.get(artifact_id)
    return replace(artifact) if artifact else None

  async def get_artifact_by_token(self, token_id: int) -> ArtifactRecord | None:
    for artifact in self.artifacts.values():
      if artifact.token_id == token_id:
        return replace(artifact)
    return None

  async def finalize_mint(self, session_id: str, *, artifact_id: str, inscription_id: str, inscription_tx: str, inscribed_at: datetime, status_message: str) -> SessionRecord | None:
    session = self.sessions.get(session_id)
    if session is None or session.status != "INSCRIBING":
      return None
    updated = replace(session, status="CONFIRMED", progress=100, status_message=status_message, completed_at=inscribed_at, updated_at=self._clock())
    self.sessions[session_id] = updated
    artifact = self.artifacts[artifact_id]
    if artifact.inscription_id is None:
      self.artifacts[artifact_id] = replace(artifact, status="CONFIRMED", inscription_id=inscription_id, inscription_tx=inscription_tx, inscribed_at=inscribed_at, updated_at=self._clock())
    return replace(updated)

  async def append_log(self, session_pk: str, level, message: str, metadata: dict[str, Any] | None = None) -> None:
    self.logs.append(MintLogRecord(session_pk=session_pk, level=level, message=message, metadata=metadata, created_at=self._clock()))

  async def list_logs(self, session_pk: str, limit: int = 100) -> list[MintLogRecord]:
    return [log for log in self.logs if log.session_pk == session_pk][:limit]

  async def list_expired_sessions(self, now: datetime, limit: int = 100) -> list[SessionRecord]:
    return [replace(s) for s in self.sessions.values() if s.status in ACTIVE_STATUSES and s.expires_at < now][:limit]

  async def list_stale_sessions(self, statuses, *, updated_before: datetime, limit: int = 100) -> list[SessionRecord]:
    wanted = set(statuses)
    return [replace(s) for s in self.sessions.values() if s.status in wanted and s.updated_at < updated_before][:limit]

  async def count_confirmed_by_tier(self) -> dict[str, int]:
    counts: dict[str, int] = {}
    for artifact in self.artifacts.values():
      if artifact.status == "CONFIRMED":
        counts[artifact.traits.rarity_tier] = counts.get(artifact.traits.rarity_tier, 0) + 1
    return counts

  async def list_confirmed_artifacts(self, *, page: int, limit: int, rarity: str | None = None, sort: str = "newest") -> GalleryPage:
    items = [a for a in self.artifacts.values() if a.status == "CONFIRMED" and (rarity is None or a.traits.rarity_tier == rarity)]
    if sort == "oldest":
      items.sort(key=lambda a: (a.created_at, a.token_id))
    elif sort == "tokenId":
      items.sort(key=lambda a: a.token_id)
    elif sort == "rarity":
      items.sort(key=lambda a: (_RARITY_RANK[a.traits.rarity_tier], a.token_id))
    else:
      items.sort(key=lambda a: (a.created_at, a.token_id), reverse=True)
    start = (page - 1) * limit
    return GalleryPage(items=[replace(a) for a in items[start : start + limit]], total=len(items))

  def force(self, session_id: str, **fields: Any) -> None:
    """Rewrite a stored session directly, bypassing transition rules."""
    self.sessions[session_id] = replace(self.sessions[session_id], **fields)


class InMemoryTokenAllocator:
  """Counter with the same check-and-increment atomicity as the SQL allocator."""

  def __init__(self, max_supply: int = 1000, last_issued: int = 0) -> None:
    self.max_supply = max_supply
    self.last_issued = last_issued

  async def allocate(self) -> int | None:
    # Yield first so concurrent callers interleave; the check and increment below stay atomic.
    await asyncio.sleep(0)
    if self.last_issued >= self.max_supply:
      return None
    self.last_issued += 1
    return self.last_issued

  async def snapshot(self) -> tuple[int, int]:
    return self.last_issued, self.max_supply


class InMemoryAuthRepository:
  def __init__(self) -> None:
    self.challenges: dict[str, ChallengeRecord] = {}
    self.users: dict[str, UserRecord] = {}

  async def create_challenge(self, nonce: str, wallet_address: str | None, expires_at: datetime) -> None:
    self.challenges[nonce] = ChallengeRecord(nonce=nonce, wallet_address=wallet_address, expires_at=expires_at, used=False)

  async def get_challenge(self, nonce: str) -> ChallengeRecord | None:
    return self.challenges.get(nonce)

  async def consume_challenge(self, nonce: str) -> bool:
    challenge = self.challenges.get(nonce)
    if challenge is None or challenge.used:
      return False
    self.challenges[nonce] = replace(challenge, used=True)
    return True

  async def upsert_user(self, wallet_address: str, now: datetime) -> UserRecord:
    existing = self.users.get(wallet_address)
    if existing is None:
      user = UserRecord(id=f"user-{len(self.users) + 1}", wallet_address=wallet_address, login_count=1, last_login_at=now)
    else:
      user = replace(existing, login_count=existing.login_count + 1, last_login_at=now)
    self.users[wallet_address] = user
    return user

  async def delete_stale_challenges(self, now: datetime, used_before: datetime) -> int:
    stale = [nonce for nonce, c in self.challenges.items() if c.expires_at < now or (c.used and c.expires_at < used_before)]
    for nonce in stale:
      del self.challenges[nonce]
    return len(stale)


class RecordingEnqueuer:
  """Enqueuer that records steps so tests decide when they run."""

  def __init__(self) -> None:
    self.enqueued: list[tuple[str, str]] = []
    self.fail = False

  async def enqueue(self, session_id: str, step) -> None:
    if self.fail:
      raise RuntimeError("queue unavailable")
    self.enqueued.append((session_id, step))


class StubInscriber:
  def __init__(self) -> None:
    self.calls: list[int] = []
    self.error: Exception | None = None
    self.delay: float = 0.0

  async def inscribe(self, artifact: ArtifactRecord, content: bytes) -> InscriptionResult:
    self.calls.append(artifact.token_id)
    if self.delay:
      await asyncio.sleep(self.delay)
    if self.error is not None:
      raise self.error
    return InscriptionResult(inscription_id=f"dogi_test_{artifact.token_id}", tx_hash=f"tx_test_{artifact.token_id}")


class StubPaymentChecker:
  def __init__(self, status: PaymentStatus | None = None) -> None:
    self.status = status or PaymentStatus(received=False, amount=0.0, confirmations=0)

  async def check(self, address: str, expected_amount: float) -> PaymentStatus:
    return self.status


class FailingGenerator:
  def __init__(self, error: Exception) -> None:
    self.error = error

  async def generate(self, token_id: int) -> GenerationResult:
    raise self.error


class SlowGenerator:
  async def generate(self, token_id: int) -> GenerationResult:
    await asyncio.sleep(10)
    raise AssertionError("unreachable")


@pytest.fixture
def anyio_backend() -> str:
  return "asyncio"


@pytest.fixture
def clock() -> FakeClock:
  return FakeClock()


@pytest.fixture
def auth_repo() -> InMemoryAuthRepository:
  return InMemoryAuthRepository()


@pytest.fixture
def make_mint_env(clock: FakeClock):
  """Build an orchestrator wired to in-memory collaborators; keyword overrides tune it."""

  def _build(
    *,
    max_supply: int = 1000,
    last_issued: int = 0,
    generator: Any = None,
    checker: Any = None,
    verification: str = "claimed",
    generation_timeout: float = 5.0,
    inscription_timeout: float = 5.0,
    session_ttl_seconds: int = 1800,
    fee_address: str | None = "DFeeAddressForTests1234567890abcd",
  ) -> SimpleNamespace:
    repo = InMemoryMintRepository(clock)
    allocator = InMemoryTokenAllocator(max_supply=max_supply, last_issued=last_issued)
    enqueuer = RecordingEnqueuer()
    inscriber = StubInscriber()
    generation = GenerationStep(
      repo=repo,
      generator=generator or TemplateCypherGenerator(max_supply=max_supply, rng=random.Random(1993)),
      fee_address=fee_address,
      timeout_seconds=generation_timeout,
      clock=clock,
    )
    inscription = InscriptionStep(repo=repo, inscriber=inscriber, timeout_seconds=inscription_timeout, clock=clock)
    registry = StepRegistry({"generation": generation, "inscription": inscription})
    payments = PaymentStep(repo=repo, enqueuer=enqueuer, checker=checker or UnconfiguredPaymentChecker(), verification=verification, clock=clock)
    orchestrator = MintOrchestrator(
      repo=repo,
      allocator=allocator,
      enqueuer=enqueuer,
      payments=payments,
      price=100,
      max_supply=max_supply,
      session_ttl_seconds=session_ttl_seconds,
      clock=clock,
    )

    async def drain() -> None:
      """Run queued steps in order, including steps they enqueue."""
      while enqueuer.enqueued:
        session_id, step = enqueuer.enqueued.pop(0)
        await registry.dispatch(session_id, step)

    return SimpleNamespace(
      clock=clock,
      repo=repo,
      allocator=allocator,
      enqueuer=enqueuer,
      inscriber=inscriber,
      generation=generation,
      inscription=inscription,
      registry=registry,
      payments=payments,
      orchestrator=orchestrator,
      drain=drain,
    )

  return _build


@pytest.fixture
def mint_env(make_mint_env) -> SimpleNamespace:
  return make_mint_env()


@pytest.fixture
def failing_generator_cls():
  return FailingGenerator


@pytest.fixture
def slow_generator() -> SlowGenerator:
  return SlowGenerator()


@pytest.fixture
def stub_payment_checker_cls():
  return StubPaymentChecker
