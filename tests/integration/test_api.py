import base64
from dataclasses import replace
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient

from mint_engine.config import get_settings
from mint_engine.core.security import create_access_token
from mint_engine.jobs.models import Identity
from mint_engine.main import app
from mint_engine.services.auth import AuthService, DemoSignatureVerifier
from mint_engine.services.gallery import GalleryService

ALICE = Identity(user_id="user-alice", wallet_address="DH5yaieqoZN36fDVciNyRueRGvGLR3mr7L")
BOB = Identity(user_id="user-bob", wallet_address="DLCDJhnh6aGotar6b182jpzbNEyXb3C361")
SIGNATURE = base64.b64encode(bytes([31]) + b"\x01" * 64).decode()


def _auth_headers(identity: Identity, clock) -> dict[str, str]:
  token, _ = create_access_token(get_settings(), identity, now=clock())
  return {"authorization": f"Bearer {token}"}


@pytest.fixture
async def api(mint_env, auth_repo):
  app.state.orchestrator = mint_env.orchestrator
  app.state.step_registry = mint_env.registry
  app.state.gallery_service = GalleryService(mint_env.repo)
  app.state.auth_service = AuthService(repo=auth_repo, verifier=DemoSignatureVerifier(), settings=get_settings(), clock=mint_env.clock)
  app.state.database = None
  async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
    yield client
  app.dependency_overrides.clear()


@pytest.mark.anyio
async def test_mint_request_requires_bearer_token(api):
  response = await api.post("/api/mint/request")
  assert response.status_code == 401
  assert response.json()["error"]["code"] == "UNAUTHORIZED"


@pytest.mark.anyio
async def test_mint_lifecycle_over_http(api, mint_env):
  headers = _auth_headers(ALICE, mint_env.clock)

  response = await api.post("/api/mint/request", headers=headers)
  assert response.status_code == 200
  body = response.json()
  assert body["success"] is True
  session_id = body["data"]["sessionId"]
  assert body["data"]["status"] == "PENDING"
  assert body["data"]["progress"] == 5

  await mint_env.drain()
  status = (await api.get(f"/api/mint/status/{session_id}", headers=headers)).json()["data"]
  assert status["status"] == "AWAITING_PAYMENT"
  assert status["cypher"]["tokenId"] == body["data"]["tokenId"]

  paid = await api.post("/api/mint/confirm-payment", json={"sessionId": session_id, "txHash": "txABC0123456789"}, headers=headers)
  assert paid.status_code == 200
  assert paid.json()["data"]["status"] == "PAYMENT_RECEIVED"

  payment = (await api.get(f"/api/mint/payment-status/{session_id}", headers=headers)).json()["data"]
  assert payment["received"] is True
  assert payment["txHash"] == "txABC0123456789"

  await mint_env.drain()
  confirmed = (await api.get(f"/api/mint/status/{session_id}", headers=headers)).json()["data"]
  assert confirmed["status"] == "CONFIRMED"
  assert confirmed["progress"] == 100

  cyphers = (await api.get("/api/cyphers")).json()["data"]
  assert cyphers["total"] == 1
  detail = await api.get(f"/api/cyphers/{confirmed['tokenId']}")
  assert detail.status_code == 200
  assert detail.json()["data"]["ownerAddress"] == ALICE.wallet_address


@pytest.mark.anyio
async def test_duplicate_request_conflicts(api, mint_env):
  headers = _auth_headers(ALICE, mint_env.clock)
  await api.post("/api/mint/request", headers=headers)
  response = await api.post("/api/mint/request", headers=headers)
  assert response.status_code == 409
  assert response.json()["error"]["code"] == "ACTIVE_SESSION_EXISTS"


@pytest.mark.anyio
async def test_short_tx_hash_is_validation_error(api, mint_env):
  headers = _auth_headers(ALICE, mint_env.clock)
  session_id = (await api.post("/api/mint/request", headers=headers)).json()["data"]["sessionId"]
  response = await api.post("/api/mint/confirm-payment", json={"sessionId": session_id, "txHash": "   short   "}, headers=headers)
  assert response.status_code == 400
  assert response.json()["error"]["code"] == "VALIDATION_ERROR"


@pytest.mark.anyio
async def test_other_identity_is_forbidden(api, mint_env):
  session_id = (await api.post("/api/mint/request", headers=_auth_headers(ALICE, mint_env.clock))).json()["data"]["sessionId"]
  response = await api.get(f"/api/mint/status/{session_id}", headers=_auth_headers(BOB, mint_env.clock))
  assert response.status_code == 403


@pytest.mark.anyio
async def test_cancel_over_http(api, mint_env):
  headers = _auth_headers(ALICE, mint_env.clock)
  session_id = (await api.post("/api/mint/request", headers=headers)).json()["data"]["sessionId"]
  response = await api.post(f"/api/mint/cancel/{session_id}", headers=headers)
  assert response.status_code == 200
  assert response.json()["data"]["status"] == "FAILED"
  assert response.json()["data"]["errorCode"] == "CANCELLED"


@pytest.mark.anyio
async def test_public_stats_and_price(api):
  stats = (await api.get("/api/mint/stats")).json()["data"]
  assert stats == {"totalMinted": 0, "remaining": 1000, "maxSupply": 1000, "byRarityTier": {"LEGENDARY": 0, "EPIC": 0, "RARE": 0, "COMMON": 0}}
  price = (await api.get("/api/mint/price")).json()["data"]
  assert price == {"price": 100.0, "currency": "DOGE", "maxSupply": 1000}


@pytest.mark.anyio
async def test_gallery_rejects_oversized_limit(api):
  response = await api.get("/api/cyphers", params={"limit": 500})
  assert response.status_code == 400


@pytest.mark.anyio
async def test_unknown_cypher_is_not_found(api):
  response = await api.get("/api/cyphers/77")
  assert response.status_code == 404
  assert response.json()["error"]["code"] == "CYPHER_NOT_FOUND"


@pytest.mark.anyio
async def test_wallet_login_flow(api):
  challenge = (await api.post("/api/auth/challenge", json={"walletAddress": ALICE.wallet_address})).json()["data"]
  verified = await api.post("/api/auth/verify", json={"nonce": challenge["nonce"], "signature": SIGNATURE, "walletAddress": ALICE.wallet_address})
  assert verified.status_code == 200
  token = verified.json()["data"]["token"]

  me = await api.get("/api/auth/me", headers={"authorization": f"Bearer {token}"})
  assert me.status_code == 200
  assert me.json()["data"]["walletAddress"] == ALICE.wallet_address

  replay = await api.post("/api/auth/verify", json={"nonce": challenge["nonce"], "signature": SIGNATURE, "walletAddress": ALICE.wallet_address})
  assert replay.status_code == 401
  assert replay.json()["error"]["code"] == "CHALLENGE_USED"


@pytest.mark.anyio
async def test_challenge_without_body(api):
  response = await api.post("/api/auth/challenge")
  assert response.status_code == 200
  assert response.json()["data"]["message"].startswith("Access The Cyphers. Nonce: ")


@pytest.mark.anyio
async def test_task_endpoint_dispatches_step(api, mint_env):
  app.dependency_overrides[get_settings] = lambda: replace(get_settings(), task_secret="test-task-secret")
  started = await mint_env.orchestrator.start(ALICE)

  response = await api.post("/internal/tasks/process-step", json={"sessionId": started.session_id, "step": "generation"}, headers={"x-mint-task-secret": "test-task-secret"})

  assert response.status_code == 200
  assert response.json() == {"status": "accepted"}
  assert (await mint_env.repo.get_session(started.session_id)).status == "AWAITING_PAYMENT"


@pytest.mark.anyio
async def test_task_endpoint_rejects_bad_secret(api):
  app.dependency_overrides[get_settings] = lambda: replace(get_settings(), task_secret="test-task-secret")
  response = await api.post("/internal/tasks/process-step", json={"sessionId": "s1", "step": "generation"}, headers={"authorization": "Bearer wrong"})
  assert response.status_code == 403


@pytest.mark.anyio
async def test_task_endpoint_denies_when_unconfigured(api):
  app.dependency_overrides[get_settings] = lambda: replace(get_settings(), task_secret=None)
  response = await api.post("/internal/tasks/process-step", json={"sessionId": "s1", "step": "generation"}, headers={"x-mint-task-secret": ""})
  assert response.status_code == 403


@pytest.mark.anyio
async def test_health_endpoints(api):
  assert (await api.get("/health")).json()["status"] == "ok"
  assert (await api.get("/health/ready")).status_code == 503

  database = MagicMock()
  database.ping = AsyncMock(return_value=True)
  app.state.database = database
  ready = await api.get("/health/ready")
  assert ready.status_code == 200
  assert ready.json() == {"status": "ok", "database": "up"}
