import json
from datetime import UTC, datetime
from unittest.mock import AsyncMock, Mock, patch

import httpx
import pytest

from mint_engine.jobs.models import ArtifactRecord, Traits
from mint_engine.services.inscriber import HttpInscriber, InscriptionError, SimulatedInscriber, build_inscription_content


def _artifact() -> ArtifactRecord:
  now = datetime(2026, 1, 1, tzinfo=UTC)
  traits = Traits("RARE", "Node Runner", "Data Visor", "Steel", "Hex Rain", "Low", "Void Black", "#00FF00")
  return ArtifactRecord(
    id="0f8fad5b-d9cb-469f-a165-70867728950e",
    token_id=42,
    traits=traits,
    status="AWAITING_PAYMENT",
    owner_address="DH5yaieqoZN36fDVciNyRueRGvGLR3mr7L",
    user_id="user-1",
    mint_price=100,
    created_at=now,
    updated_at=now,
    trait_metadata={"name": "Cypher #42", "tokenId": 42},
    content_reference="sha256:abc",
  )


def test_inscription_content_is_canonical_json():
  content = build_inscription_content(_artifact())
  assert json.loads(content) == {"name": "Cypher #42", "tokenId": 42, "contentReference": "sha256:abc"}
  assert content == b'{"contentReference":"sha256:abc","name":"Cypher #42","tokenId":42}'


@pytest.mark.anyio
async def test_simulated_inscriber_returns_references():
  result = await SimulatedInscriber().inscribe(_artifact(), b"{}")
  assert result.inscription_id.startswith("dogi_")
  assert result.inscription_id.endswith("_0f8fad5b")
  assert result.tx_hash.startswith("tx_")


@pytest.mark.anyio
async def test_http_inscriber_posts_content():
  with patch("mint_engine.services.inscriber.httpx.AsyncClient") as mock_client_cls:
    mock_client = AsyncMock()
    mock_client_cls.return_value.__aenter__.return_value = mock_client
    response = Mock()
    response.raise_for_status = Mock()
    response.json.return_value = {"inscriptionId": "abc123i0", "txHash": "deadbeef"}
    mock_client.post.return_value = response

    result = await HttpInscriber(base_url="https://inscriber.test/", api_key="k").inscribe(_artifact(), b'{"a":1}')

  assert result.inscription_id == "abc123i0"
  args, kwargs = mock_client.post.call_args
  assert args[0] == "https://inscriber.test/inscriptions"
  assert kwargs["headers"]["Authorization"] == "Bearer k"
  assert kwargs["json"]["tokenId"] == 42


@pytest.mark.anyio
async def test_http_inscriber_rejects_incomplete_response():
  with patch("mint_engine.services.inscriber.httpx.AsyncClient") as mock_client_cls:
    mock_client = AsyncMock()
    mock_client_cls.return_value.__aenter__.return_value = mock_client
    response = Mock()
    response.raise_for_status = Mock()
    response.json.return_value = {"inscriptionId": "abc123i0"}
    mock_client.post.return_value = response

    with pytest.raises(InscriptionError, match="txHash"):
      await HttpInscriber(base_url="https://inscriber.test").inscribe(_artifact(), b"{}")


@pytest.mark.anyio
async def test_http_inscriber_wraps_transport_errors():
  with patch("mint_engine.services.inscriber.httpx.AsyncClient") as mock_client_cls:
    mock_client = AsyncMock()
    mock_client_cls.return_value.__aenter__.return_value = mock_client
    mock_client.post.side_effect = httpx.ConnectError("refused")

    with pytest.raises(InscriptionError, match="unreachable"):
      await HttpInscriber(base_url="https://inscriber.test").inscribe(_artifact(), b"{}")
