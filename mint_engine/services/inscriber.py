"""Inscription collaborators that write artifact content on-chain."""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass
from typing import Protocol

import httpx

from mint_engine.config import Settings
from mint_engine.jobs.models import ArtifactRecord
from mint_engine.services.generator import canonical_json

logger = logging.getLogger(__name__)

INSCRIPTION_CONTENT_TYPE = "application/json"


class InscriptionError(RuntimeError):
  """Raised when the inscription service rejects or fails a request."""


@dataclass(frozen=True)
class InscriptionResult:
  inscription_id: str
  tx_hash: str


class Inscriber(Protocol):
  """Contract for inscribing artifact content."""

  async def inscribe(self, artifact: ArtifactRecord, content: bytes) -> InscriptionResult:
    """Inscribe `content` for `artifact` and return the on-chain references."""


def build_inscription_content(artifact: ArtifactRecord) -> bytes:
  """Return the canonical metadata document that gets inscribed for an artifact."""
  document = dict(artifact.trait_metadata)
  document.setdefault("tokenId", artifact.token_id)
  if artifact.content_reference:
    document["contentReference"] = artifact.content_reference
  return canonical_json(document).encode("utf-8")


class SimulatedInscriber:
  """Development inscriber that fabricates references without touching a chain."""

  async def inscribe(self, artifact: ArtifactRecord, content: bytes) -> InscriptionResult:
    now_ms = int(time.time() * 1000)
    result = InscriptionResult(inscription_id=f"dogi_{now_ms}_{artifact.id[:8]}", tx_hash=f"tx_{now_ms:x}{secrets.token_hex(4)}")
    logger.info("Simulated inscription token_id=%s inscription_id=%s bytes=%s", artifact.token_id, result.inscription_id, len(content))
    return result


class HttpInscriber:
  """Inscriber that delegates to an external Doginals inscription service over HTTP."""

  def __init__(self, *, base_url: str, api_key: str | None = None, timeout_seconds: float = 60.0) -> None:
    self._base_url = base_url.rstrip("/")
    self._api_key = api_key
    self._timeout = timeout_seconds

  async def inscribe(self, artifact: ArtifactRecord, content: bytes) -> InscriptionResult:
    headers = {"Content-Type": "application/json"}
    if self._api_key:
      headers["Authorization"] = f"Bearer {self._api_key}"
    payload = {
      "tokenId": artifact.token_id,
      "ownerAddress": artifact.owner_address,
      "contentType": INSCRIPTION_CONTENT_TYPE,
      "content": content.decode("utf-8"),
      "contentReference": artifact.content_reference,
    }

    async with httpx.AsyncClient(timeout=self._timeout) as client:
      try:
        response = await client.post(f"{self._base_url}/inscriptions", json=payload, headers=headers)
        response.raise_for_status()
      except httpx.HTTPStatusError as exc:
        raise InscriptionError(f"inscription service returned {exc.response.status_code}") from exc
      except httpx.HTTPError as exc:
        raise InscriptionError(f"inscription service unreachable: {exc}") from exc

    body = response.json()
    inscription_id = body.get("inscriptionId") if isinstance(body, dict) else None
    tx_hash = body.get("txHash") if isinstance(body, dict) else None
    if not inscription_id or not tx_hash:
      raise InscriptionError("inscription service response is missing inscriptionId or txHash")
    logger.info("Inscription created token_id=%s inscription_id=%s", artifact.token_id, inscription_id)
    return InscriptionResult(inscription_id=str(inscription_id), tx_hash=str(tx_hash))


def build_inscriber(settings: Settings) -> Inscriber:
  if settings.inscriber_provider == "http":
    if not settings.inscriber_url:
      raise ValueError("MINT_INSCRIBER_URL must be set for the http inscriber.")
    return HttpInscriber(base_url=settings.inscriber_url, api_key=settings.inscriber_api_key, timeout_seconds=settings.inscription_timeout_seconds)
  return SimulatedInscriber()
