"""Public gallery of confirmed Cyphers."""

from __future__ import annotations

import math

from mint_engine.api.models import CypherDetail, GalleryPageResponse
from mint_engine.core.exceptions import NotFoundError
from mint_engine.jobs.models import ArtifactRecord
from mint_engine.storage.mint_repo import GallerySort, MintRepository

MAX_PAGE_SIZE = 50


def artifact_to_detail(artifact: ArtifactRecord) -> CypherDetail:
  traits = artifact.traits
  metadata = artifact.trait_metadata
  return CypherDetail(
    token_id=artifact.token_id,
    name=artifact.name,
    description=metadata.get("description"),
    rarity_tier=traits.rarity_tier,
    rarity_role=traits.rarity_role,
    mask_type=traits.mask_type,
    material_type=traits.material_type,
    encryption_type=traits.encryption_type,
    glitch_level=traits.glitch_level,
    background_style=traits.background_style,
    accent_color=traits.accent_color,
    attributes=list(metadata.get("attributes") or []),
    owner_address=artifact.owner_address,
    content_reference=artifact.content_reference,
    inscription_id=artifact.inscription_id,
    inscription_tx=artifact.inscription_tx,
    inscribed_at=artifact.inscribed_at,
  )


class GalleryService:
  def __init__(self, repo: MintRepository) -> None:
    self._repo = repo

  async def list_cyphers(self, *, page: int = 1, limit: int = 20, rarity: str | None = None, sort: GallerySort = "newest") -> GalleryPageResponse:
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    page = max(1, page)
    result = await self._repo.list_confirmed_artifacts(page=page, limit=limit, rarity=rarity, sort=sort)
    return GalleryPageResponse(items=[artifact_to_detail(item) for item in result.items], page=page, limit=limit, total=result.total, total_pages=math.ceil(result.total / limit) if result.total else 0)

  async def get_cypher(self, token_id: int) -> CypherDetail:
    artifact = await self._repo.get_artifact_by_token(token_id)
    # Only inscribed artifacts are public; anything else is treated as not minted.
    if artifact is None or artifact.status != "CONFIRMED":
      raise NotFoundError(f"Cypher #{token_id} not found", code="CYPHER_NOT_FOUND")
    return artifact_to_detail(artifact)
