from fastapi import APIRouter, Depends, Query

from mint_engine.api.deps import get_gallery_service
from mint_engine.api.models import ApiResponse, CypherDetail, GalleryPageResponse, ok
from mint_engine.jobs.models import RarityTier
from mint_engine.services.gallery import MAX_PAGE_SIZE, GalleryService
from mint_engine.storage.mint_repo import GallerySort

router = APIRouter()


@router.get("", response_model=ApiResponse[GalleryPageResponse])
async def list_cyphers(  # noqa: B008
  page: int = Query(default=1, ge=1),
  limit: int = Query(default=20, ge=1, le=MAX_PAGE_SIZE),
  rarity: RarityTier | None = Query(default=None),
  sort: GallerySort = Query(default="newest"),
  gallery: GalleryService = Depends(get_gallery_service),  # noqa: B008
) -> ApiResponse[GalleryPageResponse]:
  """List confirmed Cyphers."""
  return ok(await gallery.list_cyphers(page=page, limit=limit, rarity=rarity, sort=sort))


@router.get("/{token_id}", response_model=ApiResponse[CypherDetail])
async def get_cypher(token_id: int, gallery: GalleryService = Depends(get_gallery_service)) -> ApiResponse[CypherDetail]:  # noqa: B008
  return ok(await gallery.get_cypher(token_id))
