from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from mint_engine.api.deps import get_database
from mint_engine.core.database import Database

router = APIRouter()

VERSION = "0.1.0"


@router.get("/health", include_in_schema=False)
async def health_check() -> dict[str, str]:
  """Return a simple liveness status."""
  return {"status": "ok", "version": VERSION}


@router.get("/health/ready", include_in_schema=False)
async def readiness_check(database: Database | None = Depends(get_database)) -> JSONResponse:  # noqa: B008
  """Report ready only when the database answers."""
  if database is None or not await database.ping():
    return JSONResponse(status_code=503, content={"status": "unavailable", "database": "down"})
  return JSONResponse(status_code=200, content={"status": "ok", "database": "up"})
