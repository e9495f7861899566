import pytest
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from httpx import ASGITransport, AsyncClient
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from mint_engine.core.exceptions import ConflictError, MintError, NotFoundError, global_exception_handler, http_exception_handler, mint_error_handler, request_validation_exception_handler
from mint_engine.core.middleware import RequestLoggingMiddleware


class _Body(BaseModel):
  value: int


def _build_app() -> FastAPI:
  app = FastAPI()
  app.add_exception_handler(Exception, global_exception_handler)
  app.add_exception_handler(StarletteHTTPException, http_exception_handler)
  app.add_exception_handler(MintError, mint_error_handler)
  app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
  app.add_middleware(RequestLoggingMiddleware)

  @app.get("/conflict")
  async def conflict() -> None:
    raise ConflictError("Already active", code="ACTIVE_SESSION_EXISTS")

  @app.get("/missing")
  async def missing() -> None:
    raise NotFoundError("Nope")

  @app.get("/teapot")
  async def teapot() -> None:
    raise HTTPException(status_code=403, detail="Invalid task secret.")

  @app.get("/crash")
  async def crash() -> None:
    raise RuntimeError("secret internals")

  @app.post("/validate")
  async def validate(body: _Body) -> dict[str, int]:
    return {"value": body.value}

  return app


@pytest.fixture
async def client():
  transport = ASGITransport(app=_build_app(), raise_app_exceptions=False)
  async with AsyncClient(transport=transport, base_url="http://test") as ac:
    yield ac


@pytest.mark.anyio
async def test_mint_error_renders_code_and_request_id(client):
  response = await client.get("/conflict", headers={"x-request-id": "req-123"})
  assert response.status_code == 409
  body = response.json()
  assert body == {"success": False, "error": {"code": "ACTIVE_SESSION_EXISTS", "message": "Already active"}, "requestId": "req-123"}


@pytest.mark.anyio
async def test_mint_error_uses_default_code(client):
  response = await client.get("/missing")
  assert response.status_code == 404
  assert response.json()["error"]["code"] == "NOT_FOUND"


@pytest.mark.anyio
async def test_http_exception_maps_status_to_code(client):
  response = await client.get("/teapot")
  assert response.status_code == 403
  assert response.json()["error"] == {"code": "FORBIDDEN", "message": "Invalid task secret."}


@pytest.mark.anyio
async def test_unhandled_error_does_not_leak_details(client):
  response = await client.get("/crash")
  assert response.status_code == 500
  assert response.json()["error"] == {"code": "INTERNAL_ERROR", "message": "Internal Server Error"}
  assert "secret internals" not in response.text


@pytest.mark.anyio
async def test_validation_error_is_400_without_input_echo(client):
  response = await client.post("/validate", json={"value": "not-a-number-secret"})
  assert response.status_code == 400
  body = response.json()
  assert body["error"]["code"] == "VALIDATION_ERROR"
  assert "not-a-number-secret" not in response.text
