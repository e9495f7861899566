import logging
from typing import Any

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

logger = logging.getLogger("uvicorn.error")

_HTTP_STATUS_CODES = {
  400: "BAD_REQUEST",
  401: "UNAUTHORIZED",
  403: "FORBIDDEN",
  404: "NOT_FOUND",
  405: "METHOD_NOT_ALLOWED",
  409: "CONFLICT",
  429: "TOO_MANY_REQUESTS",
}


class MintError(Exception):
  """Base class for client-facing errors raised by mint operations."""

  status_code = status.HTTP_400_BAD_REQUEST
  default_code = "BAD_REQUEST"

  def __init__(self, message: str, *, code: str | None = None) -> None:
    super().__init__(message)
    self.message = message
    self.code = code or self.default_code


class BadRequestError(MintError):
  status_code = status.HTTP_400_BAD_REQUEST
  default_code = "BAD_REQUEST"


class UnauthorizedError(MintError):
  status_code = status.HTTP_401_UNAUTHORIZED
  default_code = "UNAUTHORIZED"


class ForbiddenError(MintError):
  status_code = status.HTTP_403_FORBIDDEN
  default_code = "FORBIDDEN"


class NotFoundError(MintError):
  status_code = status.HTTP_404_NOT_FOUND
  default_code = "NOT_FOUND"


class ConflictError(MintError):
  status_code = status.HTTP_409_CONFLICT
  default_code = "CONFLICT"


def _coerce_json_safe(value: Any) -> Any:
  """Convert unsupported values into JSON-safe primitives for error responses."""
  if value is None or isinstance(value, bool | int | float | str):
    return value
  if isinstance(value, dict):
    return {str(key): _coerce_json_safe(item) for key, item in value.items()}
  if isinstance(value, list | tuple | set):
    return [_coerce_json_safe(item) for item in value]
  if isinstance(value, BaseException):
    return type(value).__name__
  return str(value)


def _error_payload(code: str, message: str, *, request_id: str | None = None, details: Any = None) -> dict[str, Any]:
  """Build the error envelope returned for every failed request."""
  error: dict[str, Any] = {"code": code, "message": message}
  if details is not None:
    error["details"] = details
  payload: dict[str, Any] = {"success": False, "error": error}
  # Attach a request id so support can correlate client reports to server logs.
  if request_id:
    payload["requestId"] = request_id
  return payload


def _sanitize_validation_errors(errors: list[dict[str, Any]]) -> list[dict[str, Any]]:
  """Return validation errors without raw input payloads."""
  sanitized: list[dict[str, Any]] = []
  for error in errors:
    scrubbed = {key: value for key, value in error.items() if key not in {"input", "url"}}
    if "ctx" in scrubbed and isinstance(scrubbed["ctx"], dict):
      scrubbed_ctx = dict(scrubbed["ctx"])
      scrubbed_ctx.pop("input", None)
      scrubbed["ctx"] = scrubbed_ctx
    sanitized.append(_coerce_json_safe(scrubbed))
  return sanitized


def _request_id(request: Request) -> str | None:
  return getattr(request.state, "request_id", None)


async def mint_error_handler(request: Request, exc: MintError) -> JSONResponse:
  """Render domain errors with their stable code."""
  from mint_engine.config import get_settings

  request_id = _request_id(request)
  if get_settings().log_http_4xx:
    logger.warning("Mint error request_id=%s path=%s status_code=%s code=%s message=%s", request_id, request.url.path, exc.status_code, exc.code, exc.message)
  return JSONResponse(status_code=exc.status_code, content=_error_payload(exc.code, exc.message, request_id=request_id))


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
  """Global exception handler to catch unhandled errors."""
  request_id = _request_id(request)
  logger.error("Global exception request_id=%s path=%s error_type=%s", request_id, request.url.path, type(exc).__name__, exc_info=exc)
  return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=_error_payload("INTERNAL_ERROR", "Internal Server Error", request_id=request_id))


async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
  """Return 400 with sanitized validation details."""
  request_id = _request_id(request)
  sanitized_errors = _sanitize_validation_errors(list(exc.errors()))
  logger.warning("Request validation failed request_id=%s path=%s method=%s errors=%s", request_id, request.url.path, request.method, sanitized_errors)
  return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=_error_payload("VALIDATION_ERROR", "Validation failed", request_id=request_id, details=sanitized_errors))


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
  """Handle HTTPExceptions raised by FastAPI and dependencies without leaking 5xx detail."""
  from mint_engine.config import get_settings

  request_id = _request_id(request)
  if exc.status_code >= 500:
    logger.error("HTTPException request_id=%s path=%s status_code=%s detail=%s", request_id, request.url.path, exc.status_code, exc.detail)
    return JSONResponse(status_code=exc.status_code, content=_error_payload("INTERNAL_ERROR", "Internal Server Error", request_id=request_id))

  if get_settings().log_http_4xx:
    logger.warning("HTTPException request_id=%s path=%s status_code=%s detail=%s", request_id, request.url.path, exc.status_code, exc.detail)

  code = _HTTP_STATUS_CODES.get(exc.status_code, "HTTP_ERROR")
  message = exc.detail if isinstance(exc.detail, str) else code.replace("_", " ").title()
  return JSONResponse(status_code=exc.status_code, content=_error_payload(code, message, request_id=request_id), headers=getattr(exc, "headers", None))
