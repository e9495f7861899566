from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Annotated, Any

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from mint_engine.config import Settings, get_settings
from mint_engine.core.exceptions import UnauthorizedError
from mint_engine.jobs.models import Identity

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"

security_scheme = HTTPBearer(auto_error=False)


def create_access_token(settings: Settings, identity: Identity, *, now: datetime) -> tuple[str, datetime]:
  """Sign a bearer token for a verified wallet; returns the token and its expiry."""
  expires_at = now + timedelta(seconds=settings.jwt_ttl_seconds)
  claims: dict[str, Any] = {"sub": identity.user_id, "wallet": identity.wallet_address, "iss": settings.jwt_issuer, "iat": now, "exp": expires_at}
  token = jwt.encode(claims, settings.jwt_secret, algorithm=JWT_ALGORITHM)
  return token, expires_at


def decode_access_token(settings: Settings, token: str) -> Identity:
  """Verify a bearer token and return the identity it carries."""
  try:
    claims = jwt.decode(token, settings.jwt_secret, algorithms=[JWT_ALGORITHM], issuer=settings.jwt_issuer, options={"require": ["sub", "exp", "iss"]})
  except jwt.ExpiredSignatureError as exc:
    raise UnauthorizedError("Token expired", code="TOKEN_EXPIRED") from exc
  except jwt.PyJWTError as exc:
    logger.warning("JWT verification failed: %s", type(exc).__name__)
    raise UnauthorizedError("Invalid token", code="INVALID_TOKEN") from exc

  wallet = claims.get("wallet")
  if not isinstance(wallet, str) or not wallet:
    raise UnauthorizedError("Invalid token", code="INVALID_TOKEN")
  return Identity(user_id=str(claims["sub"]), wallet_address=wallet)


async def get_current_identity(credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security_scheme)], settings: Annotated[Settings, Depends(get_settings)]) -> Identity:
  """Resolve the caller from the Authorization bearer token."""
  if credentials is None or not credentials.credentials:
    raise UnauthorizedError("Authentication required", code="UNAUTHORIZED")
  return decode_access_token(settings, credentials.credentials)
