"""Wallet challenge/response authentication that issues bearer tokens."""

from __future__ import annotations

import base64
import binascii
import logging
import re
from datetime import timedelta
from typing import Protocol

from mint_engine.api.models import ChallengeResponse, UserInfo, VerifyResponse
from mint_engine.config import Settings
from mint_engine.core.exceptions import BadRequestError, UnauthorizedError
from mint_engine.core.security import create_access_token
from mint_engine.jobs.models import Identity
from mint_engine.storage.auth_repo import AuthRepository
from mint_engine.utils.clock import Clock, utc_now
from mint_engine.utils.ids import generate_nonce

logger = logging.getLogger(__name__)

# Mainnet addresses start with D, testnet with n.
WALLET_ADDRESS_PATTERN = re.compile(r"^[Dn][1-9A-HJ-NP-Za-km-z]{25,34}$")
CHALLENGE_MESSAGE = "Access The Cyphers. Nonce: {nonce}"
SIGNATURE_BYTES = 65
SIGNATURE_HEADER_RANGE = range(27, 43)


def is_valid_wallet_address(address: str) -> bool:
  return bool(WALLET_ADDRESS_PATTERN.match(address))


def challenge_message(nonce: str) -> str:
  return CHALLENGE_MESSAGE.format(nonce=nonce)


class SignatureFormatError(ValueError):
  """Raised when a signature is not a 65-byte compact recoverable signature."""


class SignatureVerifier(Protocol):
  """Contract for checking a wallet's signature over a challenge message."""

  async def verify(self, message: str, wallet_address: str, signature: str) -> bool:
    """Return True when `signature` over `message` was made by `wallet_address`."""


class DemoSignatureVerifier:
  """Accepts every signature; only for demo deployments."""

  async def verify(self, message: str, wallet_address: str, signature: str) -> bool:
    logger.warning("Demo mode: skipping signature verification wallet=%s", wallet_address)
    return True


def decode_compact_signature(signature: str) -> bytes:
  """Decode a base64 compact signature and check its length and header byte."""
  try:
    raw = base64.b64decode(signature, validate=True)
  except (binascii.Error, ValueError) as exc:
    raise SignatureFormatError("signature is not valid base64") from exc
  if len(raw) != SIGNATURE_BYTES:
    raise SignatureFormatError(f"signature must be {SIGNATURE_BYTES} bytes, got {len(raw)}")
  if raw[0] not in SIGNATURE_HEADER_RANGE:
    raise SignatureFormatError(f"signature header byte {raw[0]} is outside 27-42")
  return raw


class FormatCheckingVerifier:
  """Rejects malformed signatures, then delegates the cryptographic check."""

  def __init__(self, inner: SignatureVerifier | None = None) -> None:
    self._inner = inner

  async def verify(self, message: str, wallet_address: str, signature: str) -> bool:
    decode_compact_signature(signature)
    if self._inner is None:
      logger.warning("No cryptographic signature verifier configured; rejecting wallet=%s", wallet_address)
      return False
    return await self._inner.verify(message, wallet_address, signature)


def build_signature_verifier(settings: Settings, inner: SignatureVerifier | None = None) -> SignatureVerifier:
  if settings.demo_mode:
    return DemoSignatureVerifier()
  return FormatCheckingVerifier(inner)


class AuthService:
  """Issues single-use challenges and exchanges signed ones for bearer tokens."""

  def __init__(self, *, repo: AuthRepository, verifier: SignatureVerifier, settings: Settings, clock: Clock = utc_now) -> None:
    self._repo = repo
    self._verifier = verifier
    self._settings = settings
    self._clock = clock

  async def issue_challenge(self, wallet_address: str | None = None) -> ChallengeResponse:
    if wallet_address is not None and not is_valid_wallet_address(wallet_address):
      raise BadRequestError("Invalid Dogecoin address format", code="INVALID_ADDRESS")

    nonce = generate_nonce()
    expires_at = self._clock() + timedelta(seconds=self._settings.challenge_ttl_seconds)
    await self._repo.create_challenge(nonce, wallet_address, expires_at)
    logger.debug("Challenge issued wallet=%s expires_at=%s", wallet_address, expires_at)
    return ChallengeResponse(nonce=nonce, message=challenge_message(nonce), expires_at=expires_at)

  async def verify(self, nonce: str, signature: str, wallet_address: str) -> VerifyResponse:
    if not is_valid_wallet_address(wallet_address):
      raise BadRequestError("Invalid Dogecoin address format", code="INVALID_ADDRESS")

    challenge = await self._repo.get_challenge(nonce)
    if challenge is None:
      raise UnauthorizedError("Challenge not found", code="CHALLENGE_NOT_FOUND")
    if challenge.used:
      raise UnauthorizedError("Challenge already used", code="CHALLENGE_USED")
    now = self._clock()
    if challenge.expires_at < now:
      raise UnauthorizedError("Challenge expired", code="CHALLENGE_EXPIRED")
    if challenge.wallet_address and challenge.wallet_address != wallet_address:
      raise UnauthorizedError("Address mismatch", code="ADDRESS_MISMATCH")

    try:
      valid = await self._verifier.verify(challenge_message(nonce), wallet_address, signature)
    except SignatureFormatError as exc:
      logger.info("Signature format rejected wallet=%s reason=%s", wallet_address, exc)
      raise UnauthorizedError("Invalid signature format", code="INVALID_SIGNATURE_FORMAT") from exc
    if not valid:
      raise UnauthorizedError("Invalid signature", code="INVALID_SIGNATURE")

    # Consuming is a conditional update, so two concurrent verifies of one nonce cannot both succeed.
    if not await self._repo.consume_challenge(nonce):
      raise UnauthorizedError("Challenge already used", code="CHALLENGE_USED")

    user = await self._repo.upsert_user(wallet_address, now)
    identity = Identity(user_id=user.id, wallet_address=user.wallet_address)
    token, expires_at = create_access_token(self._settings, identity, now=now)
    logger.info("Wallet authenticated user_id=%s wallet=%s login_count=%s", user.id, wallet_address, user.login_count)
    return VerifyResponse(token=token, expires_at=expires_at, user=UserInfo(id=user.id, wallet_address=user.wallet_address))
