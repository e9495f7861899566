"""Identifier utilities."""

from __future__ import annotations

import secrets
import string

_ALPHABET = string.ascii_letters + string.digits


def generate_nanoid(size: int = 16) -> str:
  """Return a short non-sequential id suitable for public references."""
  return "".join(secrets.choice(_ALPHABET) for _ in range(size))


def generate_session_id() -> str:
  """Return a new public mint session identifier."""
  return generate_nanoid(16)


def generate_nonce() -> str:
  """Return a single-use authentication challenge nonce."""
  return generate_nanoid(32)
