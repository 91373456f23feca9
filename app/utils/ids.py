"""Identifier utilities."""

from __future__ import annotations

import hashlib
import secrets
import string

DEVICE_UUID_LENGTH = 12
WEBPUSH_TOKEN_PREFIX = "wp_"


def generate_nanoid(size: int = DEVICE_UUID_LENGTH) -> str:
  """Return a short non-sequential id suitable for public references."""
  alphabet = string.ascii_letters + string.digits
  return "".join(secrets.choice(alphabet) for _ in range(size))


def webpush_device_token(endpoint: str) -> str:
  """Derive the deterministic synthetic token stored for a Web Push endpoint."""
  digest = hashlib.sha256(endpoint.encode("utf-8")).hexdigest()
  return f"{WEBPUSH_TOKEN_PREFIX}{digest[:64]}"


def redact_token(token: str | None) -> str:
  """Return a log-safe prefix of a device token."""
  if not token:
    return "<none>"
  return f"{token[:8]}…"
