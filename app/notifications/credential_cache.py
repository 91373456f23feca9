"""Expiry-aware cache for short-lived provider access tokens."""

from __future__ import annotations

import hashlib
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# A cached token is only handed out while it has more than this many seconds left.
EXPIRY_SKEW_SECONDS = 30
# Refreshed tokens are stored as expiring this much earlier than the provider says.
EARLY_REFRESH_SECONDS = 60
MIN_TTL_SECONDS = 60

RefreshFn = Callable[[], tuple[str, int]]


@dataclass(frozen=True)
class CachedToken:
  """An access token with its absolute expiry as a unix timestamp."""

  token: str
  expires_at: float


def cache_key(issuer: str, scope: str) -> str:
  """Return the cache key for an (issuer identity, scope) pair."""
  return hashlib.sha256(f"{issuer}|{scope}".encode()).hexdigest()


class CredentialCache:
  """Thread-safe token cache with single-flight refresh per key.

  Tokens are never evicted; a refresh overwrites the previous entry for the key.
  """

  def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
    self._clock = clock
    self._entries: dict[str, CachedToken] = {}
    self._locks: dict[str, threading.Lock] = {}
    self._locks_guard = threading.Lock()

  def get(self, key: str) -> str | None:
    """Return the cached token for a key if it is still comfortably valid."""
    entry = self._entries.get(key)
    if entry is None or entry.expires_at <= self._clock() + EXPIRY_SKEW_SECONDS:
      return None
    return entry.token

  def set(self, key: str, token: str, ttl_seconds: int) -> CachedToken:
    """Store a token using the provider TTL minus the early-refresh margin."""
    expires_at = self._clock() + max(MIN_TTL_SECONDS, int(ttl_seconds) - EARLY_REFRESH_SECONDS)
    entry = CachedToken(token=token, expires_at=expires_at)
    self._entries[key] = entry
    return entry

  def get_or_refresh(self, issuer: str, scope: str, refresh: RefreshFn) -> str:
    """Return a valid token, invoking `refresh` at most once across concurrent callers."""
    key = cache_key(issuer, scope)
    cached = self.get(key)
    if cached is not None:
      return cached

    with self._lock_for(key):
      # Another caller may have refreshed while this one waited for the lock.
      cached = self.get(key)
      if cached is not None:
        return cached

      token, ttl_seconds = refresh()
      entry = self.set(key, token, ttl_seconds)
      logger.debug("Access token refreshed scope=%s expires_at=%s", scope, int(entry.expires_at))
      return token

  def clear(self) -> None:
    self._entries.clear()

  def _lock_for(self, key: str) -> threading.Lock:
    with self._locks_guard:
      lock = self._locks.get(key)
      if lock is None:
        lock = threading.Lock()
        self._locks[key] = lock
      return lock
