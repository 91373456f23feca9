from __future__ import annotations

import threading
import time

from app.notifications.credential_cache import CredentialCache, cache_key


class _Clock:
  def __init__(self, now: float = 1_000.0) -> None:
    self.now = now

  def __call__(self) -> float:
    return self.now


def test_cached_token_reused_within_expiry_window():
  clock = _Clock()
  cache = CredentialCache(clock=clock)
  calls = []

  def _refresh():
    calls.append(1)
    return f"token-{len(calls)}", 3600

  first = cache.get_or_refresh("svc@example.iam", "scope", _refresh)
  clock.now += 1800
  second = cache.get_or_refresh("svc@example.iam", "scope", _refresh)

  assert first == second == "token-1"
  assert len(calls) == 1


def test_refresh_after_expiry_runs_once():
  clock = _Clock()
  cache = CredentialCache(clock=clock)
  calls = []

  def _refresh():
    calls.append(1)
    return f"token-{len(calls)}", 3600

  cache.get_or_refresh("svc", "scope", _refresh)
  # Stored expiry is now + 3540; inside the 30 second skew the token is treated as expired.
  clock.now += 3540 - 29
  assert cache.get_or_refresh("svc", "scope", _refresh) == "token-2"
  assert cache.get_or_refresh("svc", "scope", _refresh) == "token-2"
  assert len(calls) == 2


def test_set_applies_early_refresh_margin_and_floor():
  clock = _Clock(now=0.0)
  cache = CredentialCache(clock=clock)

  assert cache.set("a", "t", 3600).expires_at == 3540
  assert cache.set("b", "t", 30).expires_at == 60


def test_keys_are_scoped_by_issuer_and_scope():
  assert cache_key("svc", "scope-a") != cache_key("svc", "scope-b")
  assert cache_key("svc", "scope-a") == cache_key("svc", "scope-a")

  cache = CredentialCache()
  cache.get_or_refresh("svc", "scope-a", lambda: ("a", 3600))
  assert cache.get_or_refresh("svc", "scope-b", lambda: ("b", 3600)) == "b"


def test_concurrent_callers_coalesce_into_one_refresh():
  cache = CredentialCache()
  calls = []
  results = []
  gate = threading.Event()

  def _refresh():
    calls.append(1)
    gate.wait(timeout=1)
    time.sleep(0.05)
    return "shared", 3600

  def _worker():
    results.append(cache.get_or_refresh("svc", "scope", _refresh))

  threads = [threading.Thread(target=_worker) for _ in range(8)]
  for thread in threads:
    thread.start()
  gate.set()
  for thread in threads:
    thread.join(timeout=5)

  assert results == ["shared"] * 8
  assert len(calls) == 1
