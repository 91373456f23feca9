"""Validate loosely-shaped routing targets into typed per-provider targets."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from app.notifications.contracts import ApnsTarget, DeliveryTarget, FcmTarget, Provider, WebPushSubscription, WebPushTarget

logger = logging.getLogger(__name__)


def parse_targets(raw: Any) -> dict[Provider, DeliveryTarget]:
  """Normalize a routing lookup result into typed targets.

  Accepted shapes per provider: a single token string, a list of tokens, a mapping with a
  `token` key, or (webpush only) a subscription object or list of them. A bare string is
  treated as a single FCM token. Providers whose value normalizes to nothing are omitted.
  """
  if raw is None or raw == "" or raw == [] or raw == {}:
    return {}

  if isinstance(raw, str):
    return {Provider.FCM: FcmTarget(tokens=(raw,))}

  if not isinstance(raw, Mapping):
    logger.warning("Unsupported push routing target type=%s", type(raw).__name__)
    return {}

  targets: dict[Provider, DeliveryTarget] = {}
  for key, value in raw.items():
    provider = Provider.parse(key)
    if provider is None:
      logger.debug("Ignoring routing target for unknown provider=%s", key)
      continue

    if provider is Provider.WEBPUSH:
      subscriptions = _subscriptions(value)
      if subscriptions:
        targets[provider] = WebPushTarget(subscriptions=subscriptions)
      continue

    tokens = _tokens(value)
    if not tokens:
      continue
    targets[provider] = FcmTarget(tokens=tokens) if provider is Provider.FCM else ApnsTarget(tokens=tokens)

  return targets


def _tokens(value: Any) -> tuple[str, ...]:
  if isinstance(value, Mapping):
    value = value.get("token")
  if isinstance(value, str):
    value = [value]
  if not isinstance(value, list | tuple):
    return ()

  tokens: list[str] = []
  for item in value:
    if item is None or isinstance(item, Mapping | list | tuple):
      continue
    token = str(item).strip()
    if token and token not in tokens:
      tokens.append(token)
  return tuple(tokens)


def _subscriptions(value: Any) -> tuple[WebPushSubscription, ...]:
  items = [value] if isinstance(value, Mapping) else value
  if not isinstance(items, list | tuple):
    return ()

  subscriptions: list[WebPushSubscription] = []
  for item in items:
    subscription = parse_subscription(item)
    if subscription is None:
      # Malformed entries are skipped so the rest of the batch still goes out.
      logger.warning("Invalid WebPush subscription format")
      continue
    subscriptions.append(subscription)
  return tuple(subscriptions)


def parse_subscription(item: Any) -> WebPushSubscription | None:
  """Return a subscription for a `{endpoint, keys: {p256dh, auth}}` mapping, else None."""
  if not isinstance(item, Mapping):
    return None
  keys = item.get("keys")
  if not isinstance(keys, Mapping):
    return None

  endpoint = item.get("endpoint")
  p256dh = keys.get("p256dh")
  auth = keys.get("auth")
  if not (isinstance(endpoint, str) and endpoint and isinstance(p256dh, str) and p256dh and isinstance(auth, str) and auth):
    return None
  return WebPushSubscription(endpoint=endpoint, p256dh=p256dh, auth=auth)
