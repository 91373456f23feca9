"""Routing lookup: turn a user's registered devices into push channel targets."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from app.notifications.contracts import Provider
from app.notifications.targets import parse_subscription
from app.schema.sql import PushDevice


def build_route(devices: Iterable[PushDevice]) -> dict[str, Any]:
  """Group device rows into `{provider: tokens | subscriptions}` for the push channel."""
  route: dict[str, list[Any]] = {}
  for device in devices:
    if device.provider is Provider.WEBPUSH:
      if parse_subscription(device.subscription_json) is not None:
        route.setdefault(Provider.WEBPUSH.value, []).append(device.subscription_json)
      continue
    if device.device_token:
      route.setdefault(device.provider.value, []).append(device.device_token)
  return route


@dataclass(frozen=True)
class DeviceNotifiable:
  """Notifiable backed by a user's active registry rows."""

  user_uuid: str
  route: dict[str, Any] = field(default_factory=dict)

  @classmethod
  def from_devices(cls, user_uuid: str, devices: Iterable[PushDevice]) -> DeviceNotifiable:
    return cls(user_uuid=user_uuid, route=build_route(devices))

  @property
  def notifiable_id(self) -> str:
    return self.user_uuid

  def route_notification_for(self, channel: str) -> Any:
    if channel != "push":
      return None
    return self.route
