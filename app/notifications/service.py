"""Push orchestration for registered users."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from starlette.concurrency import run_in_threadpool

from app.notifications.channel import DispatchReport, PushChannel
from app.notifications.device_registry import DeviceRegistry
from app.notifications.routing import DeviceNotifiable

logger = logging.getLogger(__name__)


class PushNotificationService:
  """Dispatches pushes to a user's active devices and prunes tokens providers reject."""

  def __init__(self, *, channel: PushChannel, registry: DeviceRegistry) -> None:
    self._channel = channel
    self._registry = registry

  @property
  def channel(self) -> PushChannel:
    return self._channel

  async def notify_user(self, user_uuid: str, data: Mapping[str, Any]) -> DispatchReport:
    """Send a push to every active device of a user; never raises on delivery failures."""
    try:
      devices = await self._registry.active_devices(user_uuid)
    except Exception as exc:  # noqa: BLE001
      logger.error("Push device lookup failed user_uuid=%s error=%s", user_uuid, exc, exc_info=True)
      return DispatchReport(sent=False)

    notifiable = DeviceNotifiable.from_devices(user_uuid, devices)
    # Provider clients are blocking; keep them off the event loop.
    report = await run_in_threadpool(self._channel.dispatch, notifiable, data)

    for provider, tokens in report.invalid_tokens().items():
      try:
        await self._registry.invalidate_tokens(provider, tokens)
      except Exception as exc:  # noqa: BLE001
        logger.error("Failed invalidating rejected push tokens provider=%s error=%s", provider.value, exc, exc_info=True)

    return report
