from __future__ import annotations

import logging
from dataclasses import dataclass, field

import pytest
from sqlalchemy import select

from app.notifications.channel import PushChannel
from app.notifications.contracts import DeviceStatus, Provider, ProviderResult, TargetOutcome
from app.notifications.device_registry import DeviceRegistration, DeviceRegistry
from app.notifications.service import PushNotificationService
from app.schema.sql import PushDevice

pytestmark = pytest.mark.anyio

USER_UUID = "usr000000001"
_ENDPOINT = "https://updates.push.services.mozilla.com/wpush/v2/xyz"


@dataclass
class _RecordingAdapter:
  provider: Provider
  rejected: set[str] = field(default_factory=set)
  targets: list = field(default_factory=list)

  def is_available(self) -> bool:
    return True

  def send(self, target, payload) -> ProviderResult:
    self.targets.append(target)
    if self.provider is Provider.WEBPUSH:
      names = [subscription.endpoint for subscription in target.subscriptions]
    else:
      names = list(target.tokens)
    outcomes = tuple(TargetOutcome(target=name, success=name not in self.rejected, status_code=410 if name in self.rejected else 201, invalid_token=name in self.rejected) for name in names)
    return ProviderResult(provider=self.provider, outcomes=outcomes)


async def _register_devices(registry: DeviceRegistry) -> None:
  await registry.register(DeviceRegistration(user_uuid=USER_UUID, provider="fcm", platform="android", device_token="fcm-live", device_id="phone"))
  await registry.register(DeviceRegistration(user_uuid=USER_UUID, provider="fcm", platform="android", device_token="fcm-stale", device_id="tablet"))
  await registry.register(DeviceRegistration(user_uuid=USER_UUID, provider="webpush", platform="web", subscription={"endpoint": _ENDPOINT, "keys": {"p256dh": "BKey", "auth": "secret"}}))


async def test_notify_user_routes_active_devices_and_prunes_rejected_tokens(session_factory):
  registry = DeviceRegistry(session_factory=session_factory)
  await _register_devices(registry)
  fcm = _RecordingAdapter(Provider.FCM, rejected={"fcm-stale"})
  webpush = _RecordingAdapter(Provider.WEBPUSH, rejected={_ENDPOINT})
  service = PushNotificationService(channel=PushChannel(adapters=[fcm, webpush]), registry=registry)

  report = await service.notify_user(USER_UUID, {"title": "Shipped", "body": "Your order is on its way"})

  assert report.sent is True
  assert sorted(fcm.targets[0].tokens) == ["fcm-live", "fcm-stale"]
  assert webpush.targets[0].subscriptions[0].endpoint == _ENDPOINT

  async with session_factory() as session:
    rows = (await session.execute(select(PushDevice))).scalars().all()
  statuses = {row.device_token: row.status for row in rows}
  assert statuses["fcm-live"] is DeviceStatus.ACTIVE
  assert statuses["fcm-stale"] is DeviceStatus.INVALID
  assert [status for token, status in statuses.items() if token.startswith("wp_")] == [DeviceStatus.INVALID]


async def test_notify_user_without_devices_sends_nothing(session_factory):
  fcm = _RecordingAdapter(Provider.FCM)
  service = PushNotificationService(channel=PushChannel(adapters=[fcm]), registry=DeviceRegistry(session_factory=session_factory))

  report = await service.notify_user(USER_UUID, {"title": "Hello"})

  assert report.sent is False
  assert fcm.targets == []


async def test_device_lookup_failure_is_logged_not_raised(caplog, monkeypatch):
  caplog.set_level(logging.ERROR, logger="app.notifications.service")
  monkeypatch.setattr("app.notifications.device_registry.get_session_factory", lambda: None)
  service = PushNotificationService(channel=PushChannel(adapters=[]), registry=DeviceRegistry())

  report = await service.notify_user(USER_UUID, {"title": "Hello"})

  assert report.sent is False
  assert any("Push device lookup failed" in record.message for record in caplog.records)
