from __future__ import annotations

import logging
from dataclasses import dataclass, field

from app.notifications.channel import ChannelOptions, PushChannel
from app.notifications.contracts import NotificationPayload, Provider, ProviderResult, SendErrorKind, TargetOutcome


@dataclass
class _Notifiable:
  route: object
  notifiable_id: str = "user-1"

  def route_notification_for(self, channel: str):
    return self.route if channel == "push" else None


@dataclass
class _FakeAdapter:
  provider: Provider
  succeed: bool = True
  raises: bool = False
  invalid: tuple[str, ...] = ()
  available: bool = True
  calls: list = field(default_factory=list)

  def is_available(self) -> bool:
    return self.available

  def send(self, target, payload: NotificationPayload) -> ProviderResult:
    self.calls.append((target, payload))
    if self.raises:
      raise RuntimeError("boom")
    outcomes = tuple(TargetOutcome(target=token, success=self.succeed and token not in self.invalid, invalid_token=token in self.invalid) for token in getattr(target, "tokens", ("sub",)))
    return ProviderResult(provider=self.provider, outcomes=outcomes)


_ROUTE = {"fcm": ["f1"], "apns": ["a1"], "webpush": [{"endpoint": "https://push.example/1", "keys": {"p256dh": "k", "auth": "s"}}]}


def test_no_targets_means_no_adapter_calls():
  fcm = _FakeAdapter(Provider.FCM)
  channel = PushChannel(adapters=[fcm])

  report = channel.dispatch(_Notifiable(route={}), {"title": "t"})

  assert report.sent is False
  assert fcm.calls == []


def test_providers_are_tried_in_configured_order_and_results_are_or_ed():
  order: list[Provider] = []
  adapters = [_FakeAdapter(Provider.FCM, succeed=False), _FakeAdapter(Provider.APNS, succeed=True), _FakeAdapter(Provider.WEBPUSH, succeed=False)]
  for adapter in adapters:
    original = adapter.send

    def _tracking(target, payload, _adapter=adapter, _original=original):
      order.append(_adapter.provider)
      return _original(target, payload)

    adapter.send = _tracking
  channel = PushChannel(adapters=adapters, options=ChannelOptions(default_order=(Provider.WEBPUSH, Provider.APNS, Provider.FCM)))

  assert channel.send(_Notifiable(route=_ROUTE), {"title": "t", "body": "b"}) is True
  assert order == [Provider.WEBPUSH, Provider.APNS, Provider.FCM]


def test_every_provider_failing_returns_false():
  adapters = [_FakeAdapter(Provider.FCM, succeed=False), _FakeAdapter(Provider.APNS, succeed=False)]

  assert PushChannel(adapters=adapters).send(_Notifiable(route={"fcm": "f1", "apns": "a1"}), {"title": "t"}) is False


def test_disabled_provider_is_skipped():
  fcm = _FakeAdapter(Provider.FCM)
  apns = _FakeAdapter(Provider.APNS)
  channel = PushChannel(adapters=[fcm, apns], options=ChannelOptions(enabled=frozenset({Provider.APNS})))

  report = channel.dispatch(_Notifiable(route={"fcm": "f1", "apns": "a1"}), {"title": "t"})

  assert report.sent is True
  assert fcm.calls == []
  assert len(apns.calls) == 1


def test_adapter_exception_does_not_stop_other_providers(caplog):
  caplog.set_level(logging.WARNING, logger="app.notifications.channel")
  fcm = _FakeAdapter(Provider.FCM, raises=True)
  apns = _FakeAdapter(Provider.APNS)

  report = PushChannel(adapters=[fcm, apns]).dispatch(_Notifiable(route={"fcm": "f1", "apns": "a1"}), {"title": "t"})

  assert report.sent is True
  assert len(apns.calls) == 1
  assert report.attempts[0].error.kind is SendErrorKind.TRANSPORT
  assert any("Push provider fcm raised" in record.message for record in caplog.records)


def test_payload_is_formatted_once_with_subject_fallback():
  fcm = _FakeAdapter(Provider.FCM)
  apns = _FakeAdapter(Provider.APNS)

  PushChannel(adapters=[fcm, apns]).send(_Notifiable(route={"fcm": "f1", "apns": "a1"}), {"subject": "Weekly digest", "message": "3 new items"})

  fcm_payload = fcm.calls[0][1]
  assert fcm_payload is apns.calls[0][1]
  assert (fcm_payload.title, fcm_payload.body) == ("Weekly digest", "3 new items")


def test_invalid_tokens_are_grouped_by_provider():
  fcm = _FakeAdapter(Provider.FCM, invalid=("stale",))

  report = PushChannel(adapters=[fcm]).dispatch(_Notifiable(route={"fcm": ["ok", "stale"]}), {"title": "t"})

  assert report.sent is True
  assert report.invalid_tokens() == {Provider.FCM: ["stale"]}


def test_track_delivery_logs_outcome(caplog):
  caplog.set_level(logging.INFO, logger="app.notifications.channel")
  channel = PushChannel(adapters=[_FakeAdapter(Provider.FCM, succeed=False)], options=ChannelOptions(track_delivery=True))

  channel.send(_Notifiable(route="f1", notifiable_id="user-9"), {"title": "t"})

  assert any("Push notification delivery failed recipient=user-9" in record.message for record in caplog.records)


def test_availability_reflects_enabled_providers_only():
  fcm = _FakeAdapter(Provider.FCM, available=False)
  webpush = _FakeAdapter(Provider.WEBPUSH)

  assert PushChannel(adapters=[fcm, webpush]).available_providers() == [Provider.WEBPUSH]
  assert PushChannel(adapters=[fcm], options=ChannelOptions(enabled=frozenset())).is_available() is False
  assert PushChannel(adapters=[]).is_available() is True
