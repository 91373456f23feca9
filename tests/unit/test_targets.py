from __future__ import annotations

import logging

from app.notifications.contracts import ApnsTarget, FcmTarget, Provider, WebPushSubscription, WebPushTarget
from app.notifications.targets import parse_targets

_SUBSCRIPTION = {"endpoint": "https://push.example/abc", "keys": {"p256dh": "BKey", "auth": "secret"}}


def test_empty_routes_produce_no_targets():
  for raw in (None, "", [], {}):
    assert parse_targets(raw) == {}


def test_bare_string_is_a_single_fcm_token():
  assert parse_targets("tok-1") == {Provider.FCM: FcmTarget(tokens=("tok-1",))}


def test_mapping_accepts_string_list_and_token_mapping():
  targets = parse_targets({"fcm": ["a", "b", "a", ""], "apns": {"token": "ios-1"}, "webpush": _SUBSCRIPTION})

  assert targets[Provider.FCM] == FcmTarget(tokens=("a", "b"))
  assert targets[Provider.APNS] == ApnsTarget(tokens=("ios-1",))
  assert targets[Provider.WEBPUSH] == WebPushTarget(subscriptions=(WebPushSubscription(endpoint="https://push.example/abc", p256dh="BKey", auth="secret"),))


def test_empty_provider_entries_and_unknown_providers_are_omitted():
  targets = parse_targets({"fcm": [], "apns": None, "sms": "123", "webpush": []})

  assert targets == {}


def test_malformed_subscriptions_are_skipped_with_warning(caplog):
  caplog.set_level(logging.WARNING, logger="app.notifications.targets")
  broken = {"endpoint": "https://push.example/x", "keys": {"p256dh": "k"}}

  targets = parse_targets({"webpush": [broken, _SUBSCRIPTION, "nope"]})

  assert len(targets[Provider.WEBPUSH].subscriptions) == 1
  assert sum("Invalid WebPush subscription format" in record.message for record in caplog.records) == 2
