from __future__ import annotations

import json

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from app.notifications.apns_sender import APNS_PRODUCTION_URL, APNS_SANDBOX_URL, ApnsConfig, ApnsSender, build_aps_body, build_headers
from app.notifications.contracts import ApnsTarget, FcmTarget, NotificationPayload, SendErrorKind
from app.notifications.credential_cache import CredentialCache


@pytest.fixture(scope="module")
def ec_key():
  return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture
def p8_path(ec_key, tmp_path):
  path = tmp_path / "AuthKey_KEY123.p8"
  path.write_bytes(ec_key.private_bytes(encoding=serialization.Encoding.PEM, format=serialization.PrivateFormat.PKCS8, encryption_algorithm=serialization.NoEncryption()))
  return str(path)


class _ApnsBackend:
  def __init__(self, responses: dict[str, tuple[int, dict | None]] | None = None) -> None:
    self.responses = responses or {}
    self.requests: list[httpx.Request] = []

  def __call__(self, request: httpx.Request) -> httpx.Response:
    self.requests.append(request)
    token = request.url.path.rsplit("/", 1)[-1]
    status_code, body = self.responses.get(token, (200, None))
    if body is None:
      return httpx.Response(status_code)
    return httpx.Response(status_code, json=body)


def _token_config(p8_path: str, **overrides) -> ApnsConfig:
  values = {"key_id": "KEY123", "team_id": "TEAM456", "bundle_id": "com.example.app", "p8_path": p8_path, "sandbox": True}
  values.update(overrides)
  return ApnsConfig(**values)


def _sender(config: ApnsConfig, backend: _ApnsBackend, clock=lambda: 1_700_000_000.0) -> ApnsSender:
  return ApnsSender(config=config, credential_cache=CredentialCache(clock=clock), transport=httpx.MockTransport(backend), clock=clock)


def test_send_uses_token_auth_and_reports_each_token(p8_path, ec_key):
  backend = _ApnsBackend({"gone": (410, {"reason": "Unregistered"}), "bad": (400, {"reason": "BadDeviceToken"}), "busy": (503, {"reason": "ServiceUnavailable"})})
  sender = _sender(_token_config(p8_path), backend)

  result = sender.send(ApnsTarget(tokens=("ok", "gone", "bad", "busy")), NotificationPayload(title="Hi", body="There", badge=2, apns_priority=7, collapse_id="order-1"))

  assert result.ok is True
  assert [(o.target, o.success, o.invalid_token) for o in result.outcomes] == [("ok", True, False), ("gone", False, True), ("bad", False, True), ("busy", False, False)]

  first = backend.requests[0]
  assert str(first.url) == f"{APNS_SANDBOX_URL}/3/device/ok"
  assert first.headers["apns-topic"] == "com.example.app"
  assert first.headers["apns-push-type"] == "alert"
  assert first.headers["apns-priority"] == "10"
  assert first.headers["apns-collapse-id"] == "order-1"
  assert json.loads(first.content) == {"aps": {"sound": "default", "alert": {"title": "Hi", "body": "There"}, "badge": 2}}

  scheme, provider_token = first.headers["authorization"].split(" ", 1)
  assert scheme == "bearer"
  assert jwt.get_unverified_header(provider_token)["kid"] == "KEY123"
  claims = jwt.decode(provider_token, ec_key.public_key(), algorithms=["ES256"])
  assert claims == {"iss": "TEAM456", "iat": 1_700_000_000}


def test_production_endpoint_when_sandbox_disabled(p8_path):
  backend = _ApnsBackend()

  _sender(_token_config(p8_path, sandbox=False), backend).send(ApnsTarget(tokens=("ok",)), NotificationPayload(title="t", body="b"))

  assert str(backend.requests[0].url) == f"{APNS_PRODUCTION_URL}/3/device/ok"


def test_provider_token_is_cached_between_sends(p8_path):
  clock_values = iter([1_700_000_000.0] * 4 + [1_700_000_600.0] * 4)
  now = {"value": 1_700_000_000.0}

  def _clock():
    now["value"] = next(clock_values, now["value"])
    return now["value"]

  backend = _ApnsBackend()
  sender = _sender(_token_config(p8_path), backend, clock=_clock)

  sender.send(ApnsTarget(tokens=("a",)), NotificationPayload(title="1", body=""))
  sender.send(ApnsTarget(tokens=("b",)), NotificationPayload(title="2", body=""))

  assert backend.requests[0].headers["authorization"] == backend.requests[1].headers["authorization"]


def test_incomplete_configuration_fails_closed(p8_path):
  backend = _ApnsBackend()
  sender = _sender(_token_config(p8_path, team_id=None), backend)

  result = sender.send(ApnsTarget(tokens=("a",)), NotificationPayload(title="t", body="b"))

  assert sender.is_configured() is False
  assert result.error.kind is SendErrorKind.CONFIGURATION
  assert backend.requests == []


def test_missing_http2_support_is_a_capability_error(p8_path, monkeypatch):
  monkeypatch.setattr("app.notifications.apns_sender.HTTP2_AVAILABLE", False)
  backend = _ApnsBackend()
  sender = _sender(_token_config(p8_path), backend)

  result = sender.send(ApnsTarget(tokens=("a",)), NotificationPayload(title="t", body="b"))

  assert sender.is_available() is False
  assert result.error.kind is SendErrorKind.CAPABILITY
  assert backend.requests == []


def test_unreadable_p8_key_is_a_configuration_error(tmp_path):
  sender = _sender(_token_config(str(tmp_path / "missing.p8")), _ApnsBackend())

  result = sender.send(ApnsTarget(tokens=("a",)), NotificationPayload(title="t", body="b"))

  assert result.error.kind is SendErrorKind.CONFIGURATION


def test_wrong_target_type_is_rejected(p8_path):
  result = _sender(_token_config(p8_path), _ApnsBackend()).send(FcmTarget(tokens=("a",)), NotificationPayload(title="t", body="b"))

  assert result.ok is False
  assert result.error.kind is SendErrorKind.CONFIGURATION


def test_build_headers_accepts_allowed_priority_and_sets_expiration():
  headers = build_headers(NotificationPayload(title="", body="", apns_priority=5, apns_push_type="background", ttl=60), topic="com.example.app", now=1000.0)

  assert headers == {"apns-push-type": "background", "apns-priority": "5", "apns-topic": "com.example.app", "apns-expiration": "1060"}


def test_build_aps_body_includes_category_and_custom_data():
  body = build_aps_body(NotificationPayload(title="T", body="", sound="chime.caf", category="INVITE", data={"room": "42"}))

  assert body == {"aps": {"sound": "chime.caf", "alert": {"title": "T"}, "category": "INVITE"}, "data": {"room": "42"}}
