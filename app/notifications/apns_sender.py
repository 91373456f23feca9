"""Apple Push Notification service delivery over HTTP/2."""

from __future__ import annotations

import importlib.util
import json
import logging
import ssl
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import quote

import httpx
import jwt

from app.notifications.contracts import ApnsTarget, CapabilityAbsentError, ConfigurationError, DeliveryTarget, NotificationError, NotificationPayload, Provider, ProviderResult, SendErrorKind, TargetOutcome
from app.notifications.credential_cache import CredentialCache
from app.utils.ids import redact_token

logger = logging.getLogger(__name__)

APNS_PRODUCTION_URL = "https://api.push.apple.com"
APNS_SANDBOX_URL = "https://api.sandbox.push.apple.com"
APNS_TOKEN_SCOPE = "apns"
# Apple rejects provider tokens older than an hour; reuse each one for 50 minutes at most.
PROVIDER_TOKEN_TTL_SECONDS = 3000
ALLOWED_PRIORITIES = (5, 10)
DEFAULT_PRIORITY = 10
_INVALID_TOKEN_REASONS = {"BadDeviceToken", "Unregistered", "DeviceTokenNotForTopic"}

# httpx only speaks HTTP/2 when the optional `h2` package is installed.
HTTP2_AVAILABLE = importlib.util.find_spec("h2") is not None


@dataclass(frozen=True)
class ApnsConfig:
  """Token (p8 key) or certificate credentials for APNs."""

  key_id: str | None = None
  team_id: str | None = None
  bundle_id: str | None = None
  p8_path: str | None = None
  certificate: str | None = None
  passphrase: str | None = None
  sandbox: bool = True
  timeout_seconds: float = 10.0

  @property
  def uses_token_auth(self) -> bool:
    return bool(self.p8_path and self.key_id and self.team_id and self.bundle_id)

  @property
  def uses_certificate(self) -> bool:
    return bool(self.certificate)


def build_aps_body(payload: NotificationPayload) -> dict[str, Any]:
  """Build the JSON body for one APNs notification."""
  alert = {key: value for key, value in {"title": payload.title, "body": payload.body}.items() if value}
  aps: dict[str, Any] = {"sound": payload.sound or "default"}
  if alert:
    aps["alert"] = alert
  if payload.badge is not None:
    aps["badge"] = payload.badge
  if payload.category:
    aps["category"] = payload.category

  body: dict[str, Any] = {"aps": aps}
  if payload.data:
    body["data"] = payload.data
  return body


def build_headers(payload: NotificationPayload, *, topic: str | None, now: float) -> dict[str, str]:
  """Build the per-notification APNs request headers."""
  priority = payload.apns_priority if payload.apns_priority in ALLOWED_PRIORITIES else DEFAULT_PRIORITY
  headers = {"apns-push-type": payload.apns_push_type or "alert", "apns-priority": str(priority)}
  if topic:
    headers["apns-topic"] = topic
  if payload.collapse_id:
    headers["apns-collapse-id"] = payload.collapse_id
  if isinstance(payload.ttl, int):
    headers["apns-expiration"] = str(int(now) + payload.ttl)
  return headers


class ApnsSender:
  """APNs adapter supporting provider-token (ES256 JWT) and mTLS certificate auth."""

  provider = Provider.APNS

  def __init__(self, *, config: ApnsConfig, credential_cache: CredentialCache, transport: httpx.BaseTransport | None = None, clock: Callable[[], float] = time.time) -> None:
    self._config = config
    self._cache = credential_cache
    self._transport = transport
    self._clock = clock

  def is_configured(self) -> bool:
    return self._config.uses_token_auth or self._config.uses_certificate

  def is_available(self) -> bool:
    return HTTP2_AVAILABLE and self.is_configured()

  def send(self, target: DeliveryTarget, payload: NotificationPayload) -> ProviderResult:
    """Send one notification per device token over a shared HTTP/2 connection; never raises."""
    try:
      if not isinstance(target, ApnsTarget):
        raise ConfigurationError(f"APNs adapter cannot send to {type(target).__name__}")
      return self._send(target, payload)
    except CapabilityAbsentError as exc:
      logger.warning("APNs unavailable: %s", exc)
      return ProviderResult.failed(self.provider, exc.kind, str(exc))
    except NotificationError as exc:
      logger.error("APNs send failed: %s", exc)
      return ProviderResult.failed(self.provider, exc.kind, str(exc))
    except Exception as exc:  # noqa: BLE001
      logger.error("APNs exception: %s", exc, exc_info=True)
      return ProviderResult.failed(self.provider, SendErrorKind.TRANSPORT, str(exc))

  def _send(self, target: ApnsTarget, payload: NotificationPayload) -> ProviderResult:
    if not HTTP2_AVAILABLE:
      raise CapabilityAbsentError("APNs HTTP/2 client not installed (httpx[http2])")
    if not self.is_configured():
      raise ConfigurationError("APNs configuration incomplete: provide token (p8, key_id, team_id, bundle_id) or certificate")

    base_url = APNS_SANDBOX_URL if self._config.sandbox else APNS_PRODUCTION_URL
    client_kwargs: dict[str, Any] = {"http2": True, "timeout": self._config.timeout_seconds, "transport": self._transport}
    auth_headers: dict[str, str] = {}
    if self._config.uses_token_auth:
      auth_headers["authorization"] = f"bearer {self._provider_token()}"
    else:
      client_kwargs["verify"] = self._certificate_context()

    body = json.dumps(build_aps_body(payload), separators=(",", ":"), default=str)
    headers = {**build_headers(payload, topic=self._config.bundle_id, now=self._clock()), **auth_headers}

    with httpx.Client(base_url=base_url, **client_kwargs) as client:
      outcomes = [self._send_one(client, token, headers, body) for token in target.tokens]

    return ProviderResult(provider=self.provider, outcomes=tuple(outcomes))

  def _send_one(self, client: httpx.Client, token: str, headers: dict[str, str], body: str) -> TargetOutcome:
    try:
      response = client.post(f"/3/device/{quote(token, safe='')}", headers=headers, content=body)
    except httpx.HTTPError as exc:
      logger.warning("APNs request failed token=%s error=%s", redact_token(token), exc)
      return TargetOutcome(target=token, success=False, reason=str(exc))

    if response.status_code == 200:
      return TargetOutcome(target=token, success=True, status_code=200)

    reason = _error_reason(response)
    logger.warning("APNs delivery failed status=%s reason=%s token=%s", response.status_code, reason, redact_token(token))
    invalid = response.status_code == 410 or reason in _INVALID_TOKEN_REASONS
    return TargetOutcome(target=token, success=False, status_code=response.status_code, reason=reason, invalid_token=invalid)

  def _provider_token(self) -> str:
    issuer = f"{self._config.team_id}:{self._config.key_id}"
    return self._cache.get_or_refresh(issuer, APNS_TOKEN_SCOPE, self._sign_provider_token)

  def _sign_provider_token(self) -> tuple[str, int]:
    try:
      private_key = Path(str(self._config.p8_path)).read_text(encoding="utf-8")
    except OSError as exc:
      raise ConfigurationError(f"Unable to read APNs p8 key: {exc}") from exc

    try:
      token = jwt.encode({"iss": self._config.team_id, "iat": int(self._clock())}, private_key, algorithm="ES256", headers={"kid": self._config.key_id})
    except (jwt.PyJWTError, ValueError, TypeError) as exc:
      raise ConfigurationError(f"Failed to sign APNs provider token: {exc}") from exc
    return token, PROVIDER_TOKEN_TTL_SECONDS

  def _certificate_context(self) -> ssl.SSLContext:
    context = ssl.create_default_context()
    try:
      context.load_cert_chain(certfile=str(self._config.certificate), password=self._config.passphrase or None)
    except (OSError, ssl.SSLError) as exc:
      raise ConfigurationError(f"Unable to load APNs certificate: {exc}") from exc
    return context


def _error_reason(response: httpx.Response) -> str | None:
  try:
    body = response.json()
  except ValueError:
    return response.reason_phrase or None
  reason = body.get("reason") if isinstance(body, dict) else None
  return str(reason) if reason else None
