"""Firebase Cloud Messaging (HTTP v1) delivery."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import quote

import httpx
import jwt

from app.notifications.contracts import ConfigurationError, DeliveryTarget, FcmTarget, NotificationError, NotificationPayload, Provider, ProviderResult, SendErrorKind, TargetOutcome, TransportError
from app.notifications.credential_cache import CredentialCache
from app.utils.ids import redact_token

logger = logging.getLogger(__name__)

FCM_SCOPE = "https://www.googleapis.com/auth/firebase.messaging"
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"
FCM_SEND_URL = "https://fcm.googleapis.com/v1/projects/{project}/messages:send"
JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
ASSERTION_TTL_SECONDS = 3600
_INVALID_TOKEN_CODES = {"UNREGISTERED"}


@dataclass(frozen=True)
class FcmConfig:
  """Service-account credentials (file path or raw JSON) and target project."""

  credentials: str | None
  project: str | None
  timeout_seconds: float = 10.0


@dataclass(frozen=True)
class ServiceAccount:
  client_email: str
  private_key: str
  token_uri: str = GOOGLE_TOKEN_URI


def load_service_account(credentials: str) -> ServiceAccount:
  """Load service-account JSON given inline or as a file path."""
  raw = credentials
  # Inline JSON is never probed as a path; key material overflows filename limits.
  if not credentials.lstrip().startswith("{"):
    try:
      raw = Path(credentials).read_text(encoding="utf-8")
    except OSError as exc:
      raise ConfigurationError(f"Unable to read FCM credentials file: {exc}") from exc

  try:
    data = json.loads(raw)
  except json.JSONDecodeError as exc:
    raise ConfigurationError("Invalid Google service account credentials") from exc

  if not isinstance(data, dict) or not data.get("client_email") or not data.get("private_key"):
    raise ConfigurationError("Invalid Google service account credentials")

  return ServiceAccount(client_email=str(data["client_email"]), private_key=str(data["private_key"]), token_uri=str(data.get("token_uri") or GOOGLE_TOKEN_URI))


def build_assertion(account: ServiceAccount, *, scope: str = FCM_SCOPE, now: int | None = None) -> str:
  """Sign the RS256 JWT assertion exchanged for an OAuth2 access token."""
  issued_at = int(time.time()) if now is None else now
  claims = {"iss": account.client_email, "scope": scope, "aud": GOOGLE_TOKEN_URI, "iat": issued_at, "exp": issued_at + ASSERTION_TTL_SECONDS}
  return jwt.encode(claims, account.private_key, algorithm="RS256")


def build_message(token: str, payload: NotificationPayload) -> dict[str, Any]:
  """Build the `messages:send` request body for one registration token."""
  notification = _compact({"title": payload.title, "body": payload.body, "image": payload.image})
  message = _compact(
    {
      "token": token,
      "notification": notification,
      "data": {str(key): _data_value(value) for key, value in payload.data.items()},
      "android": _android_options(payload),
      "apns": _apns_options(payload),
    }
  )
  return {"message": message}


def _android_options(payload: NotificationPayload) -> dict[str, Any] | None:
  notification = _compact(
    {
      "title": payload.title,
      "body": payload.body,
      "click_action": payload.click_action,
      "channel_id": payload.android_channel_id,
      "sound": payload.sound,
      "icon": payload.icon,
      "color": payload.color,
      "tag": payload.tag,
    }
  )
  ttl = None
  if payload.ttl is not None:
    ttl = f"{payload.ttl}s" if isinstance(payload.ttl, int) else str(payload.ttl)
  android = _compact({"priority": payload.android_priority, "ttl": ttl, "notification": notification})
  return android or None


def _apns_options(payload: NotificationPayload) -> dict[str, Any] | None:
  aps = _compact({"alert": _compact({"title": payload.title, "body": payload.body}), "sound": payload.sound or "default", "category": payload.category})
  headers = _compact({"apns-priority": str(payload.apns_priority) if payload.apns_priority is not None else None, "apns-push-type": payload.apns_push_type or "alert"})
  return _compact({"headers": headers, "payload": {"aps": aps}}) or None


def _compact(values: dict[str, Any]) -> dict[str, Any]:
  return {key: value for key, value in values.items() if value is not None and value != "" and value != {} and value != []}


def _data_value(value: Any) -> str:
  # FCM data maps only carry string values.
  if isinstance(value, str):
    return value
  return json.dumps(value, separators=(",", ":"), default=str)


class FcmSender:
  """FCM HTTP v1 adapter authenticating with a service-account JWT bearer exchange."""

  provider = Provider.FCM

  def __init__(self, *, config: FcmConfig, credential_cache: CredentialCache, transport: httpx.BaseTransport | None = None, clock: Callable[[], float] = time.time) -> None:
    self._config = config
    self._cache = credential_cache
    self._transport = transport
    self._clock = clock

  def is_available(self) -> bool:
    return bool(self._config.credentials and self._config.project)

  def send(self, target: DeliveryTarget, payload: NotificationPayload) -> ProviderResult:
    """Send one request per token; never raises."""
    try:
      if not isinstance(target, FcmTarget):
        raise ConfigurationError(f"FCM adapter cannot send to {type(target).__name__}")
      return self._send(target, payload)
    except NotificationError as exc:
      logger.error("FCM v1 send failed: %s", exc)
      return ProviderResult.failed(self.provider, exc.kind, str(exc))
    except Exception as exc:  # noqa: BLE001
      logger.error("FCM v1 send exception: %s", exc, exc_info=True)
      return ProviderResult.failed(self.provider, SendErrorKind.TRANSPORT, str(exc))

  def _send(self, target: FcmTarget, payload: NotificationPayload) -> ProviderResult:
    if not self.is_available():
      raise ConfigurationError("FCM v1 configuration missing: set NOTIVA_FCM_CREDENTIALS and NOTIVA_FCM_PROJECT")

    account = load_service_account(str(self._config.credentials))
    url = FCM_SEND_URL.format(project=quote(str(self._config.project), safe=""))

    with httpx.Client(timeout=self._config.timeout_seconds, transport=self._transport) as client:
      access_token = self._cache.get_or_refresh(account.client_email, FCM_SCOPE, lambda: self._exchange_token(client, account))
      headers = {"Authorization": f"Bearer {access_token}", "Content-Type": "application/json"}
      outcomes = [self._send_one(client, url, headers, token, payload) for token in target.tokens]

    return ProviderResult(provider=self.provider, outcomes=tuple(outcomes))

  def _send_one(self, client: httpx.Client, url: str, headers: dict[str, str], token: str, payload: NotificationPayload) -> TargetOutcome:
    # A failure here only affects this token; remaining tokens are still sent.
    try:
      response = client.post(url, headers=headers, json=build_message(token, payload))
    except httpx.HTTPError as exc:
      logger.warning("FCM v1 request failed token=%s error=%s", redact_token(token), exc)
      return TargetOutcome(target=token, success=False, reason=str(exc))

    if response.is_success:
      return TargetOutcome(target=token, success=True, status_code=response.status_code)

    error_code = _error_code(response)
    logger.warning("FCM v1 send failed for token status=%s token=%s code=%s body=%s", response.status_code, redact_token(token), error_code, response.text[:500])
    invalid = response.status_code == 404 or error_code in _INVALID_TOKEN_CODES
    return TargetOutcome(target=token, success=False, status_code=response.status_code, reason=error_code or response.reason_phrase, invalid_token=invalid)

  def _exchange_token(self, client: httpx.Client, account: ServiceAccount) -> tuple[str, int]:
    """Exchange a signed assertion for an access token; returns (token, expires_in)."""
    try:
      assertion = build_assertion(account, now=int(self._clock()))
    except (jwt.PyJWTError, ValueError, TypeError) as exc:
      raise ConfigurationError(f"Failed to sign JWT for FCM v1: {exc}") from exc

    try:
      response = client.post(account.token_uri, data={"grant_type": JWT_BEARER_GRANT, "assertion": assertion})
    except httpx.HTTPError as exc:
      raise TransportError(f"OAuth token request failed: {exc}") from exc

    if not response.is_success:
      raise TransportError(f"OAuth token request failed status={response.status_code} body={response.text[:500]}")

    try:
      body = response.json()
    except ValueError as exc:
      raise TransportError("OAuth token response was not JSON") from exc

    access_token = body.get("access_token") if isinstance(body, dict) else None
    if not access_token:
      raise TransportError("OAuth token response missing access_token")

    expires_in = body.get("expires_in", ASSERTION_TTL_SECONDS)
    try:
      expires_in = int(expires_in)
    except (TypeError, ValueError):
      expires_in = ASSERTION_TTL_SECONDS
    return str(access_token), expires_in


def _error_code(response: httpx.Response) -> str | None:
  """Extract the FCM error code (e.g. UNREGISTERED) from an error response."""
  try:
    body = response.json()
  except ValueError:
    return None
  error = body.get("error") if isinstance(body, dict) else None
  if not isinstance(error, dict):
    return None
  for detail in error.get("details") or []:
    if isinstance(detail, dict) and detail.get("errorCode"):
      return str(detail["errorCode"])
  status = error.get("status")
  return str(status) if status else None
