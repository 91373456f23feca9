"""Web Push delivery signed with VAPID."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

try:
  from pywebpush import WebPushException, webpush
except Exception:  # noqa: BLE001
  WebPushException = Exception  # type: ignore[assignment]
  webpush = None

from app.notifications.contracts import CapabilityAbsentError, ConfigurationError, DeliveryTarget, NotificationError, NotificationPayload, Provider, ProviderResult, SendErrorKind, TargetOutcome, WebPushSubscription, WebPushTarget

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 2_419_200  # 28 days
URGENCIES = {"very-low", "low", "normal", "high"}
_INVALID_STATUS_CODES = {404, 410}


@dataclass(frozen=True)
class VapidConfig:
  """Configuration required to sign Web Push requests."""

  public_key: str | None
  private_key: str | None
  subject: str | None
  timeout_seconds: float = 10.0

  @property
  def complete(self) -> bool:
    return bool(self.public_key and self.private_key and self.subject)


@dataclass(frozen=True)
class DeliveryReport:
  """Provider response for one subscription, inspected after every send has been issued."""

  endpoint: str
  success: bool
  status_code: int | None
  reason: str | None


def build_web_push_body(payload: NotificationPayload) -> dict[str, Any]:
  """Build the notification-display JSON the service worker receives, nulls stripped."""
  body = {
    "title": payload.title,
    "body": payload.body,
    "icon": payload.icon,
    "image": payload.image,
    "badge": payload.badge,
    "data": dict(payload.data),
    "tag": payload.tag,
    "renotify": payload.renotify,
    "requireInteraction": payload.require_interaction,
    "actions": payload.actions,
  }
  return {key: value for key, value in body.items() if value is not None and value != ""}


class WebPushSender:
  """`pywebpush` backed adapter; success is derived from each subscription's delivery report."""

  provider = Provider.WEBPUSH

  def __init__(self, *, vapid_config: VapidConfig) -> None:
    self._vapid_config = vapid_config

  def is_available(self) -> bool:
    return webpush is not None and self._vapid_config.complete

  def send(self, target: DeliveryTarget, payload: NotificationPayload) -> ProviderResult:
    """Send to each subscription, then flush and inspect the delivery reports; never raises."""
    try:
      if not isinstance(target, WebPushTarget):
        raise ConfigurationError(f"WebPush adapter cannot send to {type(target).__name__}")
      return self._send(target, payload)
    except CapabilityAbsentError as exc:
      logger.warning("WebPush unavailable: %s", exc)
      return ProviderResult.failed(self.provider, exc.kind, str(exc))
    except NotificationError as exc:
      logger.error("WebPush send failed: %s", exc)
      return ProviderResult.failed(self.provider, exc.kind, str(exc))
    except Exception as exc:  # noqa: BLE001
      logger.error("WebPush exception: %s", exc, exc_info=True)
      return ProviderResult.failed(self.provider, SendErrorKind.TRANSPORT, str(exc))

  def _send(self, target: WebPushTarget, payload: NotificationPayload) -> ProviderResult:
    if webpush is None:
      raise CapabilityAbsentError("WebPush library not installed (pywebpush)")
    if not self._vapid_config.complete:
      logger.error(
        "WebPush VAPID configuration missing has_public=%s has_private=%s has_subject=%s", bool(self._vapid_config.public_key), bool(self._vapid_config.private_key), bool(self._vapid_config.subject)
      )
      raise ConfigurationError("WebPush VAPID configuration missing")

    data = json.dumps(build_web_push_body(payload), ensure_ascii=False, default=str)
    ttl = payload.ttl if isinstance(payload.ttl, int) else DEFAULT_TTL_SECONDS
    headers = {"Urgency": payload.urgency} if payload.urgency in URGENCIES else None

    reports = [self._send_one(subscription, data, ttl, headers) for subscription in target.subscriptions]
    return ProviderResult(provider=self.provider, outcomes=tuple(self._flush(reports)))

  def _send_one(self, subscription: WebPushSubscription, data: str, ttl: int, headers: dict[str, str] | None) -> DeliveryReport:
    try:
      # pywebpush mutates vapid_claims (adds aud/exp), so each call gets a fresh dict.
      response = webpush(
        subscription_info=subscription.as_subscription_info(), data=data, vapid_private_key=self._vapid_config.private_key, vapid_claims={"sub": self._vapid_config.subject}, ttl=ttl, headers=headers, timeout=self._vapid_config.timeout_seconds
      )
    except WebPushException as exc:
      status_code = _extract_status_code(exc)
      return DeliveryReport(endpoint=subscription.endpoint, success=False, status_code=status_code, reason=str(exc))
    except Exception as exc:  # noqa: BLE001
      logger.warning("WebPush send error: %s", exc)
      return DeliveryReport(endpoint=subscription.endpoint, success=False, status_code=None, reason=str(exc))

    status_code = getattr(response, "status_code", None)
    success = status_code is None or 200 <= int(status_code) < 300
    reason = None if success else getattr(response, "text", None)
    return DeliveryReport(endpoint=subscription.endpoint, success=success, status_code=status_code, reason=reason)

  @staticmethod
  def _flush(reports: list[DeliveryReport]) -> list[TargetOutcome]:
    outcomes: list[TargetOutcome] = []
    for report in reports:
      if not report.success:
        logger.warning("WebPush delivery failed endpoint=%s status=%s reason=%s", report.endpoint, report.status_code, report.reason)
      invalid = report.status_code in _INVALID_STATUS_CODES
      outcomes.append(TargetOutcome(target=report.endpoint, success=report.success, status_code=report.status_code, reason=report.reason, invalid_token=invalid))
    return outcomes


def _extract_status_code(exc: Exception) -> int | None:
  """Extract an HTTP status code from a pywebpush exception when available."""
  response = getattr(exc, "response", None)
  if response is None:
    return None

  status = getattr(response, "status_code", None)
  if isinstance(status, int):
    return status

  return None
