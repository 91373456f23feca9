"""Contracts for push notification delivery across providers."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Protocol


class Provider(str, Enum):
  """Push delivery providers supported by the dispatch engine."""

  FCM = "fcm"
  APNS = "apns"
  WEBPUSH = "webpush"

  @classmethod
  def parse(cls, raw: object) -> Provider | None:
    """Return the provider for a loosely-typed id, or None when unknown."""
    if isinstance(raw, cls):
      return raw
    if not isinstance(raw, str):
      return None
    try:
      return cls(raw.strip().lower())
    except ValueError:
      return None


class Platform(str, Enum):
  """Client platforms a device can be registered from."""

  ANDROID = "android"
  IOS = "ios"
  WEB = "web"


class DeviceStatus(str, Enum):
  """Lifecycle states of a registered device."""

  ACTIVE = "active"
  INVALID = "invalid"
  REVOKED = "revoked"


@dataclass(frozen=True)
class NotificationPayload:
  """Provider-agnostic payload produced once per dispatch by the formatter."""

  title: str
  body: str
  image: str | None = None
  badge: int | None = None
  sound: str = "default"
  data: dict[str, Any] = field(default_factory=dict)
  click_action: str | None = None
  topic: str | None = None
  icon: str | None = None
  color: str | None = None
  tag: str | None = None
  android_channel_id: str | None = None
  android_priority: str | None = None
  apns_priority: int | None = None
  apns_push_type: str | None = None
  category: str | None = None
  collapse_id: str | None = None
  ttl: int | str | None = None
  urgency: str | None = None
  renotify: bool | None = None
  require_interaction: bool | None = None
  actions: list[dict[str, Any]] | None = None


@dataclass(frozen=True)
class WebPushSubscription:
  """Browser push subscription as returned by PushManager.subscribe()."""

  endpoint: str
  p256dh: str
  auth: str

  def as_subscription_info(self) -> dict[str, Any]:
    return {"endpoint": self.endpoint, "keys": {"p256dh": self.p256dh, "auth": self.auth}}


@dataclass(frozen=True)
class FcmTarget:
  """FCM registration tokens for one notifiable."""

  provider: ClassVar[Provider] = Provider.FCM
  tokens: tuple[str, ...]


@dataclass(frozen=True)
class ApnsTarget:
  """APNs device tokens for one notifiable."""

  provider: ClassVar[Provider] = Provider.APNS
  tokens: tuple[str, ...]


@dataclass(frozen=True)
class WebPushTarget:
  """Web Push subscriptions for one notifiable."""

  provider: ClassVar[Provider] = Provider.WEBPUSH
  subscriptions: tuple[WebPushSubscription, ...]


DeliveryTarget = FcmTarget | ApnsTarget | WebPushTarget


class SendErrorKind(str, Enum):
  """Classification of a provider-level failure."""

  CONFIGURATION = "configuration"
  TRANSPORT = "transport"
  CAPABILITY = "capability"


@dataclass(frozen=True)
class SendError:
  """Provider-level failure that prevented any delivery attempt from completing."""

  kind: SendErrorKind
  message: str


@dataclass(frozen=True)
class TargetOutcome:
  """Delivery outcome for a single token or subscription."""

  target: str
  success: bool
  status_code: int | None = None
  reason: str | None = None
  invalid_token: bool = False


@dataclass(frozen=True)
class ProviderResult:
  """Result of one adapter call: per-target outcomes or a provider-level error."""

  provider: Provider
  outcomes: tuple[TargetOutcome, ...] = ()
  error: SendError | None = None

  @property
  def ok(self) -> bool:
    return self.error is None and any(outcome.success for outcome in self.outcomes)

  @classmethod
  def failed(cls, provider: Provider, kind: SendErrorKind, message: str) -> ProviderResult:
    return cls(provider=provider, error=SendError(kind=kind, message=message))


class NotificationError(Exception):
  """Base class for all push notification failures."""

  kind = SendErrorKind.TRANSPORT


class ConfigurationError(NotificationError):
  """Raised when provider credentials are missing or incomplete."""

  kind = SendErrorKind.CONFIGURATION


class TransportError(NotificationError):
  """Raised on network failures, timeouts or non-2xx responses from a provider or token endpoint."""

  kind = SendErrorKind.TRANSPORT


class CapabilityAbsentError(NotificationError):
  """Raised when an optional provider client library is not installed."""

  kind = SendErrorKind.CAPABILITY


class ValidationError(NotificationError):
  """Raised when a device registry request is missing required fields."""

  def __init__(self, fields: Mapping[str, str]) -> None:
    super().__init__("; ".join(f"{name}: {message}" for name, message in fields.items()))
    self.fields = dict(fields)


class InvalidProviderError(ValidationError):
  """Raised when a device registry request names an unsupported provider."""

  def __init__(self, provider: str) -> None:
    super().__init__({"provider": "Invalid provider"})
    self.provider = provider


class StorageError(NotificationError):
  """Raised when the device store fails; the original error is chained, never exposed."""


class Notifiable(Protocol):
  """An entity that can receive notifications and exposes routing targets per channel."""

  @property
  def notifiable_id(self) -> str:
    """Return a stable identifier for logs."""

  def route_notification_for(self, channel: str) -> Any:
    """Return the raw routing targets for a channel."""


class PushAdapter(Protocol):
  """Delivery contract implemented by each provider adapter."""

  provider: Provider

  def is_available(self) -> bool:
    """Return True when configuration is complete and the client capability is present."""

  def send(self, target: DeliveryTarget, payload: NotificationPayload) -> ProviderResult:
    """Send to every token/subscription in the target; never raises."""
