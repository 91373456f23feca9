"""Push channel: fan a notification out to every enabled provider a notifiable routes to."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from app.notifications.contracts import Notifiable, NotificationPayload, Provider, ProviderResult, PushAdapter, SendErrorKind
from app.notifications.formatter import PushFormatter
from app.notifications.targets import parse_targets

logger = logging.getLogger(__name__)

CHANNEL_NAME = "push"
DEFAULT_ORDER = (Provider.FCM, Provider.APNS, Provider.WEBPUSH)


@dataclass(frozen=True)
class ChannelOptions:
  """Dispatch policy: iteration order, enabled providers and logging hooks."""

  default_order: tuple[Provider, ...] = DEFAULT_ORDER
  enabled: frozenset[Provider] = frozenset(DEFAULT_ORDER)
  track_delivery: bool = False
  debug: bool = False


@dataclass(frozen=True)
class DispatchReport:
  """Aggregated outcome of one dispatch plus the per-provider attempts behind it."""

  sent: bool
  attempts: tuple[ProviderResult, ...] = field(default_factory=tuple)

  def invalid_tokens(self) -> dict[Provider, list[str]]:
    """Return the targets each provider rejected as permanently invalid."""
    rejected: dict[Provider, list[str]] = {}
    for attempt in self.attempts:
      tokens = [outcome.target for outcome in attempt.outcomes if outcome.invalid_token]
      if tokens:
        rejected.setdefault(attempt.provider, []).extend(tokens)
    return rejected


class PushChannel:
  """Orchestrates formatting and per-provider delivery for the push channel."""

  channel_name = CHANNEL_NAME

  def __init__(self, *, adapters: Iterable[PushAdapter], options: ChannelOptions | None = None, formatter: PushFormatter | None = None) -> None:
    self._adapters: dict[Provider, PushAdapter] = {adapter.provider: adapter for adapter in adapters}
    self._options = options or ChannelOptions()
    self._formatter = formatter or PushFormatter()

  @property
  def options(self) -> ChannelOptions:
    return self._options

  def is_available(self) -> bool:
    """True when at least one provider is enabled; configuration only, no network."""
    return bool(self._options.enabled)

  def available_providers(self) -> list[Provider]:
    """Enabled providers whose adapter reports complete configuration and capability."""
    available: list[Provider] = []
    for provider in self._options.default_order:
      adapter = self._adapters.get(provider)
      if provider in self._options.enabled and adapter is not None and adapter.is_available():
        available.append(provider)
    return available

  def format(self, data: Mapping[str, Any], notifiable: Notifiable | None = None) -> NotificationPayload:
    return self._formatter.format(data, notifiable)

  def send(self, notifiable: Notifiable, data: Mapping[str, Any]) -> bool:
    """Return True iff at least one token or subscription was delivered."""
    return self.dispatch(notifiable, data).sent

  def dispatch(self, notifiable: Notifiable, data: Mapping[str, Any]) -> DispatchReport:
    targets = parse_targets(notifiable.route_notification_for(CHANNEL_NAME))
    if not targets:
      logger.debug("No push targets for notifiable=%s", notifiable.notifiable_id)
      return DispatchReport(sent=False)

    data = self._before_send(notifiable, data)
    payload = self._formatter.format(data, notifiable)

    sent = False
    attempts: list[ProviderResult] = []
    for provider in self._options.default_order:
      target = targets.get(provider)
      if target is None:
        continue
      if provider not in self._options.enabled:
        logger.debug("Push provider disabled provider=%s", provider.value)
        continue
      adapter = self._adapters.get(provider)
      if adapter is None:
        logger.warning("No adapter registered for push provider=%s", provider.value)
        continue

      try:
        result = adapter.send(target, payload)
      except Exception as exc:  # noqa: BLE001
        # One provider failing never stops the remaining providers.
        logger.error("Push provider %s raised: %s", provider.value, exc, exc_info=True)
        result = ProviderResult.failed(provider, SendErrorKind.TRANSPORT, str(exc))

      if result.error is not None:
        logger.warning("Push provider %s failed kind=%s error=%s", provider.value, result.error.kind.value, result.error.message)
      attempts.append(result)
      sent = sent or result.ok

    report = DispatchReport(sent=sent, attempts=tuple(attempts))
    self._after_send(notifiable, report)
    return report

  def _before_send(self, notifiable: Notifiable, data: Mapping[str, Any]) -> Mapping[str, Any]:
    if data.get("title") is None and data.get("subject") is not None:
      data = {**data, "title": data["subject"]}
    if self._options.debug:
      logger.debug("Sending push notification recipient=%s title=%s", notifiable.notifiable_id, data.get("title"))
    return data

  def _after_send(self, notifiable: Notifiable, report: DispatchReport) -> None:
    if not self._options.track_delivery:
      return
    providers = ",".join(attempt.provider.value for attempt in report.attempts)
    if report.sent:
      logger.info("Push notification delivered recipient=%s providers=%s", notifiable.notifiable_id, providers)
    else:
      logger.warning("Push notification delivery failed recipient=%s providers=%s", notifiable.notifiable_id, providers)
