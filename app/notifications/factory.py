"""Factory helpers for push notification services."""

from __future__ import annotations

from app.config import Settings
from app.notifications.apns_sender import ApnsConfig, ApnsSender
from app.notifications.channel import ChannelOptions, PushChannel
from app.notifications.contracts import Provider
from app.notifications.credential_cache import CredentialCache
from app.notifications.device_registry import DeviceRegistry
from app.notifications.fcm_sender import FcmConfig, FcmSender
from app.notifications.push_sender import VapidConfig, WebPushSender
from app.notifications.service import PushNotificationService


def build_channel_options(settings: Settings) -> ChannelOptions:
  """Translate flat settings into the channel's dispatch policy."""
  enabled = {Provider.FCM: settings.fcm_enabled, Provider.APNS: settings.apns_enabled, Provider.WEBPUSH: settings.webpush_enabled}
  return ChannelOptions(
    default_order=tuple(Provider(provider) for provider in settings.push_default_order),
    enabled=frozenset(provider for provider, flag in enabled.items() if flag),
    track_delivery=settings.push_track_delivery,
    debug=settings.debug,
  )


def build_push_channel(settings: Settings, *, credential_cache: CredentialCache | None = None) -> PushChannel:
  """Construct the push channel with one adapter per provider sharing a credential cache."""
  cache = credential_cache or CredentialCache()
  timeout = settings.push_timeout_seconds

  fcm = FcmSender(config=FcmConfig(credentials=settings.fcm_credentials, project=settings.fcm_project, timeout_seconds=timeout), credential_cache=cache)
  apns = ApnsSender(
    config=ApnsConfig(
      key_id=settings.apns_key_id,
      team_id=settings.apns_team_id,
      bundle_id=settings.apns_bundle_id,
      p8_path=settings.apns_p8_path,
      certificate=settings.apns_certificate,
      passphrase=settings.apns_passphrase,
      sandbox=settings.apns_sandbox,
      timeout_seconds=timeout,
    ),
    credential_cache=cache,
  )
  webpush = WebPushSender(vapid_config=VapidConfig(public_key=settings.vapid_public_key, private_key=settings.vapid_private_key, subject=settings.vapid_subject, timeout_seconds=timeout))

  return PushChannel(adapters=[fcm, apns, webpush], options=build_channel_options(settings))


def build_push_service(settings: Settings, *, channel: PushChannel | None = None, registry: DeviceRegistry | None = None) -> PushNotificationService:
  """Construct the user-facing push service backed by the device registry."""
  return PushNotificationService(channel=channel or build_push_channel(settings), registry=registry or DeviceRegistry())
