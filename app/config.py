"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from app.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)

KNOWN_PROVIDERS = ("fcm", "apns", "webpush")


@dataclass(frozen=True)
class Settings:
  """Typed settings for the Notiva service."""

  environment: str
  allowed_origins: tuple[str, ...]
  debug: bool
  log_max_bytes: int
  log_backup_count: int
  log_http_4xx: bool
  pg_dsn: str | None
  firebase_project_id: str | None
  firebase_service_account_json_path: str | None
  push_default_order: tuple[str, ...]
  push_timeout_seconds: float
  push_track_delivery: bool
  fcm_enabled: bool
  fcm_credentials: str | None
  fcm_project: str | None
  apns_enabled: bool
  apns_key_id: str | None
  apns_team_id: str | None
  apns_bundle_id: str | None
  apns_p8_path: str | None
  apns_certificate: str | None
  apns_passphrase: str | None
  apns_sandbox: bool
  webpush_enabled: bool
  vapid_subject: str | None
  vapid_public_key: str | None
  vapid_private_key: str | None


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  pg_dsn: str | None


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  if not raw:
    return ()

  origins = [origin.strip() for origin in raw.split(",") if origin.strip()]

  if "*" in origins:
    raise ValueError("NOTIVA_ALLOWED_ORIGINS must not include wildcard origins.")

  return tuple(origins)


def _parse_bool(raw: str | None, *, default: bool = False) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None or raw.strip() == "":
    return default

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _parse_provider_order(raw: str | None) -> tuple[str, ...]:
  """Parse the provider priority order, keeping the first occurrence of each id."""
  if not raw or not raw.strip():
    return KNOWN_PROVIDERS

  order: list[str] = []
  for item in raw.split(","):
    provider = item.strip().lower()
    if not provider:
      continue
    if provider not in KNOWN_PROVIDERS:
      raise ValueError(f"NOTIVA_PUSH_DEFAULT_ORDER contains unknown provider '{provider}'.")
    if provider not in order:
      order.append(provider)

  return tuple(order)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("NOTIVA_ENV", "development").lower()
  debug = _parse_bool(os.getenv("NOTIVA_DEBUG"))

  log_max_bytes = int(os.getenv("NOTIVA_LOG_MAX_BYTES", "5242880"))  # 5MB default
  if log_max_bytes <= 0:
    raise ValueError("NOTIVA_LOG_MAX_BYTES must be a positive integer.")

  log_backup_count = int(os.getenv("NOTIVA_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("NOTIVA_LOG_BACKUP_COUNT must be zero or a positive integer.")

  push_timeout_seconds = float(os.getenv("NOTIVA_PUSH_TIMEOUT_SECONDS", "10"))
  if push_timeout_seconds <= 0:
    raise ValueError("NOTIVA_PUSH_TIMEOUT_SECONDS must be positive.")

  # Missing credentials are tolerated here; the affected adapter fails closed at send time.
  vapid_subject = _optional_str(os.getenv("NOTIVA_VAPID_SUBJECT"))
  if vapid_subject and not (vapid_subject.startswith("mailto:") or vapid_subject.startswith("https://")):
    raise ValueError("NOTIVA_VAPID_SUBJECT must start with 'mailto:' or 'https://'.")

  return Settings(
    environment=environment,
    allowed_origins=_parse_origins(os.getenv("NOTIVA_ALLOWED_ORIGINS")),
    debug=debug,
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    log_http_4xx=_parse_bool(os.getenv("NOTIVA_LOG_HTTP_4XX")),
    pg_dsn=os.getenv("NOTIVA_PG_DSN") or os.getenv("DATABASE_URL"),
    firebase_project_id=_optional_str(os.getenv("FIREBASE_PROJECT_ID")),
    firebase_service_account_json_path=_optional_str(os.getenv("FIREBASE_SERVICE_ACCOUNT_JSON_PATH")),
    push_default_order=_parse_provider_order(os.getenv("NOTIVA_PUSH_DEFAULT_ORDER")),
    push_timeout_seconds=push_timeout_seconds,
    push_track_delivery=_parse_bool(os.getenv("NOTIVA_TRACK_DELIVERY")),
    fcm_enabled=_parse_bool(os.getenv("NOTIVA_FCM_ENABLED"), default=True),
    fcm_credentials=_optional_str(os.getenv("NOTIVA_FCM_CREDENTIALS")),
    fcm_project=_optional_str(os.getenv("NOTIVA_FCM_PROJECT")),
    apns_enabled=_parse_bool(os.getenv("NOTIVA_APNS_ENABLED"), default=True),
    apns_key_id=_optional_str(os.getenv("NOTIVA_APNS_KEY_ID")),
    apns_team_id=_optional_str(os.getenv("NOTIVA_APNS_TEAM_ID")),
    apns_bundle_id=_optional_str(os.getenv("NOTIVA_APNS_BUNDLE_ID")),
    apns_p8_path=_optional_str(os.getenv("NOTIVA_APNS_P8_PATH")),
    apns_certificate=_optional_str(os.getenv("NOTIVA_APNS_CERT")),
    apns_passphrase=_optional_str(os.getenv("NOTIVA_APNS_PASSPHRASE")),
    apns_sandbox=_parse_bool(os.getenv("NOTIVA_APNS_SANDBOX"), default=True),
    webpush_enabled=_parse_bool(os.getenv("NOTIVA_WEBPUSH_ENABLED"), default=True),
    vapid_subject=vapid_subject,
    vapid_public_key=_optional_str(os.getenv("NOTIVA_VAPID_PUBLIC_KEY")),
    vapid_private_key=_optional_str(os.getenv("NOTIVA_VAPID_PRIVATE_KEY")),
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load database settings without requiring web-runtime configuration."""
  # Keep database configuration isolated so migrations don't require push credentials.
  debug = _parse_bool(os.getenv("NOTIVA_DEBUG"))
  pg_dsn = os.getenv("NOTIVA_PG_DSN") or os.getenv("DATABASE_URL")
  return DatabaseSettings(debug=debug, pg_dsn=pg_dsn)


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  if value == "":
    return None
  return value
