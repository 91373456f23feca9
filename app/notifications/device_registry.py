"""Persistence and rotation policy for registered push devices."""

from __future__ import annotations

import datetime
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.database import get_session_factory
from app.notifications.contracts import DeviceStatus, InvalidProviderError, Platform, Provider, StorageError, ValidationError
from app.schema.sql import PushDevice
from app.utils.ids import WEBPUSH_TOKEN_PREFIX, generate_nanoid, webpush_device_token

logger = logging.getLogger(__name__)

# Metadata refreshed in place when an existing (provider, device_token) registers again.
_UPSERT_UPDATE_COLUMNS = ("user_uuid", "notifiable_type", "notifiable_id", "platform", "subscription_json", "device_id", "app_id", "bundle_id", "locale", "timezone", "status", "invalidated_at", "last_seen_at", "updated_at")


@dataclass(frozen=True)
class DeviceRegistration:
  """Raw registration input as received from a client."""

  user_uuid: str | None
  provider: str | None
  platform: str | None = None
  device_token: str | None = None
  subscription: Mapping[str, Any] | None = None
  device_id: str | None = None
  app_id: str | None = None
  bundle_id: str | None = None
  locale: str | None = None
  timezone: str | None = None
  notifiable_type: str | None = None
  notifiable_id: str | None = None


@dataclass(frozen=True)
class RegisterResult:
  affected: int
  uuid: str
  provider: Provider
  platform: Platform | None


@dataclass(frozen=True)
class UnregisterResult:
  affected: int
  action: str


@dataclass(frozen=True)
class DeviceRecord:
  """Public projection of a device row; subscription keys and internal ids are excluded."""

  uuid: str
  provider: Provider
  platform: Platform | None
  device_id: str | None
  device_token: str | None
  status: DeviceStatus
  registered_at: datetime.datetime | None
  last_seen_at: datetime.datetime | None
  invalidated_at: datetime.datetime | None
  app_id: str | None
  bundle_id: str | None
  locale: str | None
  timezone: str | None

  @classmethod
  def from_row(cls, row: PushDevice) -> DeviceRecord:
    return cls(
      uuid=row.uuid,
      provider=row.provider,
      platform=row.platform,
      device_id=row.device_id,
      device_token=row.device_token,
      status=row.status,
      registered_at=row.registered_at,
      last_seen_at=row.last_seen_at,
      invalidated_at=row.invalidated_at,
      app_id=row.app_id,
      bundle_id=row.bundle_id,
      locale=row.locale,
      timezone=row.timezone,
    )


def _utcnow() -> datetime.datetime:
  return datetime.datetime.now(datetime.UTC)


def _require_user(user_uuid: str | None) -> str:
  if not user_uuid or not str(user_uuid).strip():
    raise ValidationError({"user_uuid": "User UUID is required"})
  return str(user_uuid).strip()


def _parse_provider(raw: str | None) -> Provider:
  provider = Provider.parse(raw)
  if provider is None:
    raise InvalidProviderError(str(raw or ""))
  return provider


def _match_platform(raw: str) -> Platform | None:
  try:
    return Platform(str(raw).strip().lower())
  except ValueError:
    return None


def _parse_platform(raw: str | None) -> Platform | None:
  if raw is None or str(raw).strip() == "":
    return None
  platform = _match_platform(raw)
  if platform is None:
    raise ValidationError({"platform": "Invalid platform"})
  return platform


def _resolve_device_token(provider: Provider, registration: DeviceRegistration) -> str:
  """Return the token stored for a registration; Web Push derives it from the endpoint."""
  if provider is Provider.WEBPUSH:
    endpoint = registration.subscription.get("endpoint") if isinstance(registration.subscription, Mapping) else None
    if isinstance(endpoint, str) and endpoint:
      return webpush_device_token(endpoint)
    if registration.device_token:
      return registration.device_token
    raise ValidationError({"subscription": "Subscription endpoint is required"})

  if not registration.device_token:
    raise ValidationError({"device_token": "Device token is required"})
  return registration.device_token


class DeviceRegistry:
  """Register, list and unregister push devices stored in `push_devices`."""

  def __init__(self, *, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
    self._session_factory = session_factory

  def _sessions(self) -> async_sessionmaker[AsyncSession]:
    session_factory = self._session_factory or get_session_factory()
    if session_factory is None:
      raise StorageError("Device store is not configured")
    return session_factory

  async def register(self, registration: DeviceRegistration) -> RegisterResult:
    """Upsert a device and invalidate the owner's superseded tokens in one transaction."""
    user_uuid = _require_user(registration.user_uuid)
    if not registration.provider:
      raise ValidationError({"provider": "Provider is required"})
    provider = _parse_provider(registration.provider)
    platform = _parse_platform(registration.platform)
    device_token = _resolve_device_token(provider, registration)

    now = _utcnow()
    record = {
      "uuid": generate_nanoid(),
      "user_uuid": user_uuid,
      "notifiable_type": registration.notifiable_type,
      "notifiable_id": registration.notifiable_id,
      "provider": provider,
      "platform": platform,
      "device_token": device_token,
      "subscription_json": dict(registration.subscription) if isinstance(registration.subscription, Mapping) else None,
      "device_id": registration.device_id,
      "app_id": registration.app_id,
      "bundle_id": registration.bundle_id,
      "locale": registration.locale,
      "timezone": registration.timezone,
      "status": DeviceStatus.ACTIVE,
      "registered_at": now,
      "last_seen_at": now,
      "invalidated_at": None,
      "created_at": now,
      "updated_at": now,
    }

    try:
      async with self._sessions()() as session, session.begin():
        rotated = await self._rotate(session, user_uuid=user_uuid, provider=provider, device_id=registration.device_id, device_token=device_token, now=now)
        device_uuid, affected = await self._upsert(session, record)
    except Exception as exc:  # noqa: BLE001
      logger.error("Device registration failed provider=%s user_uuid=%s error=%s", provider.value, user_uuid, exc, exc_info=True)
      raise StorageError("Database error") from exc

    if rotated:
      logger.info("Rotated push devices user_uuid=%s provider=%s invalidated=%s", user_uuid, provider.value, rotated)
    return RegisterResult(affected=affected, uuid=device_uuid, provider=provider, platform=platform)

  async def _rotate(self, session: AsyncSession, *, user_uuid: str, provider: Provider, device_id: str | None, device_token: str, now: datetime.datetime) -> int:
    # Slot is (user, provider, device_id) when a device id is known, else (user, provider).
    stmt = update(PushDevice).where(PushDevice.user_uuid == user_uuid, PushDevice.provider == provider, PushDevice.device_token != device_token, PushDevice.status == DeviceStatus.ACTIVE)
    if device_id:
      stmt = stmt.where(PushDevice.device_id == device_id)
    stmt = stmt.values(status=DeviceStatus.INVALID, invalidated_at=now, updated_at=now).execution_options(synchronize_session=False)
    result = await session.execute(stmt)
    return int(result.rowcount or 0)

  async def _upsert(self, session: AsyncSession, record: dict[str, Any]) -> tuple[str, int]:
    """Insert or refresh the row; return its uuid and the number of rows written."""
    dialect = session.bind.dialect.name if session.bind is not None else "postgresql"
    insert = sqlite.insert if dialect == "sqlite" else postgresql.insert
    stmt = insert(PushDevice).values(**record)
    stmt = stmt.on_conflict_do_update(index_elements=["provider", "device_token"], set_={column: stmt.excluded[column] for column in _UPSERT_UPDATE_COLUMNS})
    rows = (await session.execute(stmt.returning(PushDevice.uuid))).scalars().all()
    if not rows:
      raise StorageError("Device upsert wrote no rows")
    return str(rows[0]), len(rows)

  async def list_devices(self, user_uuid: str | None, *, provider: str | None = None, platform: str | None = None) -> list[DeviceRecord]:
    """List a user's devices, most recently seen first."""
    user_uuid = _require_user(user_uuid)
    stmt = select(PushDevice).where(PushDevice.user_uuid == user_uuid)
    if provider:
      provider_filter = Provider.parse(provider)
      # No row can carry an unknown provider, so the filter matches nothing.
      if provider_filter is None:
        return []
      stmt = stmt.where(PushDevice.provider == provider_filter)
    if platform and str(platform).strip():
      platform_filter = _match_platform(platform)
      if platform_filter is None:
        return []
      stmt = stmt.where(PushDevice.platform == platform_filter)
    stmt = stmt.order_by(PushDevice.last_seen_at.desc(), PushDevice.id.desc())

    try:
      async with self._sessions()() as session:
        result = await session.execute(stmt)
        rows = result.scalars().all()
    except Exception as exc:  # noqa: BLE001
      logger.error("Device listing failed user_uuid=%s error=%s", user_uuid, exc, exc_info=True)
      raise StorageError("Failed to list devices") from exc

    return [DeviceRecord.from_row(row) for row in rows]

  async def unregister(self, user_uuid: str | None, *, uuid: str | None = None, provider: str | None = None, device_token: str | None = None, force: bool = False) -> UnregisterResult:
    """Revoke (or with `force`, delete) one of the user's devices by uuid or provider+token."""
    user_uuid = _require_user(user_uuid)
    if not uuid and not (provider and device_token):
      raise ValidationError({"uuid|provider+device_token": "Provide device uuid or provider+device_token"})

    action = "deleted" if force else "revoked"
    criteria = [PushDevice.user_uuid == user_uuid]
    if uuid:
      criteria.append(PushDevice.uuid == uuid)
    else:
      provider_match = Provider.parse(provider)
      if provider_match is None:
        return UnregisterResult(affected=0, action=action)
      criteria.extend([PushDevice.provider == provider_match, PushDevice.device_token == device_token])

    if force:
      stmt = delete(PushDevice).where(*criteria)
    else:
      now = _utcnow()
      stmt = update(PushDevice).where(*criteria).values(status=DeviceStatus.REVOKED, invalidated_at=now, updated_at=now)

    try:
      async with self._sessions()() as session, session.begin():
        result = await session.execute(stmt.execution_options(synchronize_session=False))
        affected = int(result.rowcount or 0)
    except Exception as exc:  # noqa: BLE001
      logger.error("Device unregister failed user_uuid=%s error=%s", user_uuid, exc, exc_info=True)
      raise StorageError("Failed to unregister device") from exc

    return UnregisterResult(affected=affected, action=action)

  async def active_devices(self, user_uuid: str) -> list[PushDevice]:
    """Return the user's active device rows for routing."""
    stmt = select(PushDevice).where(PushDevice.user_uuid == user_uuid, PushDevice.status == DeviceStatus.ACTIVE).order_by(PushDevice.last_seen_at.desc(), PushDevice.id.desc())
    try:
      async with self._sessions()() as session:
        result = await session.execute(stmt)
        return list(result.scalars().all())
    except StorageError:
      raise
    except Exception as exc:  # noqa: BLE001
      logger.error("Active device lookup failed user_uuid=%s error=%s", user_uuid, exc, exc_info=True)
      raise StorageError("Failed to load devices") from exc

  async def invalidate_tokens(self, provider: Provider, targets: Iterable[str]) -> int:
    """Mark provider-rejected tokens invalid; Web Push targets may be endpoints or stored tokens."""
    tokens = {_stored_token(provider, target) for target in targets if target}
    if not tokens:
      return 0

    now = _utcnow()
    stmt = (
      update(PushDevice)
      .where(PushDevice.provider == provider, PushDevice.device_token.in_(sorted(tokens)), PushDevice.status == DeviceStatus.ACTIVE)
      .values(status=DeviceStatus.INVALID, invalidated_at=now, updated_at=now)
      .execution_options(synchronize_session=False)
    )
    try:
      async with self._sessions()() as session, session.begin():
        result = await session.execute(stmt)
        affected = int(result.rowcount or 0)
    except Exception as exc:  # noqa: BLE001
      logger.error("Invalidating push tokens failed provider=%s error=%s", provider.value, exc, exc_info=True)
      raise StorageError("Failed to invalidate devices") from exc

    logger.info("Invalidated push devices provider=%s count=%s", provider.value, affected)
    return affected


def _stored_token(provider: Provider, target: str) -> str:
  if provider is Provider.WEBPUSH and not target.startswith(WEBPUSH_TOKEN_PREFIX):
    return webpush_device_token(target)
  return target
