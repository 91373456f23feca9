"""Routes for push device registration and lifecycle management."""

from __future__ import annotations

import datetime
import re
import urllib.parse
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_core import PydanticCustomError

from app.api.deps import get_device_registry
from app.core.security import get_current_user
from app.notifications.device_registry import DeviceRecord, DeviceRegistration, DeviceRegistry
from app.schema.sql import User

_BASE64_RE = re.compile(r"^[A-Za-z0-9_-]+={0,2}$")

router = APIRouter()


class SubscriptionKeys(BaseModel):
  """Browser-provided key material for Web Push encryption."""

  p256dh: str = Field(min_length=1, max_length=512)
  auth: str = Field(min_length=1, max_length=256)

  @field_validator("p256dh", "auth")
  @classmethod
  def validate_key(cls, value: str) -> str:
    normalized = value.strip()
    if not _BASE64_RE.fullmatch(normalized):
      raise PydanticCustomError("push_key_format", "subscription keys must be base64url encoded.")
    return normalized


class WebPushSubscriptionPayload(BaseModel):
  """Standard `PushSubscription.toJSON()` object."""

  endpoint: str = Field(min_length=1, max_length=2048)
  expiration_time: int | None = Field(default=None, alias="expirationTime")
  keys: SubscriptionKeys
  model_config = ConfigDict(populate_by_name=True)

  @field_validator("endpoint")
  @classmethod
  def validate_endpoint(cls, value: str) -> str:
    """Push services are only reachable over HTTPS."""
    normalized = value.strip()
    if urllib.parse.urlparse(normalized).scheme.lower() != "https":
      raise PydanticCustomError("push_endpoint_https", "endpoint must use https.")
    return normalized

  def as_stored(self) -> dict[str, Any]:
    return {"endpoint": self.endpoint, "expirationTime": self.expiration_time, "keys": {"p256dh": self.keys.p256dh, "auth": self.keys.auth}}


class RegisterDeviceRequest(BaseModel):
  """Register or refresh a device token (fcm/apns) or browser subscription (webpush)."""

  # Kept as plain strings so an unknown provider maps to 400 rather than a schema error.
  provider: str = Field(min_length=1, max_length=32)
  platform: str | None = Field(default=None, max_length=32)
  device_token: str | None = Field(default=None, max_length=1024)
  subscription: WebPushSubscriptionPayload | None = None
  device_id: str | None = Field(default=None, max_length=255)
  app_id: str | None = Field(default=None, max_length=100)
  bundle_id: str | None = Field(default=None, max_length=100)
  locale: str | None = Field(default=None, max_length=12)
  timezone: str | None = Field(default=None, max_length=64)
  model_config = ConfigDict(extra="ignore")


class RegisterDeviceResponse(BaseModel):
  affected: int
  uuid: str
  provider: str
  platform: str | None


class DeviceResponse(BaseModel):
  uuid: str
  provider: str
  platform: str | None
  device_id: str | None
  device_token: str | None
  status: str
  registered_at: datetime.datetime | None
  last_seen_at: datetime.datetime | None
  invalidated_at: datetime.datetime | None
  app_id: str | None
  bundle_id: str | None
  locale: str | None
  timezone: str | None

  @classmethod
  def from_record(cls, record: DeviceRecord) -> DeviceResponse:
    return cls(
      uuid=record.uuid,
      provider=record.provider.value,
      platform=record.platform.value if record.platform else None,
      device_id=record.device_id,
      device_token=record.device_token,
      status=record.status.value,
      registered_at=record.registered_at,
      last_seen_at=record.last_seen_at,
      invalidated_at=record.invalidated_at,
      app_id=record.app_id,
      bundle_id=record.bundle_id,
      locale=record.locale,
      timezone=record.timezone,
    )


class DeviceListResponse(BaseModel):
  devices: list[DeviceResponse]


class UnregisterDeviceRequest(BaseModel):
  """Identify a device by `uuid`, or by `provider` plus `device_token`."""

  uuid: str | None = Field(default=None, max_length=12)
  provider: str | None = Field(default=None, max_length=32)
  device_token: str | None = Field(default=None, max_length=1024)
  force: bool = False
  model_config = ConfigDict(extra="ignore")


class UnregisterDeviceResponse(BaseModel):
  affected: int
  action: str


@router.post("/devices", response_model=RegisterDeviceResponse)
async def register_device(payload: RegisterDeviceRequest, current_user: User = Depends(get_current_user), registry: DeviceRegistry = Depends(get_device_registry)) -> RegisterDeviceResponse:  # noqa: B008
  """Register the caller's device and invalidate the token it replaces."""
  registration = DeviceRegistration(
    user_uuid=current_user.uuid,
    provider=payload.provider,
    platform=payload.platform,
    device_token=payload.device_token,
    subscription=payload.subscription.as_stored() if payload.subscription else None,
    device_id=payload.device_id,
    app_id=payload.app_id,
    bundle_id=payload.bundle_id,
    locale=payload.locale,
    timezone=payload.timezone,
    notifiable_type="user",
    notifiable_id=current_user.uuid,
  )
  result = await registry.register(registration)
  return RegisterDeviceResponse(affected=result.affected, uuid=result.uuid, provider=result.provider.value, platform=result.platform.value if result.platform else None)


@router.get("/devices", response_model=DeviceListResponse)
async def list_devices(
  provider: str | None = Query(default=None, max_length=32), platform: str | None = Query(default=None, max_length=32), current_user: User = Depends(get_current_user), registry: DeviceRegistry = Depends(get_device_registry)  # noqa: B008
) -> DeviceListResponse:
  """List the caller's devices, most recently seen first."""
  records = await registry.list_devices(current_user.uuid, provider=provider, platform=platform)
  return DeviceListResponse(devices=[DeviceResponse.from_record(record) for record in records])


@router.delete("/devices", response_model=UnregisterDeviceResponse)
async def unregister_device(payload: UnregisterDeviceRequest, current_user: User = Depends(get_current_user), registry: DeviceRegistry = Depends(get_device_registry)) -> UnregisterDeviceResponse:  # noqa: B008
  """Revoke one of the caller's devices, or delete it when `force` is set."""
  result = await registry.unregister(current_user.uuid, uuid=payload.uuid, provider=payload.provider, device_token=payload.device_token, force=payload.force)
  return UnregisterDeviceResponse(affected=result.affected, action=result.action)
