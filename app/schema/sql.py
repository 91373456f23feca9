"""ORM models for users and their registered push devices."""

from __future__ import annotations

import datetime
from typing import Any

from sqlalchemy import JSON, BigInteger, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint, func
from sqlalchemy import Enum as SAEnum
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base
from app.notifications.contracts import DeviceStatus, Platform, Provider
from app.utils.ids import DEVICE_UUID_LENGTH, generate_nanoid

# BIGINT only autoincrements on SQLite when declared as INTEGER.
_BigIntId = BigInteger().with_variant(Integer, "sqlite")
_JsonDocument = JSON().with_variant(JSONB, "postgresql")


def _enum_values(enum_cls: type) -> list[str]:
  return [member.value for member in enum_cls]


class User(Base):
  __tablename__ = "users"

  id: Mapped[int] = mapped_column(_BigIntId, primary_key=True, autoincrement=True)
  uuid: Mapped[str] = mapped_column(String(DEVICE_UUID_LENGTH), unique=True, nullable=False, default=generate_nanoid)
  firebase_uid: Mapped[str] = mapped_column(String, unique=True, index=True, nullable=False)
  email: Mapped[str | None] = mapped_column(String, nullable=True)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
  updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class PushDevice(Base):
  __tablename__ = "push_devices"
  __table_args__ = (
    UniqueConstraint("provider", "device_token", name="uq_push_devices_provider_token"),
    Index("ix_push_devices_provider_platform", "provider", "platform"),
    Index("ix_push_devices_notifiable", "notifiable_type", "notifiable_id"),
  )

  id: Mapped[int] = mapped_column(_BigIntId, primary_key=True, autoincrement=True)
  uuid: Mapped[str] = mapped_column(String(DEVICE_UUID_LENGTH), unique=True, nullable=False, default=generate_nanoid)
  user_uuid: Mapped[str | None] = mapped_column(String(DEVICE_UUID_LENGTH), ForeignKey("users.uuid", ondelete="CASCADE"), nullable=True, index=True)
  notifiable_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
  notifiable_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
  provider: Mapped[Provider] = mapped_column(SAEnum(Provider, name="push_provider", values_callable=_enum_values), nullable=False)
  platform: Mapped[Platform | None] = mapped_column(SAEnum(Platform, name="push_platform", values_callable=_enum_values), nullable=True)
  device_token: Mapped[str | None] = mapped_column(String(1024), nullable=True)
  subscription_json: Mapped[dict[str, Any] | None] = mapped_column(_JsonDocument, nullable=True)
  device_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
  app_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
  bundle_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
  locale: Mapped[str | None] = mapped_column(String(12), nullable=True)
  timezone: Mapped[str | None] = mapped_column(String(64), nullable=True)
  status: Mapped[DeviceStatus] = mapped_column(SAEnum(DeviceStatus, name="push_device_status", values_callable=_enum_values), nullable=False, default=DeviceStatus.ACTIVE, index=True)
  registered_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  last_seen_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
  invalidated_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
  updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
