"""Create push_devices table.

Revision ID: 9e3b5d1a6c42
Revises: 4a1f0c2d7b10
Create Date: 2026-10-12 09:41:07.553920
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

from app.core.migration_guards import guarded_create_index, guarded_create_table, guarded_drop_enum, guarded_drop_index, guarded_drop_table

revision = "9e3b5d1a6c42"
down_revision = "4a1f0c2d7b10"
branch_labels = None
depends_on = None

_INDEXES = (
  ("ix_push_devices_user_uuid", ["user_uuid"]),
  ("ix_push_devices_status", ["status"]),
  ("ix_push_devices_last_seen_at", ["last_seen_at"]),
  ("ix_push_devices_provider_platform", ["provider", "platform"]),
  ("ix_push_devices_notifiable", ["notifiable_type", "notifiable_id"]),
)


def upgrade() -> None:
  """Upgrade schema."""
  guarded_create_table(
    "push_devices",
    sa.Column("id", sa.BigInteger().with_variant(sa.Integer(), "sqlite"), autoincrement=True, nullable=False),
    sa.Column("uuid", sa.String(length=12), nullable=False),
    sa.Column("user_uuid", sa.String(length=12), nullable=True),
    sa.Column("notifiable_type", sa.String(length=100), nullable=True),
    sa.Column("notifiable_id", sa.String(length=255), nullable=True),
    sa.Column("provider", sa.Enum("fcm", "apns", "webpush", name="push_provider"), nullable=False),
    sa.Column("platform", sa.Enum("android", "ios", "web", name="push_platform"), nullable=True),
    sa.Column("device_token", sa.String(length=1024), nullable=True),
    sa.Column("subscription_json", sa.JSON().with_variant(postgresql.JSONB(), "postgresql"), nullable=True),
    sa.Column("device_id", sa.String(length=255), nullable=True),
    sa.Column("app_id", sa.String(length=100), nullable=True),
    sa.Column("bundle_id", sa.String(length=100), nullable=True),
    sa.Column("locale", sa.String(length=12), nullable=True),
    sa.Column("timezone", sa.String(length=64), nullable=True),
    sa.Column("status", sa.Enum("active", "invalid", "revoked", name="push_device_status"), server_default="active", nullable=False),
    sa.Column("registered_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("invalidated_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    sa.ForeignKeyConstraint(["user_uuid"], ["users.uuid"], ondelete="CASCADE"),
    sa.PrimaryKeyConstraint("id"),
    sa.UniqueConstraint("uuid", name="uq_push_devices_uuid"),
    sa.UniqueConstraint("provider", "device_token", name="uq_push_devices_provider_token"),
  )
  for index_name, columns in _INDEXES:
    guarded_create_index(index_name, "push_devices", columns, unique=False)


def downgrade() -> None:
  """Downgrade schema."""
  for index_name, _columns in reversed(_INDEXES):
    guarded_drop_index(index_name, table_name="push_devices")
  guarded_drop_table("push_devices")
  for enum_name in ("push_device_status", "push_platform", "push_provider"):
    guarded_drop_enum(enum_name)
