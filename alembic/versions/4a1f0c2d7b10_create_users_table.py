"""Create users table.

Revision ID: 4a1f0c2d7b10
Revises:
Create Date: 2026-10-12 09:20:41.118204
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

from app.core.migration_guards import guarded_create_index, guarded_create_table, guarded_drop_index, guarded_drop_table

revision = "4a1f0c2d7b10"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
  """Upgrade schema."""
  guarded_create_table(
    "users",
    sa.Column("id", sa.BigInteger().with_variant(sa.Integer(), "sqlite"), autoincrement=True, nullable=False),
    sa.Column("uuid", sa.String(length=12), nullable=False),
    sa.Column("firebase_uid", sa.String(), nullable=False),
    sa.Column("email", sa.String(), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    sa.PrimaryKeyConstraint("id"),
    sa.UniqueConstraint("uuid", name="uq_users_uuid"),
  )
  guarded_create_index(op.f("ix_users_firebase_uid"), "users", ["firebase_uid"], unique=True)


def downgrade() -> None:
  """Downgrade schema."""
  guarded_drop_index(op.f("ix_users_firebase_uid"), table_name="users")
  guarded_drop_table("users")
