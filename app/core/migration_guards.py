"""Guarded Alembic operations that tolerate partially applied schemas."""

from __future__ import annotations

from typing import Any

import sqlalchemy as sa
from alembic import op


def _inspector() -> sa.engine.reflection.Inspector:
  # A fresh inspector per check; cached reflection would miss tables created earlier in the run.
  return sa.inspect(op.get_bind())


def table_exists(*, table_name: str, schema: str | None = None) -> bool:
  """Return True when a table exists in the target schema."""
  return _inspector().has_table(table_name, schema=schema)


def index_exists(*, index_name: str, table_name: str, schema: str | None = None) -> bool:
  """Return True when the named index exists on the table."""
  if not table_exists(table_name=table_name, schema=schema):
    return False
  return any(index.get("name") == index_name for index in _inspector().get_indexes(table_name, schema=schema))


def guarded_create_table(table_name: str, *args: Any, **kwargs: Any) -> None:
  """Create a table only when it does not already exist."""
  if table_exists(table_name=table_name, schema=kwargs.get("schema")):
    return
  op.create_table(table_name, *args, **kwargs)


def guarded_drop_table(table_name: str, *args: Any, **kwargs: Any) -> None:
  """Drop a table only when it exists."""
  if not table_exists(table_name=table_name, schema=kwargs.get("schema")):
    return
  op.drop_table(table_name, *args, **kwargs)


def guarded_create_index(index_name: str, table_name: str, *args: Any, **kwargs: Any) -> None:
  """Create an index when its table exists and the index does not."""
  schema = kwargs.get("schema")
  if not table_exists(table_name=table_name, schema=schema):
    return
  if index_exists(index_name=index_name, table_name=table_name, schema=schema):
    return
  op.create_index(index_name, table_name, *args, **kwargs)


def guarded_drop_index(index_name: str, *, table_name: str, **kwargs: Any) -> None:
  """Drop an index only when it exists."""
  if not index_exists(index_name=index_name, table_name=table_name, schema=kwargs.get("schema")):
    return
  op.drop_index(index_name, table_name=table_name, **kwargs)


def guarded_drop_enum(enum_name: str) -> None:
  """Drop a PostgreSQL enum type left behind by a dropped table."""
  bind = op.get_bind()
  if bind.dialect.name != "postgresql":
    return
  sa.Enum(name=enum_name).drop(bind, checkfirst=True)
