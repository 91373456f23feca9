"""Shared fixtures: settings isolation and an in-memory SQLite device store."""

from __future__ import annotations

import os

os.environ.setdefault("NOTIVA_ENV", "test")
os.environ.pop("NOTIVA_PG_DSN", None)
os.environ.pop("DATABASE_URL", None)

import pytest  # noqa: E402
from sqlalchemy import event  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.core.database import Base  # noqa: E402
from app.schema.sql import User  # noqa: E402

TEST_USER_UUID = "usr000000001"
OTHER_USER_UUID = "usr000000002"


@pytest.fixture
def anyio_backend():
  return "asyncio"


@pytest.fixture
async def session_factory(anyio_backend):
  engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False})

  # SQLite only enforces ON DELETE CASCADE with foreign keys switched on.
  @event.listens_for(engine.sync_engine, "connect")
  def _enable_foreign_keys(dbapi_connection, _record):  # noqa: ANN001
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()

  async with engine.begin() as connection:
    await connection.run_sync(Base.metadata.create_all)

  factory = async_sessionmaker(bind=engine, expire_on_commit=False)
  async with factory() as session, session.begin():
    session.add_all([User(uuid=TEST_USER_UUID, firebase_uid="firebase-uid-1", email="one@example.com"), User(uuid=OTHER_USER_UUID, firebase_uid="firebase-uid-2", email="two@example.com")])

  yield factory
  await engine.dispose()
