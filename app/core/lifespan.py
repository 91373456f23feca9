from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from urllib.parse import urlparse

from fastapi import FastAPI

from app.core.database import dispose_engine
from app.core.firebase import initialize_firebase
from app.core.logging import _initialize_logging
from app.notifications.channel import PushChannel

logger = logging.getLogger("app.core.lifespan")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Initialize logging, Firebase and the push channel; dispose the engine on shutdown."""
  from app.api.deps import get_push_service
  from app.config import get_settings

  settings = get_settings()

  try:
    _initialize_logging(settings)
    logger.info("Startup complete - logging verified. environment=%s database=%s", settings.environment, _redact_dsn(settings.pg_dsn))
    initialize_firebase()
  except Exception:  # noqa: BLE001
    # Logging or Firebase problems must not keep the service from starting.
    logger.warning("Startup initialization incomplete.", exc_info=True)

  _log_push_capabilities(get_push_service().channel)

  yield

  await dispose_engine()


def _log_push_capabilities(channel: PushChannel) -> None:
  """Report which providers are enabled and able to send."""
  options = channel.options
  enabled = [provider.value for provider in options.default_order if provider in options.enabled]
  available = [provider.value for provider in channel.available_providers()]
  logger.info("Push providers order=%s enabled=%s available=%s", ",".join(p.value for p in options.default_order), ",".join(enabled) or "<none>", ",".join(available) or "<none>")
  for provider in enabled:
    if provider not in available:
      logger.warning("Push provider %s is enabled but not available (configuration incomplete or client missing)", provider)


def _redact_dsn(raw: str | None) -> str:
  """Redact credentials from a DSN while keeping host/db visible."""
  if not raw:
    return "<unset>"

  parsed = urlparse(raw)
  if not parsed.scheme:
    return "<invalid>"

  user = parsed.username or ""
  host = parsed.hostname or ""
  port = f":{parsed.port}" if parsed.port else ""
  netloc = f"{user}@{host}{port}" if user else f"{host}{port}"
  database = parsed.path.lstrip("/")
  path = f"/{database}" if database else ""
  return f"{parsed.scheme}://{netloc}{path}"
