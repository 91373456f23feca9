"""Shared FastAPI dependencies for the device and push services."""

from __future__ import annotations

from functools import lru_cache

from app.config import get_settings
from app.notifications.device_registry import DeviceRegistry
from app.notifications.factory import build_push_service
from app.notifications.service import PushNotificationService


def get_device_registry() -> DeviceRegistry:
  """Dependency returning a registry bound to the process-wide session factory."""
  return DeviceRegistry()


@lru_cache(maxsize=1)
def get_push_service() -> PushNotificationService:
  """Build the push service once so adapters share one credential cache."""
  return build_push_service(get_settings())
