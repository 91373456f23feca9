"""Normalize generic notification data into a provider-agnostic push payload."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from app.notifications.contracts import Notifiable, NotificationPayload


class PushFormatter:
  """Pure transform from raw notification data to a NotificationPayload."""

  def format(self, data: Mapping[str, Any], notifiable: Notifiable | None = None) -> NotificationPayload:
    """Build the payload; missing fields default to empty strings or None."""
    title = data.get("title")
    if title is None:
      title = data.get("subject")
    body = data.get("body")
    if body is None:
      body = data.get("message")

    raw_data = data.get("data")
    data_fields = dict(raw_data) if isinstance(raw_data, Mapping) else {}

    actions = data.get("actions")
    return NotificationPayload(
      title="" if title is None else str(title),
      body="" if body is None else str(body),
      image=_optional_str(data.get("image")),
      badge=_optional_int(data.get("badge")),
      sound=_optional_str(data.get("sound")) or "default",
      data=data_fields,
      click_action=_optional_str(data.get("click_action")),
      topic=_optional_str(data.get("topic")),
      icon=_optional_str(data.get("icon")),
      color=_optional_str(data.get("color")),
      tag=_optional_str(data.get("tag")),
      android_channel_id=_optional_str(data.get("android_channel_id") or data.get("channel_id")),
      android_priority=_optional_str(data.get("android_priority")),
      apns_priority=_optional_int(data.get("apns_priority")),
      apns_push_type=_optional_str(data.get("apns_push_type")),
      category=_optional_str(data.get("apns_category") or data.get("category")),
      collapse_id=_optional_str(data.get("collapse_id")),
      ttl=_ttl(data.get("ttl")),
      urgency=_optional_str(data.get("urgency")),
      renotify=_optional_bool(data.get("renotify")),
      require_interaction=_optional_bool(data.get("requireInteraction", data.get("require_interaction"))),
      actions=[dict(action) for action in actions if isinstance(action, Mapping)] if isinstance(actions, list) else None,
    )


def _optional_str(value: Any) -> str | None:
  if value is None:
    return None
  text = str(value)
  return text or None


def _optional_int(value: Any) -> int | None:
  if value is None or isinstance(value, bool):
    return None
  try:
    return int(value)
  except (TypeError, ValueError):
    return None


def _optional_bool(value: Any) -> bool | None:
  if value is None:
    return None
  return bool(value)


def _ttl(value: Any) -> int | str | None:
  # Numeric TTLs are seconds; anything else ("3600s") is passed through for FCM.
  if value is None or value == "":
    return None
  as_int = _optional_int(value)
  return as_int if as_int is not None else str(value)
