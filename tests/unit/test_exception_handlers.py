"""Unit tests for API exception sanitization behavior."""

from __future__ import annotations

import json

import pytest
from starlette.requests import Request

from app.core.exceptions import _error_payload, _sanitize_validation_errors, device_validation_exception_handler, storage_exception_handler
from app.notifications.contracts import InvalidProviderError, StorageError, ValidationError


def _request(request_id: str | None = "req-1") -> Request:
  scope = {"type": "http", "method": "POST", "path": "/notiva/devices", "headers": [], "query_string": b"", "state": {}}
  if request_id:
    scope["state"]["request_id"] = request_id
  return Request(scope)


def test_sanitize_validation_errors_removes_input_and_serializes_exception_ctx() -> None:
  """Validation errors stay JSON-serializable and never echo raw request payloads."""
  errors = [{"type": "value_error", "loc": ("body", "subscription"), "msg": "Value error, endpoint must use https.", "input": {"endpoint": "http://push"}, "ctx": {"error": ValueError("endpoint must use https."), "input": {"endpoint": "http://push"}}}]
  sanitized = _sanitize_validation_errors(errors)
  assert "input" not in sanitized[0]
  assert sanitized[0]["ctx"]["error"] == "ValueError: endpoint must use https."
  assert "input" not in sanitized[0]["ctx"]
  assert sanitized[0]["loc"] == ["body", "subscription"]


def test_error_payload_omits_unknown_request_id() -> None:
  assert _error_payload("boom") == {"detail": "boom"}
  assert _error_payload("boom", request_id="abc") == {"detail": "boom", "requestId": "abc"}


@pytest.mark.anyio
async def test_device_validation_handler_distinguishes_invalid_provider() -> None:
  provider_response = await device_validation_exception_handler(_request(), InvalidProviderError("sms"))
  field_response = await device_validation_exception_handler(_request(), ValidationError({"platform": "Invalid platform"}))

  assert provider_response.status_code == 400
  assert field_response.status_code == 422
  assert json.loads(field_response.body) == {"detail": {"errors": {"platform": "Invalid platform"}}, "requestId": "req-1"}


@pytest.mark.anyio
async def test_storage_handler_hides_cause() -> None:
  error = StorageError("Database error")
  error.__cause__ = RuntimeError("password=hunter2")

  response = await storage_exception_handler(_request(request_id=None), error)

  assert response.status_code == 500
  assert json.loads(response.body) == {"detail": "Internal Server Error"}
