import json

from dance_admin.api.errors import ErrorHandlerRegistry, Registration, default_registry
from dance_admin.errors import Conflict, ErrorCode, InvalidAmount, NotFound, Unavailable


def test_duplicate_registration_is_reported_not_swallowed():
    registry = ErrorHandlerRegistry()
    assert registry.register(ErrorCode.NOT_FOUND, lambda e: "first") == Registration.ADDED
    assert registry.register(ErrorCode.NOT_FOUND, lambda e: "second") == Registration.DUPLICATE
    assert registry.user_message(NotFound("x")) == "first"


def test_replace_overrides():
    registry = ErrorHandlerRegistry()
    registry.register(ErrorCode.NOT_FOUND, lambda e: "first")
    registry.replace(ErrorCode.NOT_FOUND, lambda e: "second")
    assert registry.user_message(NotFound("x")) == "second"


def test_falls_back_to_error_message():
    registry = ErrorHandlerRegistry()
    assert registry.user_message(InvalidAmount("Amount must be positive")) == "Amount must be positive"


def test_render_uses_status_code_and_code():
    response = default_registry().render(Conflict("lost race", {"id": "2025-03-08"}))
    body = json.loads(response.body)
    assert response.status_code == 409
    assert body["error"]["code"] == "CONFLICT"
    assert body["error"]["details"] == {"id": "2025-03-08"}
    assert "try again" in body["user_message"]


def test_retryable_flags():
    assert Conflict("x").retryable and Unavailable("x").retryable
    assert not NotFound("x").retryable
    assert ErrorCode.CONFLICT in default_registry()
