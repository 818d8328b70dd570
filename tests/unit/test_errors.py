import asyncio
import uuid

import httpx
import pytest
from pydantic import BaseModel, ValidationError as PydanticValidationError

from clonecheck.utils.errors import (
    ERROR_KINDS,
    AppError,
    ErrorType,
    ValidationError,
    build_error_response,
    classify_error,
    get_error_code,
    resolve_request_id,
)
from clonecheck.utils.results import InvalidKind


# =============================================================================
# Taxonomy
# =============================================================================

@pytest.mark.parametrize("factory, status, code, retryable", [
    (AppError.timeout, 504, "GATEWAY_TIMEOUT", True),
    (AppError.validation, 422, "VALIDATION_ERROR", False),
    (AppError.confidence_validation, 422, "VALIDATION_ERROR", False),
    (AppError.source_validation, 422, "VALIDATION_ERROR", False),
    (AppError.ai_provider, 502, "AI_PROVIDER_DOWN", True),
    (AppError.first_party_extraction, 503, "SERVICE_UNAVAILABLE", True),
    (AppError.improvement_generation, 503, "SERVICE_UNAVAILABLE", True),
    (AppError.rate_limit, 429, "RATE_LIMITED", True),
    (AppError.config_missing, 500, "CONFIG_MISSING", False),
    (AppError.internal, 500, "INTERNAL", False),
])
def test_factories_carry_kind_triple(factory, status, code, retryable):
    error = factory("internal detail")
    assert error.status_code == status
    assert error.code == code
    assert error.retryable is retryable
    assert error.message == "internal detail"
    assert error.user_message


def test_every_kind_has_an_entry():
    assert set(ERROR_KINDS) == set(ErrorType)


def test_user_message_override():
    error = AppError.timeout("slow", user_message="Try later")
    assert error.user_message == "Try later"


@pytest.mark.parametrize("status, code", [
    (400, "BAD_REQUEST"),
    (401, "UNAUTHORIZED"),
    (404, "NOT_FOUND"),
    (429, "RATE_LIMITED"),
    (504, "GATEWAY_TIMEOUT"),
    (418, "UNKNOWN"),
])
def test_get_error_code(status, code):
    assert get_error_code(status) == code


def test_validation_error_details():
    error = ValidationError("URL is required", kind=InvalidKind.REQUIRED, field="url", value=None)
    assert error.status_code == 422
    assert error.details == {"kind": "REQUIRED", "field": "url"}
    assert error.user_message == "Invalid input data. Please check your request and try again."
    assert isinstance(error, AppError)


# =============================================================================
# Classification
# =============================================================================

def test_app_error_passes_through():
    error = AppError.rate_limit("slow down")
    assert classify_error(error) is error


def test_classify_builtin_timeout():
    assert classify_error(asyncio.TimeoutError()).error_type == ErrorType.TIMEOUT


def test_classify_httpx_timeout():
    error = httpx.ReadTimeout("read timed out")
    assert classify_error(error).status_code == 504


def test_classify_httpx_status_429():
    request = httpx.Request("POST", "https://api.example/v1")
    response = httpx.Response(429, request=request)
    error = httpx.HTTPStatusError("Too many", request=request, response=response)
    assert classify_error(error).error_type == ErrorType.RATE_LIMIT


def test_classify_httpx_status_500_is_provider():
    request = httpx.Request("POST", "https://api.example/v1")
    response = httpx.Response(500, request=request)
    error = httpx.HTTPStatusError("Server error", request=request, response=response)
    assert classify_error(error).error_type == ErrorType.AI_PROVIDER


def test_classify_pydantic_error():
    class Model(BaseModel):
        value: int

    with pytest.raises(PydanticValidationError) as exc:
        Model(value="nope")
    assert classify_error(exc.value).status_code == 422


def test_classify_connection_reset_is_timeout():
    error = classify_error(ConnectionResetError(104, "Connection reset by peer"))
    assert error.error_type == ErrorType.TIMEOUT
    assert error.status_code == 504
    assert error.retryable is True


@pytest.mark.parametrize("error", [
    ConnectionRefusedError(111, "Connection refused"),
    BrokenPipeError(32, "Broken pipe"),
    httpx.ConnectError("connection refused"),
])
def test_classify_connection_errors_as_provider(error):
    classified = classify_error(error)
    assert classified.error_type == ErrorType.AI_PROVIDER
    assert classified.retryable is True


def test_classify_unrelated_os_error_is_internal():
    assert classify_error(FileNotFoundError(2, "No such file")).error_type == ErrorType.INTERNAL


@pytest.mark.parametrize("message, error_type", [
    ("Operation timed out", ErrorType.TIMEOUT),
    ("DEADLINE_EXCEEDED", ErrorType.TIMEOUT),
    ("Connection reset by peer", ErrorType.TIMEOUT),
    ("Quota exceeded for project", ErrorType.RATE_LIMIT),
    ("Gemini returned an empty candidate", ErrorType.AI_PROVIDER),
    ("confidence missing", ErrorType.CONFIDENCE_VALIDATION),
    ("source list malformed", ErrorType.SOURCE_VALIDATION),
])
def test_classify_by_message(message, error_type):
    assert classify_error(Exception(message)).error_type == error_type


def test_classify_unknown_is_internal():
    error = classify_error(RuntimeError("something odd"))
    assert error.error_type == ErrorType.INTERNAL
    assert error.status_code == 500
    assert error.user_message == "Internal server error"
    assert error.message == "something odd"


# =============================================================================
# Wire format
# =============================================================================

def test_resolve_request_id_uses_header():
    assert resolve_request_id("  req-123 ") == "req-123"


def test_resolve_request_id_generates_uuid():
    generated = resolve_request_id(None)
    assert str(uuid.UUID(generated)) == generated
    assert resolve_request_id("   ") != ""


def test_error_response_production_hides_details():
    status, body = build_error_response(AppError.timeout("provider hung for 30s"), "req-1", production=True)
    assert status == 504
    assert body == {
        "error": "Request timed out. Please try again.",
        "code": "GATEWAY_TIMEOUT",
        "requestId": "req-1",
    }


def test_error_response_development_includes_details():
    status, body = build_error_response(AppError.timeout("provider hung for 30s"), "req-1", production=False)
    assert body["details"] == "provider hung for 30s"


def test_error_response_unknown_request_id():
    _, body = build_error_response(ValueError("kaboom"), None)
    assert body["requestId"] == "unknown"
    assert body["code"] == "INTERNAL"
    assert "kaboom" not in body["error"]
