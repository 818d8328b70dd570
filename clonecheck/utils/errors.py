"""
Error taxonomy and classification.

Every failure that can reach a client is expressed as an ``AppError`` carrying
an HTTP status, a machine code, a pre-written user message and a retryable
flag. Errors raised by our own code carry their kind from the point of throw;
errors crossing an uncontrolled boundary (network stack, SDK exceptions) are
classified by type first and by message keywords as a last resort.
"""

import asyncio
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

import anthropic
import httpx
from pydantic import ValidationError as PydanticValidationError

from clonecheck.models.schemas import ErrorResponse
from clonecheck.utils.logger import get_logger

logger = get_logger(__name__)


# =============================================================================
# Taxonomy
# =============================================================================

class ErrorType(str, Enum):
    """Closed set of error kinds."""
    TIMEOUT = "TIMEOUT"
    VALIDATION = "VALIDATION"
    CONFIDENCE_VALIDATION = "CONFIDENCE_VALIDATION"
    SOURCE_VALIDATION = "SOURCE_VALIDATION"
    AI_PROVIDER = "AI_PROVIDER"
    FIRST_PARTY_EXTRACTION = "FIRST_PARTY_EXTRACTION"
    IMPROVEMENT_GENERATION = "IMPROVEMENT_GENERATION"
    RATE_LIMIT = "RATE_LIMIT"
    CONFIG = "CONFIG"
    INTERNAL = "INTERNAL"


# (status, code, retryable, default user message) per kind
ERROR_KINDS: dict[ErrorType, tuple[int, str, bool, str]] = {
    ErrorType.TIMEOUT: (
        504, "GATEWAY_TIMEOUT", True,
        "Request timed out. Please try again.",
    ),
    ErrorType.VALIDATION: (
        422, "VALIDATION_ERROR", False,
        "Invalid input data. Please check your request and try again.",
    ),
    ErrorType.CONFIDENCE_VALIDATION: (
        422, "VALIDATION_ERROR", False,
        "Invalid input data. Please check your request and try again.",
    ),
    ErrorType.SOURCE_VALIDATION: (
        422, "VALIDATION_ERROR", False,
        "Invalid input data. Please check your request and try again.",
    ),
    ErrorType.AI_PROVIDER: (
        502, "AI_PROVIDER_DOWN", True,
        "AI service is temporarily unavailable. Please try again.",
    ),
    ErrorType.FIRST_PARTY_EXTRACTION: (
        503, "SERVICE_UNAVAILABLE", True,
        "Unable to extract content from the target website. "
        "Analysis will continue with available data.",
    ),
    ErrorType.IMPROVEMENT_GENERATION: (
        503, "SERVICE_UNAVAILABLE", True,
        "Unable to generate business improvements. Please try again.",
    ),
    ErrorType.RATE_LIMIT: (
        429, "RATE_LIMITED", True,
        "Too many requests. Please wait before trying again.",
    ),
    ErrorType.CONFIG: (
        500, "CONFIG_MISSING", False,
        "Service is not configured correctly. Please contact support.",
    ),
    ErrorType.INTERNAL: (
        500, "INTERNAL", False,
        "Internal server error",
    ),
}

STATUS_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    422: "VALIDATION_ERROR",
    429: "RATE_LIMITED",
    500: "INTERNAL",
    502: "AI_PROVIDER_DOWN",
    503: "SERVICE_UNAVAILABLE",
    504: "GATEWAY_TIMEOUT",
}


def get_error_code(status_code: int) -> str:
    """Map an HTTP status to its standardized error code."""
    return STATUS_CODES.get(status_code, "UNKNOWN")


# =============================================================================
# Exceptions
# =============================================================================

class AppError(Exception):
    """
    Base application exception.

    Attributes:
        message: Internal description, logged but never sent to clients.
        status_code: HTTP status for the terminal response.
        code: Machine-readable error code.
        user_message: Pre-written, client-safe message.
        error_type: Taxonomy kind.
        details: Optional structured context for logs and development responses.
        retryable: Whether re-attempting the operation may succeed.
    """

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        code: Optional[str] = None,
        user_message: Optional[str] = None,
        error_type: ErrorType = ErrorType.INTERNAL,
        details: Optional[dict[str, Any]] = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code or get_error_code(status_code)
        self.user_message = user_message or ERROR_KINDS[error_type][3]
        self.error_type = error_type
        self.details = details
        self.retryable = retryable

    @classmethod
    def of_kind(
        cls,
        error_type: ErrorType,
        message: str,
        user_message: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> "AppError":
        """Build an error carrying the fixed status/code/retryable triple of its kind."""
        status_code, code, retryable, default_message = ERROR_KINDS[error_type]
        return cls(
            message,
            status_code=status_code,
            code=code,
            user_message=user_message or default_message,
            error_type=error_type,
            details=details,
            retryable=retryable,
        )

    @classmethod
    def timeout(cls, message: str, user_message: Optional[str] = None, details: Optional[dict] = None) -> "AppError":
        return cls.of_kind(ErrorType.TIMEOUT, message, user_message, details)

    @classmethod
    def validation(cls, message: str, user_message: Optional[str] = None, details: Optional[dict] = None) -> "AppError":
        return cls.of_kind(ErrorType.VALIDATION, message, user_message, details)

    @classmethod
    def confidence_validation(cls, message: str, user_message: Optional[str] = None, details: Optional[dict] = None) -> "AppError":
        return cls.of_kind(ErrorType.CONFIDENCE_VALIDATION, message, user_message, details)

    @classmethod
    def source_validation(cls, message: str, user_message: Optional[str] = None, details: Optional[dict] = None) -> "AppError":
        return cls.of_kind(ErrorType.SOURCE_VALIDATION, message, user_message, details)

    @classmethod
    def ai_provider(cls, message: str, user_message: Optional[str] = None, details: Optional[dict] = None) -> "AppError":
        return cls.of_kind(ErrorType.AI_PROVIDER, message, user_message, details)

    @classmethod
    def first_party_extraction(cls, message: str, user_message: Optional[str] = None, details: Optional[dict] = None) -> "AppError":
        return cls.of_kind(ErrorType.FIRST_PARTY_EXTRACTION, message, user_message, details)

    @classmethod
    def improvement_generation(cls, message: str, user_message: Optional[str] = None, details: Optional[dict] = None) -> "AppError":
        return cls.of_kind(ErrorType.IMPROVEMENT_GENERATION, message, user_message, details)

    @classmethod
    def rate_limit(cls, message: str, user_message: Optional[str] = None, details: Optional[dict] = None) -> "AppError":
        return cls.of_kind(ErrorType.RATE_LIMIT, message, user_message, details)

    @classmethod
    def config_missing(cls, message: str, user_message: Optional[str] = None, details: Optional[dict] = None) -> "AppError":
        return cls.of_kind(ErrorType.CONFIG, message, user_message, details)

    @classmethod
    def internal(cls, message: str, user_message: Optional[str] = None, details: Optional[dict] = None) -> "AppError":
        return cls.of_kind(ErrorType.INTERNAL, message, user_message, details)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class ValidationError(AppError):
    """
    Input or payload validation failure.

    ``kind`` names the failed rule, ``field``/``value`` point at the offending
    input when known.
    """

    def __init__(
        self,
        message: str,
        kind: Optional[Enum] = None,
        error_type: ErrorType = ErrorType.VALIDATION,
        field: Optional[str] = None,
        value: Any = None,
        user_message: Optional[str] = None,
    ):
        status_code, code, retryable, default_message = ERROR_KINDS[error_type]
        details: dict[str, Any] = {}
        if kind is not None:
            details["kind"] = kind.value
        if field is not None:
            details["field"] = field
        super().__init__(
            message,
            status_code=status_code,
            code=code,
            user_message=user_message or default_message,
            error_type=error_type,
            details=details or None,
            retryable=retryable,
        )
        self.kind = kind
        self.field = field
        self.value = value


# =============================================================================
# Classification
# =============================================================================

# Ordered: first matching bucket wins.
CLASSIFICATION_PATTERNS: list[tuple[ErrorType, tuple[str, ...]]] = [
    (ErrorType.TIMEOUT, ("timeout", "timed out", "etimedout", "econnreset", "connection reset", "deadline_exceeded")),
    (ErrorType.RATE_LIMIT, ("rate limit", "rate_limited", "ratelimit", "quota", "429", "too many requests", "resource_exhausted")),
    (ErrorType.AI_PROVIDER, ("ai provider", "gemini", "openai", "anthropic", "claude")),
    (ErrorType.CONFIDENCE_VALIDATION, ("confidence",)),
    (ErrorType.SOURCE_VALIDATION, ("source",)),
]


def classify_by_type(error: BaseException) -> Optional[AppError]:
    """
    Map exceptions from the network stack and known libraries onto the taxonomy.

    Returns None when the exception type carries no kind of its own.
    """
    message = str(error) or type(error).__name__

    if isinstance(error, (TimeoutError, asyncio.TimeoutError, httpx.TimeoutException, anthropic.APITimeoutError)):
        return AppError.timeout(message, details={"cause": type(error).__name__})
    if isinstance(error, ConnectionResetError):
        return AppError.timeout(message, details={"cause": type(error).__name__})
    if isinstance(error, ConnectionError):
        return AppError.ai_provider(message, details={"cause": type(error).__name__})
    if isinstance(error, anthropic.RateLimitError):
        return AppError.rate_limit(message, details={"cause": type(error).__name__})
    if isinstance(error, anthropic.APIError):
        return AppError.ai_provider(message, details={"cause": type(error).__name__})
    if isinstance(error, httpx.HTTPStatusError):
        if error.response.status_code == 429:
            return AppError.rate_limit(message, details={"status": 429})
        return AppError.ai_provider(message, details={"status": error.response.status_code})
    if isinstance(error, httpx.TransportError):
        return AppError.ai_provider(message, details={"cause": type(error).__name__})
    if isinstance(error, PydanticValidationError):
        return AppError.validation(message, details={"error_count": error.error_count()})
    return None


def classify_error(error: BaseException) -> AppError:
    """
    Translate an arbitrary exception into an ``AppError``.

    ``AppError`` instances pass through untouched. Known library exceptions are
    mapped by type. Anything else is matched case-insensitively against
    ``CLASSIFICATION_PATTERNS`` using its message and class name. Unmatched
    errors become ``INTERNAL`` with the generic user message; the raw text is
    only logged.
    """
    if isinstance(error, AppError):
        return error

    typed = classify_by_type(error)
    if typed is not None:
        return typed

    message = str(error)
    haystack = f"{message} {type(error).__name__}".lower()
    for error_type, patterns in CLASSIFICATION_PATTERNS:
        if any(pattern in haystack for pattern in patterns):
            return AppError.of_kind(error_type, message or type(error).__name__)

    logger.error(
        "Unhandled error",
        error=message,
        error_class=type(error).__name__,
        exc_info=error,
    )
    return AppError.internal(message or type(error).__name__)


# =============================================================================
# Wire format
# =============================================================================

def resolve_request_id(header_value: Optional[str] = None) -> str:
    """Use a forwarded X-Request-ID when present, otherwise mint a UUID4."""
    if header_value and header_value.strip():
        return header_value.strip()
    return str(uuid4())


def build_error_response(
    error: BaseException,
    request_id: Optional[str] = None,
    production: bool = True,
) -> tuple[int, dict[str, Any]]:
    """
    Convert any exception into ``(status, body)`` for the HTTP boundary.

    The body is always ``{error, code, requestId}``; ``details`` carries the
    internal message and is only attached outside production.
    """
    app_error = classify_error(error)
    response = ErrorResponse(
        error=app_error.user_message,
        code=app_error.code,
        request_id=request_id if request_id and request_id.strip() else "unknown",
        details=None if production else app_error.message,
    )
    return app_error.status_code, response.to_wire()
