"""Utils module for clonecheck."""

from clonecheck.utils.logger import LogContext, analysis_context, get_logger, setup_logging
from clonecheck.utils.errors import (
    AppError,
    ErrorType,
    ValidationError,
    build_error_response,
    classify_error,
    resolve_request_id,
)
from clonecheck.utils.results import Invalid, InvalidKind, Ok, ValidationResult
from clonecheck.utils.retry import (
    OperationCancelledError,
    PartialResultStore,
    RetryResult,
    generate_error_guidance,
    is_retryable_error,
    retry_with_backoff,
)

__all__ = [
    "get_logger",
    "setup_logging",
    "LogContext",
    "analysis_context",
    "AppError",
    "ErrorType",
    "ValidationError",
    "classify_error",
    "build_error_response",
    "resolve_request_id",
    "Ok",
    "Invalid",
    "InvalidKind",
    "ValidationResult",
    "retry_with_backoff",
    "is_retryable_error",
    "generate_error_guidance",
    "RetryResult",
    "OperationCancelledError",
    "PartialResultStore",
]
