"""
Result values for the pure validators.

Synchronous validators return ``Ok(value)`` or ``Invalid(kind, message)``
instead of raising. Callers that prefer exceptions call ``unwrap()``, which
raises the taxonomy's ``ValidationError``.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar, Union

from clonecheck.utils.errors import ErrorType, ValidationError

T = TypeVar("T")


class InvalidKind(str, Enum):
    """Named validation failure."""
    INVALID_TYPE = "INVALID_TYPE"
    NOT_A_NUMBER = "NOT_A_NUMBER"
    OUT_OF_RANGE = "OUT_OF_RANGE"
    INVALID_FORMAT = "INVALID_FORMAT"
    NOT_AN_ARRAY = "NOT_AN_ARRAY"
    REQUIRED = "REQUIRED"
    EMPTY = "EMPTY"
    TOO_LONG = "TOO_LONG"
    HARMFUL_CONTENT = "HARMFUL_CONTENT"
    INVALID_URL = "INVALID_URL"
    UNSUPPORTED_PROTOCOL = "UNSUPPORTED_PROTOCOL"
    NOT_AN_OBJECT = "NOT_AN_OBJECT"
    ANALYSIS_MUST_BE_OBJECT = "ANALYSIS_MUST_BE_OBJECT"


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Invalid:
    """
    A failed validation.

    Attributes:
        kind: Which rule failed.
        message: Human-readable description, stable enough for tests.
        error_type: Taxonomy kind used when the failure is raised.
        field: Input field the failure refers to, if any.
    """
    kind: InvalidKind
    message: str
    error_type: ErrorType = ErrorType.VALIDATION
    field: Any = None

    @property
    def ok(self) -> bool:
        return False

    def unwrap(self):
        raise self.to_error()

    def to_error(self, value: Any = None) -> ValidationError:
        return ValidationError(
            self.message,
            kind=self.kind,
            error_type=self.error_type,
            field=self.field,
            value=value,
        )


ValidationResult = Union[Ok[T], Invalid]


def unwrap(result: "ValidationResult[T]") -> T:
    """Return the value of an ``Ok`` or raise the ``Invalid`` as an error."""
    return result.unwrap()


__all__ = [
    "InvalidKind",
    "Ok",
    "Invalid",
    "ValidationResult",
    "unwrap",
]
