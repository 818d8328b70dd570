import pytest

from clonecheck.utils.errors import ErrorType, ValidationError
from clonecheck.utils.results import Invalid, InvalidKind, Ok, unwrap


def test_ok_unwrap():
    result = Ok(5)
    assert result.ok is True
    assert result.unwrap() == 5
    assert unwrap(result) == 5


def test_invalid_unwrap_raises_validation_error():
    result = Invalid(InvalidKind.OUT_OF_RANGE, "too big", error_type=ErrorType.CONFIDENCE_VALIDATION, field="confidence")
    assert result.ok is False

    with pytest.raises(ValidationError, match="too big") as exc:
        unwrap(result)
    assert exc.value.kind == InvalidKind.OUT_OF_RANGE
    assert exc.value.error_type == ErrorType.CONFIDENCE_VALIDATION
    assert exc.value.field == "confidence"


def test_invalid_to_error_keeps_value():
    error = Invalid(InvalidKind.REQUIRED, "URL is required", field="url").to_error(value={})
    assert error.value == {}
    assert error.details == {"kind": "REQUIRED", "field": "url"}


def test_results_are_comparable():
    assert Ok("a") == Ok("a")
    assert Invalid(InvalidKind.EMPTY, "x") == Invalid(InvalidKind.EMPTY, "x")
    assert Invalid(InvalidKind.EMPTY, "x") != Invalid(InvalidKind.EMPTY, "y")
