"""
Validation service for request inputs, confidence scores and source attribution.

Every rule has two forms:

    check_<rule>(...)    -> Ok(value) | Invalid(kind, message)
    validate_<rule>(...) -> value, raising ``ValidationError`` when invalid

The check forms never raise, which keeps the hot validation path free of
exception-driven control flow. The validate forms are for callers at the
request boundary that want a taxonomy error to propagate.
"""

import math
import re
from typing import Any, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from clonecheck.models.schemas import (
    EXCERPT_MAX_LENGTH,
    EXCERPT_MIN_LENGTH,
    AnalysisRequest,
    FirstPartyData,
    ImprovementRequest,
    InvalidUrlError,
    Source,
    UnsupportedProtocolError,
    hostname_of,
    normalize_url,
    parse_http_url,
)
from clonecheck.utils.errors import ErrorType, ValidationError
from clonecheck.utils.logger import get_logger
from clonecheck.utils.results import Invalid, InvalidKind, Ok, ValidationResult

logger = get_logger(__name__)


SPECULATIVE_THRESHOLD = 0.6

GOAL_MAX_LENGTH = 500

DEFAULT_MIN_TIMEOUT_MS = 1000
DEFAULT_MAX_TIMEOUT_MS = 60000

# Minimum length for the first-party description to be used as an excerpt
DESCRIPTION_EXCERPT_MIN_LENGTH = 20

FIRST_PARTY_LIMITS = {
    "title": 200,
    "description": 300,
    "h1": 200,
    "text_snippet": 500,
}


def _type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, Mapping):
        return "object"
    return type(value).__name__


def _pydantic_issues(error: PydanticValidationError) -> str:
    issues = []
    for item in error.errors():
        path = ".".join(str(part) for part in item["loc"])
        issues.append(f"{path}: {item['msg']}" if path else item["msg"])
    return ", ".join(issues)


class ValidationService:
    """Pure validators for everything entering or leaving the analysis pipeline."""

    DANGEROUS_CHARS_PATTERN = re.compile(r"[<>&\"']")
    WHITESPACE_PATTERN = re.compile(r"\s+")
    UUID_PATTERN = re.compile(
        r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
        re.IGNORECASE,
    )
    HARMFUL_GOAL_PATTERNS = ("<script", "javascript:", "onclick=", "<iframe", "eval(")

    # =========================================================================
    # Confidence
    # =========================================================================

    def check_confidence_score(self, confidence: Any) -> ValidationResult[Optional[float]]:
        if confidence is None:
            return Ok(None)

        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            return Invalid(
                InvalidKind.INVALID_TYPE,
                f"Invalid confidence score type: expected number, got {_type_name(confidence)}",
                error_type=ErrorType.CONFIDENCE_VALIDATION,
                field="confidence",
            )

        if math.isnan(confidence):
            return Invalid(
                InvalidKind.NOT_A_NUMBER,
                "Confidence score cannot be NaN",
                error_type=ErrorType.CONFIDENCE_VALIDATION,
                field="confidence",
            )

        if confidence < 0 or confidence > 1:
            return Invalid(
                InvalidKind.OUT_OF_RANGE,
                f"Confidence score must be between 0 and 1, got {confidence}",
                error_type=ErrorType.CONFIDENCE_VALIDATION,
                field="confidence",
            )

        return Ok(confidence)

    def validate_confidence_score(self, confidence: Any) -> Optional[float]:
        """Return the score unchanged, ``None`` when absent, or raise."""
        return self.check_confidence_score(confidence).unwrap()

    @staticmethod
    def is_speculative(confidence: Optional[float]) -> bool:
        """True when a confidence score is present and below 0.6."""
        return confidence is not None and confidence < SPECULATIVE_THRESHOLD

    # =========================================================================
    # Sources
    # =========================================================================

    def check_source(self, source: Any) -> ValidationResult[dict[str, str]]:
        try:
            parsed = Source.model_validate(source)
        except PydanticValidationError as e:
            return Invalid(
                InvalidKind.INVALID_FORMAT,
                f"Invalid source format: {_pydantic_issues(e)}",
                error_type=ErrorType.SOURCE_VALIDATION,
                field="source",
            )
        return Ok({"url": parsed.url, "excerpt": parsed.excerpt})

    def validate_source(self, source: Any) -> dict[str, str]:
        """
        Validate one ``{url, excerpt}`` citation.

        A source that passes is returned unchanged, so validating it again is
        an identity.
        """
        return self.check_source(source).unwrap()

    def check_sources(self, sources: Any) -> ValidationResult[list[dict[str, str]]]:
        if not isinstance(sources, list):
            return Invalid(
                InvalidKind.NOT_AN_ARRAY,
                f"Sources must be an array, got {_type_name(sources)}",
                error_type=ErrorType.SOURCE_VALIDATION,
                field="sources",
            )

        validated = []
        for index, source in enumerate(sources):
            result = self.check_source(source)
            if not result.ok:
                return Invalid(
                    result.kind,
                    f"Source at index {index}: {result.message}",
                    error_type=ErrorType.SOURCE_VALIDATION,
                    field=f"sources.{index}",
                )
            validated.append(result.value)
        return Ok(validated)

    def validate_sources(self, sources: Any) -> list[dict[str, str]]:
        """Validate every source, failing on the first invalid entry."""
        return self.check_sources(sources).unwrap()

    def add_target_site_as_source(
        self,
        sources: list[dict[str, str]],
        target_url: str,
        first_party: Optional[Union[FirstPartyData, Mapping[str, Any]]] = None,
    ) -> list[dict[str, str]]:
        """
        Prepend the target site as a citation built from its first-party data.

        Nothing is added when there is no first-party data, when a source with
        the same hostname is already cited, or when no usable excerpt can be
        built. The input list is never mutated; applying this twice gives the
        same result as applying it once.
        """
        result = list(sources)
        if not first_party:
            return result

        target_host = hostname_of(target_url)
        if target_host is None:
            logger.warning("Target URL has no hostname, skipping self-citation", target_url=target_url)
            return result

        for source in result:
            url = source.get("url") if isinstance(source, Mapping) else None
            if hostname_of(url) == target_host:
                return result

        excerpt = self.create_first_party_excerpt(first_party)
        if not EXCERPT_MIN_LENGTH <= len(excerpt) <= EXCERPT_MAX_LENGTH:
            logger.debug("No usable first-party excerpt", target_url=target_url)
            return result

        return [{"url": target_url, "excerpt": excerpt}, *result]

    @staticmethod
    def create_first_party_excerpt(
        first_party: Union[FirstPartyData, Mapping[str, Any]],
    ) -> str:
        """
        Pick the excerpt used when citing the target site.

        Preference: description (at least 20 characters), then h1, title and
        text snippet (at least 10 characters each). Candidates over 300
        characters are cut to 297 and suffixed with ``...``. Returns ``""``
        when nothing qualifies.
        """
        if isinstance(first_party, FirstPartyData):
            fields = first_party.model_dump()
        else:
            fields = dict(first_party)
            if "text_snippet" not in fields:
                fields["text_snippet"] = fields.get("textSnippet")

        candidates = [
            (fields.get("description"), DESCRIPTION_EXCERPT_MIN_LENGTH),
            (fields.get("h1"), EXCERPT_MIN_LENGTH),
            (fields.get("title"), EXCERPT_MIN_LENGTH),
            (fields.get("text_snippet"), EXCERPT_MIN_LENGTH),
        ]
        for text, min_length in candidates:
            if not isinstance(text, str):
                continue
            trimmed = text.strip()
            if len(trimmed) > EXCERPT_MAX_LENGTH:
                return trimmed[: EXCERPT_MAX_LENGTH - 3] + "..."
            if len(trimmed) >= min_length:
                return trimmed
        return ""

    # =========================================================================
    # First-party data
    # =========================================================================

    def sanitize_text(self, text: str, max_length: int) -> str:
        """Strip ``<>&"'``, collapse whitespace and truncate."""
        sanitized = self.DANGEROUS_CHARS_PATTERN.sub("", text)
        sanitized = self.WHITESPACE_PATTERN.sub(" ", sanitized).strip()
        return sanitized[:max_length]

    def validate_first_party_data(self, raw: Any) -> Optional[FirstPartyData]:
        """
        Build sanitized first-party data from scraped metadata.

        Never raises: a non-mapping input or an unusable URL gives ``None``,
        every other problem degrades to the per-field default.
        """
        if not isinstance(raw, Mapping):
            return None

        try:
            url = parse_http_url(raw.get("url"))
        except InvalidUrlError as e:
            logger.warning("Discarding first-party data with invalid URL", error=str(e))
            return None

        values = {}
        for field_name, limit in FIRST_PARTY_LIMITS.items():
            value = raw.get(field_name)
            if value is None and field_name == "text_snippet":
                value = raw.get("textSnippet")
            text = str(value) if value else ""
            values[field_name] = self.sanitize_text(text, limit)

        if not values["title"]:
            values["title"] = "Untitled"

        return FirstPartyData(url=url, **values)

    # =========================================================================
    # Request parameters
    # =========================================================================

    def check_url(self, url: Any) -> ValidationResult[str]:
        if not isinstance(url, str):
            return Invalid(InvalidKind.INVALID_TYPE, "URL must be a string", field="url")
        try:
            return Ok(parse_http_url(url))
        except UnsupportedProtocolError as e:
            return Invalid(InvalidKind.UNSUPPORTED_PROTOCOL, str(e), field="url")
        except InvalidUrlError as e:
            return Invalid(InvalidKind.INVALID_URL, str(e), field="url")

    def sanitize_url(self, url: Any) -> str:
        """
        Return the canonical form of an http(s) URL.

        Canonicalization adds a trailing slash to bare domains
        (``https://example.com`` -> ``https://example.com/``).
        """
        return self.check_url(url).unwrap()

    def check_excerpt(self, excerpt: Any) -> ValidationResult[str]:
        if not isinstance(excerpt, str):
            return Invalid(InvalidKind.INVALID_TYPE, "Excerpt must be a string", field="excerpt")
        return Ok(self.sanitize_text(excerpt, EXCERPT_MAX_LENGTH))

    def sanitize_excerpt(self, excerpt: Any) -> str:
        """Strip dangerous characters, collapse whitespace, hard-truncate to 300."""
        return self.check_excerpt(excerpt).unwrap()

    def _check_goal(self, goal: Any) -> ValidationResult[Optional[str]]:
        if goal is None:
            return Ok(None)
        if not isinstance(goal, str):
            return Invalid(InvalidKind.INVALID_TYPE, "Goal must be a string if provided", field="goal")
        trimmed = goal.strip()
        if not trimmed:
            return Invalid(InvalidKind.EMPTY, "Goal cannot be empty if provided", field="goal")
        if len(trimmed) > GOAL_MAX_LENGTH:
            return Invalid(
                InvalidKind.TOO_LONG,
                f"Goal cannot exceed {GOAL_MAX_LENGTH} characters",
                field="goal",
            )
        return Ok(trimmed)

    def check_analysis_request(self, body: Any) -> ValidationResult[AnalysisRequest]:
        if not isinstance(body, Mapping):
            return Invalid(InvalidKind.NOT_AN_OBJECT, "Request body must be an object")

        url = body.get("url")
        if url is None:
            return Invalid(InvalidKind.REQUIRED, "URL is required", field="url")
        if not isinstance(url, str):
            return Invalid(InvalidKind.INVALID_TYPE, "URL must be a string", field="url")
        if not url.strip():
            return Invalid(InvalidKind.EMPTY, "URL cannot be empty", field="url")

        url_result = self.check_url(normalize_url(url))
        if not url_result.ok:
            if url_result.kind == InvalidKind.INVALID_URL:
                return Invalid(InvalidKind.INVALID_URL, f"Invalid URL: {url.strip()}", field="url")
            return url_result

        goal_result = self._check_goal(body.get("goal"))
        if not goal_result.ok:
            return goal_result

        return Ok(AnalysisRequest(url=url_result.value, goal=goal_result.value))

    def validate_analysis_request(self, body: Any) -> AnalysisRequest:
        """
        Validate ``{url, goal?}``; the returned URL is canonicalized.

        A URL without a scheme is read as https (``example.com`` ->
        ``https://example.com/``).
        """
        return self.check_analysis_request(body).unwrap()

    def check_improvement_request(self, body: Any) -> ValidationResult[ImprovementRequest]:
        if body is None:
            return Ok(ImprovementRequest())
        if not isinstance(body, Mapping):
            return Invalid(InvalidKind.NOT_AN_OBJECT, "Request body must be an object")

        goal_result = self._check_goal(body.get("goal"))
        if not goal_result.ok:
            return goal_result

        goal = goal_result.value
        if goal is not None:
            lowered = goal.lower()
            if any(pattern in lowered for pattern in self.HARMFUL_GOAL_PATTERNS):
                return Invalid(
                    InvalidKind.HARMFUL_CONTENT,
                    "Goal contains potentially harmful content",
                    field="goal",
                )

        return Ok(ImprovementRequest(goal=goal))

    def validate_improvement_request(self, body: Any) -> ImprovementRequest:
        """Validate an optional ``{goal?}`` body; ``None`` is accepted."""
        return self.check_improvement_request(body).unwrap()

    def check_analysis_id(self, analysis_id: Any) -> ValidationResult[str]:
        if analysis_id is None:
            return Invalid(InvalidKind.REQUIRED, "Analysis ID is required", field="id")
        if not isinstance(analysis_id, str):
            return Invalid(InvalidKind.INVALID_TYPE, "Analysis ID must be a string", field="id")
        if not analysis_id.strip():
            return Invalid(InvalidKind.EMPTY, "Analysis ID cannot be empty", field="id")
        if not self.UUID_PATTERN.match(analysis_id):
            return Invalid(InvalidKind.INVALID_FORMAT, "Analysis ID must be a valid UUID", field="id")
        return Ok(analysis_id)

    def validate_analysis_id(self, analysis_id: Any) -> str:
        return self.check_analysis_id(analysis_id).unwrap()

    def check_timeout(
        self,
        timeout: Any,
        min_ms: int = DEFAULT_MIN_TIMEOUT_MS,
        max_ms: int = DEFAULT_MAX_TIMEOUT_MS,
    ) -> ValidationResult[int]:
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or math.isnan(timeout):
            return Invalid(InvalidKind.NOT_A_NUMBER, "Timeout must be a valid number", field="timeout")

        value = math.floor(timeout) if math.isfinite(timeout) else timeout
        if value < min_ms:
            return Invalid(InvalidKind.OUT_OF_RANGE, f"Timeout must be at least {min_ms}ms", field="timeout")
        if value > max_ms:
            return Invalid(InvalidKind.OUT_OF_RANGE, f"Timeout cannot exceed {max_ms}ms", field="timeout")
        return Ok(int(value))

    def validate_timeout(
        self,
        timeout: Any,
        min_ms: int = DEFAULT_MIN_TIMEOUT_MS,
        max_ms: int = DEFAULT_MAX_TIMEOUT_MS,
    ) -> int:
        """Floor a millisecond timeout and check it lies in ``[min_ms, max_ms]``."""
        return self.check_timeout(timeout, min_ms, max_ms).unwrap()

    # =========================================================================
    # Errors
    # =========================================================================

    @staticmethod
    def create_validation_error(field: str, message: str, value: Any = None) -> ValidationError:
        """Build a field-scoped ``ValidationError`` without raising it."""
        return ValidationError(
            f"Validation failed for {field}: {message}",
            field=field,
            value=value,
        )


__all__ = [
    "SPECULATIVE_THRESHOLD",
    "GOAL_MAX_LENGTH",
    "DEFAULT_MIN_TIMEOUT_MS",
    "DEFAULT_MAX_TIMEOUT_MS",
    "ValidationService",
]
