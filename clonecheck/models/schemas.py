"""
Pydantic models and schemas for clonecheck.

This module defines the data structures exchanged between the AI provider
boundary, the validators, storage and the HTTP error boundary.

Models:
    - Source: Evidence citation (URL + excerpt)
    - FirstPartyData: Sanitized metadata scraped from the target site
    - StructuredAnalysis: Original (schema v1) analysis shape
    - EnhancedStructuredAnalysis: Schema v2 with confidence and sources
    - AnalysisRecord: Versioned unit handed to storage and UI
    - ErrorResponse: Wire-format error body
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Optional, Self
from urllib.parse import urlsplit
from uuid import uuid4

from pydantic import (
    BaseModel as PydanticBaseModel,
    ConfigDict,
    Field,
    HttpUrl,
    TypeAdapter,
    ValidationError as PydanticValidationError,
    field_validator,
)
from pydantic.alias_generators import to_camel


# =============================================================================
# Base Configuration
# =============================================================================

class BaseModel(PydanticBaseModel):
    """Base model with common configuration for all schemas."""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        populate_by_name=True,
        use_enum_values=True,
        alias_generator=to_camel,
    )

    def to_json(self, **kwargs) -> str:
        """Serialize model to camelCase JSON string."""
        return self.model_dump_json(indent=2, by_alias=True, exclude_none=True, **kwargs)

    def to_dict(self, **kwargs) -> dict[str, Any]:
        """Serialize model to a camelCase, JSON-compatible dictionary."""
        kwargs.setdefault("exclude_none", True)
        return self.model_dump(by_alias=True, mode="json", **kwargs)

    @classmethod
    def from_json(cls, json_str: str) -> Self:
        """Deserialize model from JSON string."""
        return cls.model_validate_json(json_str)


# =============================================================================
# Constants
# =============================================================================

SCHEMA_VERSION_ORIGINAL = 1
SCHEMA_VERSION_ENHANCED = 2

EXCERPT_MIN_LENGTH = 10
EXCERPT_MAX_LENGTH = 300

ALLOWED_URL_SCHEMES = ("http", "https")


# =============================================================================
# Validators (Reusable)
# =============================================================================

class InvalidUrlError(ValueError):
    """Raised when a string cannot be parsed as an absolute URL."""


class UnsupportedProtocolError(InvalidUrlError):
    """Raised when a URL parses but uses a scheme other than http/https."""


# A "host:port" prefix is not a scheme.
SCHEME_PATTERN = re.compile(r"^([A-Za-z][A-Za-z0-9+.\-]*):(?!\d+(?:[/?#]|$))")

_http_url_adapter = TypeAdapter(HttpUrl)


def parse_http_url(value: str) -> str:
    """
    Parse an http(s) URL and return its canonical string form.

    Canonicalization follows the URL parser: host lowercased and an empty path
    becomes ``/`` (``https://example.com`` -> ``https://example.com/``).

    Raises:
        UnsupportedProtocolError: The URL has a non-http(s) scheme.
        InvalidUrlError: The value is not an absolute URL.
    """
    if not isinstance(value, str):
        raise InvalidUrlError(f"Invalid URL: expected string, got {type(value).__name__}")

    candidate = value.strip()
    match = SCHEME_PATTERN.match(candidate)
    if not match:
        raise InvalidUrlError(f"Invalid URL: {value}")

    scheme = match.group(1).lower()
    if scheme not in ALLOWED_URL_SCHEMES:
        raise UnsupportedProtocolError(f"Unsupported protocol: {scheme}:")

    try:
        return str(_http_url_adapter.validate_python(candidate))
    except PydanticValidationError as e:
        raise InvalidUrlError(f"Invalid URL: {value}") from e


def normalize_url(value: str) -> str:
    """
    Trim user input and default a missing scheme to https.

    ``example.com`` -> ``https://example.com``, ``example.com:8080`` ->
    ``https://example.com:8080``. Input that already names a scheme is
    returned trimmed but otherwise untouched.
    """
    candidate = value.strip()
    if SCHEME_PATTERN.match(candidate):
        return candidate
    return f"https://{candidate}"


def is_http_url(value: Any) -> bool:
    """Check whether a value parses as an http(s) URL."""
    try:
        parse_http_url(value)
    except InvalidUrlError:
        return False
    return True


def hostname_of(url: Any) -> Optional[str]:
    """Return the lowercased hostname of a URL, or None if it has none."""
    if not isinstance(url, str):
        return None
    try:
        host = urlsplit(url.strip()).hostname
    except ValueError:
        return None
    return host or None


def _optional_http_url(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    parse_http_url(value)
    return value


# =============================================================================
# Source Attribution
# =============================================================================

class Source(BaseModel):
    """
    Evidence citation for a claim in the analysis.

    Example:
        >>> Source(url="https://example.com", excerpt="Pricing starts at $9 per month")
    """

    model_config = ConfigDict(str_strip_whitespace=False)

    url: str = Field(..., description="http(s) URL of the cited page")
    excerpt: str = Field(
        ...,
        min_length=EXCERPT_MIN_LENGTH,
        max_length=EXCERPT_MAX_LENGTH,
        description="Quoted evidence, 10-300 characters",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Require an http(s) URL; the original string is kept as-is."""
        parse_http_url(v)
        return v


class FirstPartyData(BaseModel):
    """
    Metadata extracted from the target business's own website.

    Created once per analysis request and never mutated afterwards.
    """

    model_config = ConfigDict(frozen=True)

    title: str = Field(default="Untitled", max_length=200)
    description: str = Field(default="", max_length=300)
    h1: str = Field(default="", max_length=200)
    text_snippet: str = Field(default="", max_length=500)
    url: str


# =============================================================================
# Analysis Models (schema v1)
# =============================================================================

class Overview(BaseModel):
    value_proposition: str
    target_audience: str
    monetization: str


class Competitor(BaseModel):
    name: str
    url: Optional[str] = None
    notes: Optional[str] = None


class SWOTAnalysis(BaseModel):
    """SWOT lists; each may be empty but must be present."""
    strengths: list[str]
    weaknesses: list[str]
    opportunities: list[str]
    threats: list[str]


class Market(BaseModel):
    competitors: list[Competitor]
    swot: SWOTAnalysis


class Technical(BaseModel):
    tech_stack: Optional[list[str]] = None
    ui_colors: Optional[list[str]] = None
    key_pages: Optional[list[str]] = None


class TrafficEstimates(BaseModel):
    value: str
    source: Optional[str] = None


class KeyMetric(BaseModel):
    name: str
    value: str
    source: Optional[str] = None


class DataSection(BaseModel):
    traffic_estimates: Optional[TrafficEstimates] = None
    key_metrics: Optional[list[KeyMetric]] = None


class Synthesis(BaseModel):
    summary: str
    key_insights: list[str]
    next_actions: list[str]


class StructuredAnalysis(BaseModel):
    """Original analysis shape, kept to read version 1 records."""

    overview: Overview
    market: Market
    technical: Optional[Technical] = None
    data: Optional[DataSection] = None
    synthesis: Synthesis


# =============================================================================
# Analysis Models (schema v2, "enhanced")
# =============================================================================

class EnhancedCompetitor(Competitor):
    @field_validator("url")
    @classmethod
    def validate_url(cls, v: Optional[str]) -> Optional[str]:
        return _optional_http_url(v)


class EnhancedMarket(Market):
    competitors: list[EnhancedCompetitor]


class EnhancedTechnical(Technical):
    confidence: Optional[float] = Field(
        default=None,
        strict=True,
        ge=0.0,
        le=1.0,
        allow_inf_nan=False,
        description="Confidence in the technical assessment (0-1)",
    )


class EnhancedTrafficEstimates(TrafficEstimates):
    @field_validator("source")
    @classmethod
    def validate_source(cls, v: Optional[str]) -> Optional[str]:
        return _optional_http_url(v)


class EnhancedKeyMetric(KeyMetric):
    as_of: Optional[str] = None

    @field_validator("source")
    @classmethod
    def validate_source(cls, v: Optional[str]) -> Optional[str]:
        return _optional_http_url(v)


class EnhancedDataSection(DataSection):
    traffic_estimates: Optional[EnhancedTrafficEstimates] = None
    key_metrics: Optional[list[EnhancedKeyMetric]] = None


class EnhancedStructuredAnalysis(BaseModel):
    """
    Analysis shape with confidence scoring and source attribution.

    Example:
        >>> analysis = EnhancedStructuredAnalysis.model_validate(payload)
        >>> analysis.technical.confidence
        0.8
    """

    overview: Overview
    market: EnhancedMarket
    technical: Optional[EnhancedTechnical] = None
    data: Optional[EnhancedDataSection] = None
    synthesis: Synthesis
    sources: list[Source] = Field(default_factory=list)


ANALYSIS_SCHEMAS: dict[int, type[BaseModel]] = {
    SCHEMA_VERSION_ORIGINAL: StructuredAnalysis,
    SCHEMA_VERSION_ENHANCED: EnhancedStructuredAnalysis,
}


# =============================================================================
# Request Models
# =============================================================================

class AnalysisRequest(BaseModel):
    url: str
    goal: Optional[str] = None


class ImprovementRequest(BaseModel):
    goal: Optional[str] = None


# =============================================================================
# Storage Models
# =============================================================================

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AnalysisRecord(BaseModel):
    """Versioned analysis document persisted by storage and rendered by the UI."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    url: str
    goal: Optional[str] = None
    schema_version: int = SCHEMA_VERSION_ENHANCED
    analysis: dict[str, Any]
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: Optional[datetime] = None


# =============================================================================
# Error Models
# =============================================================================

class ErrorResponse(BaseModel):
    """
    Wire-format error body.

    Example:
        >>> ErrorResponse(error="Request timed out. Please try again.",
        ...               code="GATEWAY_TIMEOUT", request_id="abc").to_wire()
        {'error': 'Request timed out. Please try again.', 'code': 'GATEWAY_TIMEOUT', 'requestId': 'abc'}
    """

    error: str
    code: str
    request_id: str = "unknown"
    details: Optional[str] = None

    def to_wire(self) -> dict[str, Any]:
        """Serialize to ``{error, code, requestId, details?}``."""
        return self.model_dump(by_alias=True, exclude_none=True)


class ErrorGuidance(BaseModel):
    """Actionable guidance surfaced to the end user for a failure."""

    user_message: str
    next_steps: list[str] = Field(default_factory=list)
    retryable: bool
    estimated_wait_time: Optional[str] = None


__all__ = [
    "BaseModel",
    "SCHEMA_VERSION_ORIGINAL",
    "SCHEMA_VERSION_ENHANCED",
    "EXCERPT_MIN_LENGTH",
    "EXCERPT_MAX_LENGTH",
    "ALLOWED_URL_SCHEMES",
    "InvalidUrlError",
    "UnsupportedProtocolError",
    "parse_http_url",
    "normalize_url",
    "is_http_url",
    "hostname_of",
    "Source",
    "FirstPartyData",
    "Overview",
    "Competitor",
    "SWOTAnalysis",
    "Market",
    "Technical",
    "TrafficEstimates",
    "KeyMetric",
    "DataSection",
    "Synthesis",
    "StructuredAnalysis",
    "EnhancedCompetitor",
    "EnhancedMarket",
    "EnhancedTechnical",
    "EnhancedTrafficEstimates",
    "EnhancedKeyMetric",
    "EnhancedDataSection",
    "EnhancedStructuredAnalysis",
    "ANALYSIS_SCHEMAS",
    "AnalysisRequest",
    "ImprovementRequest",
    "AnalysisRecord",
    "ErrorResponse",
    "ErrorGuidance",
]
