"""Data models module for clonecheck."""

from clonecheck.models.schemas import (
    # Base Models
    BaseModel,

    # Versioning
    SCHEMA_VERSION_ORIGINAL,
    SCHEMA_VERSION_ENHANCED,
    ANALYSIS_SCHEMAS,

    # Source Models
    Source,
    FirstPartyData,

    # Analysis Models
    StructuredAnalysis,
    EnhancedStructuredAnalysis,
    SWOTAnalysis,
    Competitor,

    # Request / Storage Models
    AnalysisRequest,
    ImprovementRequest,
    AnalysisRecord,

    # Error Models
    ErrorResponse,
    ErrorGuidance,

    # Validators
    InvalidUrlError,
    UnsupportedProtocolError,
    parse_http_url,
    is_http_url,
    hostname_of,
)
