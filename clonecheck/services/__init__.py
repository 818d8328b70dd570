"""
Services package for clonecheck.

Services:
    - ValidationService: Pure validators for requests, confidence and sources
    - AnalysisValidator: Repair and schema versioning of AI analyses
    - FirstPartyExtractor: Target-site metadata scraping
    - AnalysisStore: In-memory analysis storage
"""

from clonecheck.services.validation_service import ValidationService, SPECULATIVE_THRESHOLD
from clonecheck.services.analysis_validator import AnalysisValidator, to_versioned_document
from clonecheck.services.first_party import (
    FirstPartyExtractionResult,
    FirstPartyExtractor,
    create_first_party_extractor,
)
from clonecheck.services.storage import AnalysisStorage, AnalysisStore

__all__ = [
    # Validation
    "ValidationService",
    "SPECULATIVE_THRESHOLD",
    "AnalysisValidator",
    "to_versioned_document",
    # First-party extraction
    "FirstPartyExtractor",
    "FirstPartyExtractionResult",
    "create_first_party_extractor",
    # Storage
    "AnalysisStorage",
    "AnalysisStore",
]
