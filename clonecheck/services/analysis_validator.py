"""
Analysis validator.

Repairs an untrusted AI provider payload into an enhanced (schema v2)
analysis. Only a non-object payload is rejected outright; every invalid
optional field is dropped and validation continues:

    - ``technical.confidence`` outside [0, 1], NaN or non-numeric
    - ``data.trafficEstimates.source`` and ``data.keyMetrics[].source`` that
      are not http(s) URLs
    - ``market.competitors[].url`` that are not http(s) URLs
    - a ``sources`` array with any invalid entry (replaced by ``[]``)

The target site is then cited from first-party data when it is not already.

Stored documents carry an explicit ``schemaVersion``; ``upgrade_analysis``
migrates version 1 documents instead of guessing the shape from parse
failures.
"""

import copy
from typing import Any, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from clonecheck.models.schemas import (
    ANALYSIS_SCHEMAS,
    SCHEMA_VERSION_ENHANCED,
    SCHEMA_VERSION_ORIGINAL,
    AnalysisRecord,
    BaseModel,
    EnhancedStructuredAnalysis,
    FirstPartyData,
    is_http_url,
)
from clonecheck.services.validation_service import ValidationService
from clonecheck.utils.errors import ValidationError
from clonecheck.utils.logger import get_logger
from clonecheck.utils.results import Invalid, InvalidKind

logger = get_logger(__name__)


SCHEMA_VERSION_KEY = "schemaVersion"

FirstPartyInput = Optional[Union[FirstPartyData, Mapping[str, Any]]]


class AnalysisValidator:
    """Validates, repairs and versions AI-generated analyses."""

    def __init__(self, validation_service: Optional[ValidationService] = None):
        self.validation = validation_service or ValidationService()

    # =========================================================================
    # Repair
    # =========================================================================

    def validate_enhanced_analysis(
        self,
        raw: Any,
        target_url: str,
        first_party: FirstPartyInput = None,
    ) -> dict[str, Any]:
        """
        Repair a raw provider payload.

        Args:
            raw: Parsed provider JSON. Not mutated.
            target_url: URL that was analyzed, used for self-citation.
            first_party: Sanitized first-party data, if extraction succeeded.

        Returns:
            A new dict with invalid optional fields removed and ``sources``
            always present.

        Raises:
            ValidationError: ``raw`` is not an object.
        """
        if not isinstance(raw, Mapping):
            Invalid(InvalidKind.ANALYSIS_MUST_BE_OBJECT, "Analysis must be an object").unwrap()

        analysis = copy.deepcopy(dict(raw))
        analysis.pop(SCHEMA_VERSION_KEY, None)

        self._repair_confidence(analysis)
        self._repair_data_sources(analysis)
        self._repair_competitor_urls(analysis)

        sources = self._recover_sources(analysis.get("sources"))
        analysis["sources"] = self.validation.add_target_site_as_source(
            sources, target_url, first_party
        )
        return analysis

    def _repair_confidence(self, analysis: dict[str, Any]) -> None:
        technical = analysis.get("technical")
        if not isinstance(technical, dict) or "confidence" not in technical:
            return

        result = self.validation.check_confidence_score(technical["confidence"])
        if not result.ok:
            logger.warning(
                "Dropping invalid field",
                field="technical.confidence",
                reason=result.message,
            )
            del technical["confidence"]
        elif result.value is None:
            del technical["confidence"]

    def _drop_invalid_url(self, container: Any, key: str, path: str) -> None:
        if not isinstance(container, dict) or container.get(key) is None:
            return
        if not is_http_url(container[key]):
            logger.warning(
                "Dropping invalid field",
                field=path,
                reason="not an http(s) URL",
                value=str(container[key])[:200],
            )
            del container[key]

    def _repair_data_sources(self, analysis: dict[str, Any]) -> None:
        data = analysis.get("data")
        if not isinstance(data, dict):
            return

        self._drop_invalid_url(
            data.get("trafficEstimates"), "source", "data.trafficEstimates.source"
        )

        metrics = data.get("keyMetrics")
        if isinstance(metrics, list):
            for index, metric in enumerate(metrics):
                self._drop_invalid_url(metric, "source", f"data.keyMetrics.{index}.source")

    def _repair_competitor_urls(self, analysis: dict[str, Any]) -> None:
        market = analysis.get("market")
        if not isinstance(market, dict):
            return
        competitors = market.get("competitors")
        if isinstance(competitors, list):
            for index, competitor in enumerate(competitors):
                self._drop_invalid_url(competitor, "url", f"market.competitors.{index}.url")

    def _recover_sources(self, sources: Any) -> list[dict[str, str]]:
        # All-or-nothing: one bad citation discards the whole array.
        if sources is None:
            return []
        result = self.validation.check_sources(sources)
        if not result.ok:
            logger.warning("Dropping invalid field", field="sources", reason=result.message)
            return []
        return result.value

    # =========================================================================
    # Parsing
    # =========================================================================

    @staticmethod
    def _parse(model: type[BaseModel], payload: Any) -> BaseModel:
        try:
            return model.model_validate(payload)
        except PydanticValidationError as e:
            logger.warning("Analysis failed schema validation", schema=model.__name__, errors=e.error_count())
            raise ValidationError(
                f"Analysis does not match {model.__name__}: {e}",
                kind=InvalidKind.INVALID_FORMAT,
                field="analysis",
            ) from e

    def parse_enhanced_analysis(
        self,
        raw: Any,
        target_url: str,
        first_party: FirstPartyInput = None,
    ) -> EnhancedStructuredAnalysis:
        """
        Repair ``raw`` and parse it as an enhanced analysis.

        Raises:
            ValidationError: Not an object, or a required section is missing
                or malformed.
        """
        repaired = self.validate_enhanced_analysis(raw, target_url, first_party)
        return self._parse(EnhancedStructuredAnalysis, repaired)

    # =========================================================================
    # Versioning
    # =========================================================================

    @staticmethod
    def detect_schema_version(document: Any) -> int:
        """Return the explicit ``schemaVersion`` tag; untagged documents are version 1."""
        if not isinstance(document, Mapping):
            Invalid(InvalidKind.ANALYSIS_MUST_BE_OBJECT, "Analysis must be an object").unwrap()

        version = document.get(SCHEMA_VERSION_KEY)
        if version is None:
            return SCHEMA_VERSION_ORIGINAL
        if isinstance(version, bool) or not isinstance(version, int):
            Invalid(
                InvalidKind.INVALID_TYPE,
                f"Schema version must be an integer, got {version!r}",
                field=SCHEMA_VERSION_KEY,
            ).unwrap()
        return version

    def upgrade_analysis(
        self,
        document: Any,
        target_url: str,
        first_party: FirstPartyInput = None,
    ) -> EnhancedStructuredAnalysis:
        """
        Bring a stored analysis to the enhanced schema.

        Version 1 documents go through the repair pass, which adds ``sources``
        and validates confidence and URLs. Version 2 documents are parsed as-is;
        a malformed version 2 document is an error and is never reinterpreted
        as version 1.
        """
        version = self.detect_schema_version(document)

        if version == SCHEMA_VERSION_ORIGINAL:
            logger.info("Upgrading analysis", from_version=version, to_version=SCHEMA_VERSION_ENHANCED)
            return self.parse_enhanced_analysis(document, target_url, first_party)

        if version == SCHEMA_VERSION_ENHANCED:
            payload = {k: v for k, v in document.items() if k != SCHEMA_VERSION_KEY}
            return self._parse(EnhancedStructuredAnalysis, payload)

        raise ValidationError(
            f"Unsupported schema version: {version}",
            kind=InvalidKind.OUT_OF_RANGE,
            field=SCHEMA_VERSION_KEY,
        )

    def parse_versioned_analysis(self, document: Any) -> BaseModel:
        """Parse a document with the model of its tagged version, without migrating."""
        version = self.detect_schema_version(document)
        model = ANALYSIS_SCHEMAS.get(version)
        if model is None:
            raise ValidationError(
                f"Unsupported schema version: {version}",
                kind=InvalidKind.OUT_OF_RANGE,
                field=SCHEMA_VERSION_KEY,
            )
        payload = {k: v for k, v in document.items() if k != SCHEMA_VERSION_KEY}
        return self._parse(model, payload)

    def upgrade_record(
        self,
        record: AnalysisRecord,
        first_party: FirstPartyInput = None,
    ) -> AnalysisRecord:
        """Return a copy of a stored record migrated to the enhanced schema."""
        if record.schema_version == SCHEMA_VERSION_ENHANCED:
            return record.model_copy(deep=True)

        document = {**record.analysis, SCHEMA_VERSION_KEY: record.schema_version}
        upgraded = self.upgrade_analysis(document, record.url, first_party)
        return record.model_copy(
            update={
                "schema_version": SCHEMA_VERSION_ENHANCED,
                "analysis": upgraded.to_dict(),
            },
            deep=True,
        )


def to_versioned_document(analysis: EnhancedStructuredAnalysis) -> dict[str, Any]:
    """Serialize an enhanced analysis with its ``schemaVersion`` tag."""
    return {**analysis.to_dict(), SCHEMA_VERSION_KEY: SCHEMA_VERSION_ENHANCED}


__all__ = [
    "SCHEMA_VERSION_KEY",
    "AnalysisValidator",
    "to_versioned_document",
]
