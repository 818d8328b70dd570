import copy

import pytest

from clonecheck.models.schemas import (
    AnalysisRecord,
    EnhancedStructuredAnalysis,
    StructuredAnalysis,
)
from clonecheck.services.analysis_validator import (
    SCHEMA_VERSION_KEY,
    AnalysisValidator,
    to_versioned_document,
)
from clonecheck.utils.errors import ValidationError
from clonecheck.utils.results import InvalidKind

TARGET = "https://acme.example"


@pytest.fixture
def validator():
    return AnalysisValidator()


# =============================================================================
# Repair
# =============================================================================

def test_valid_payload_keeps_everything(validator, raw_analysis):
    repaired = validator.validate_enhanced_analysis(raw_analysis, TARGET)

    assert repaired["technical"]["confidence"] == 0.8
    assert repaired["data"]["trafficEstimates"]["source"] == "https://similarweb.example/acme"
    assert repaired["sources"] == raw_analysis["sources"]


def test_input_is_not_mutated(validator, raw_analysis, first_party):
    raw_analysis["technical"]["confidence"] = 1.5
    raw_analysis["sources"].append({"url": "bad", "excerpt": "short"})
    snapshot = copy.deepcopy(raw_analysis)

    validator.validate_enhanced_analysis(raw_analysis, TARGET, first_party)

    assert raw_analysis == snapshot


@pytest.mark.parametrize("confidence", [1.5, -0.2, "high", float("nan")])
def test_invalid_confidence_is_dropped(validator, raw_analysis, confidence):
    raw_analysis["technical"]["confidence"] = confidence

    analysis = validator.parse_enhanced_analysis(raw_analysis, TARGET)

    assert analysis.technical.confidence is None
    assert analysis.technical.tech_stack == ["Next.js", "Postgres"]


def test_null_confidence_is_dropped(validator, raw_analysis):
    raw_analysis["technical"]["confidence"] = None
    repaired = validator.validate_enhanced_analysis(raw_analysis, TARGET)
    assert "confidence" not in repaired["technical"]


def test_invalid_data_source_urls_are_dropped(validator, raw_analysis):
    raw_analysis["data"]["trafficEstimates"]["source"] = "SimilarWeb"
    raw_analysis["data"]["keyMetrics"].append({"name": "ARR", "value": "$1M", "source": "ftp://files.example"})

    analysis = validator.parse_enhanced_analysis(raw_analysis, TARGET)

    assert analysis.data.traffic_estimates.value == "50k/month"
    assert analysis.data.traffic_estimates.source is None
    assert analysis.data.key_metrics[0].source == "https://acme.example/about"
    assert analysis.data.key_metrics[0].as_of == "2024-01"
    assert analysis.data.key_metrics[1].source is None


def test_invalid_competitor_url_is_dropped(validator, raw_analysis):
    raw_analysis["market"]["competitors"][0]["url"] = "globex dot com"

    analysis = validator.parse_enhanced_analysis(raw_analysis, TARGET)

    assert analysis.market.competitors[0].name == "Globex"
    assert analysis.market.competitors[0].url is None


def test_one_bad_source_discards_all(validator, raw_analysis):
    raw_analysis["sources"].append({"url": "https://ok.example", "excerpt": "tiny"})

    analysis = validator.parse_enhanced_analysis(raw_analysis, TARGET)

    assert analysis.sources == []


def test_non_array_sources_become_empty(validator, raw_analysis):
    raw_analysis["sources"] = "https://news.example"
    assert validator.validate_enhanced_analysis(raw_analysis, TARGET)["sources"] == []


def test_missing_sources_become_empty(validator, raw_analysis_v1):
    repaired = validator.validate_enhanced_analysis(raw_analysis_v1, TARGET)
    assert repaired["sources"] == []


def test_target_site_is_cited_from_first_party(validator, raw_analysis, first_party):
    analysis = validator.parse_enhanced_analysis(raw_analysis, TARGET, first_party)

    assert len(analysis.sources) == 2
    assert analysis.sources[0].url == TARGET
    assert analysis.sources[0].excerpt == first_party.description


def test_validating_twice_does_not_duplicate_target_site(validator, raw_analysis, first_party):
    once = validator.validate_enhanced_analysis(raw_analysis, TARGET, first_party)
    twice = validator.validate_enhanced_analysis(once, TARGET, first_party)

    assert twice == once
    assert [source["url"] for source in twice["sources"]].count(TARGET) == 1


def test_target_site_cited_after_sources_discarded(validator, raw_analysis, first_party):
    raw_analysis["sources"] = [{"url": "nope", "excerpt": "A long enough excerpt"}]

    analysis = validator.parse_enhanced_analysis(raw_analysis, TARGET, first_party)

    assert [source.url for source in analysis.sources] == [TARGET]


def test_non_object_payload_is_rejected(validator):
    with pytest.raises(ValidationError, match="Analysis must be an object") as exc:
        validator.validate_enhanced_analysis(["not", "an", "object"], TARGET)
    assert exc.value.kind == InvalidKind.ANALYSIS_MUST_BE_OBJECT


def test_missing_required_section_is_rejected(validator, raw_analysis):
    del raw_analysis["synthesis"]
    with pytest.raises(ValidationError) as exc:
        validator.parse_enhanced_analysis(raw_analysis, TARGET)
    assert exc.value.kind == InvalidKind.INVALID_FORMAT
    assert exc.value.status_code == 422


def test_schema_version_tag_is_not_part_of_analysis(validator, raw_analysis):
    raw_analysis[SCHEMA_VERSION_KEY] = 2
    repaired = validator.validate_enhanced_analysis(raw_analysis, TARGET)
    assert SCHEMA_VERSION_KEY not in repaired


# =============================================================================
# Versioning
# =============================================================================

def test_detect_schema_version(validator, raw_analysis):
    assert validator.detect_schema_version(raw_analysis) == 1
    assert validator.detect_schema_version({**raw_analysis, SCHEMA_VERSION_KEY: 2}) == 2


@pytest.mark.parametrize("tag", ["2", 2.0, True])
def test_detect_schema_version_rejects_non_integer(validator, raw_analysis, tag):
    with pytest.raises(ValidationError, match="Schema version must be an integer"):
        validator.detect_schema_version({**raw_analysis, SCHEMA_VERSION_KEY: tag})


def test_upgrade_v1_document(validator, raw_analysis_v1, first_party):
    analysis = validator.upgrade_analysis(raw_analysis_v1, TARGET, first_party)

    assert isinstance(analysis, EnhancedStructuredAnalysis)
    assert analysis.technical.confidence is None
    assert [source.url for source in analysis.sources] == [TARGET]


def test_upgrade_v2_document_parses_directly(validator, raw_analysis):
    document = {**raw_analysis, SCHEMA_VERSION_KEY: 2}
    analysis = validator.upgrade_analysis(document, TARGET)
    assert analysis.technical.confidence == 0.8
    assert len(analysis.sources) == 1


def test_malformed_v2_document_is_not_reinterpreted(validator, raw_analysis):
    document = {**raw_analysis, SCHEMA_VERSION_KEY: 2}
    document["technical"] = {**raw_analysis["technical"], "confidence": 3}

    with pytest.raises(ValidationError) as exc:
        validator.upgrade_analysis(document, TARGET)
    assert exc.value.kind == InvalidKind.INVALID_FORMAT


def test_v2_document_with_string_confidence_is_rejected(validator, raw_analysis):
    document = {**raw_analysis, SCHEMA_VERSION_KEY: 2}
    document["technical"] = {**raw_analysis["technical"], "confidence": "0.5"}

    with pytest.raises(ValidationError):
        validator.upgrade_analysis(document, TARGET)
    with pytest.raises(ValidationError):
        validator.parse_versioned_analysis(document)


def test_unknown_schema_version(validator, raw_analysis):
    with pytest.raises(ValidationError, match="Unsupported schema version: 7"):
        validator.upgrade_analysis({**raw_analysis, SCHEMA_VERSION_KEY: 7}, TARGET)


def test_parse_versioned_analysis_uses_tagged_model(validator, raw_analysis, raw_analysis_v1):
    assert isinstance(validator.parse_versioned_analysis(raw_analysis_v1), StructuredAnalysis)
    enhanced = validator.parse_versioned_analysis({**raw_analysis, SCHEMA_VERSION_KEY: 2})
    assert isinstance(enhanced, EnhancedStructuredAnalysis)


def test_to_versioned_document_round_trip(validator, raw_analysis):
    analysis = validator.parse_enhanced_analysis(raw_analysis, TARGET)
    document = to_versioned_document(analysis)

    assert document[SCHEMA_VERSION_KEY] == 2
    assert document["technical"]["techStack"] == ["Next.js", "Postgres"]
    assert validator.upgrade_analysis(document, TARGET) == analysis


def test_upgrade_record(validator, raw_analysis_v1, first_party):
    record = AnalysisRecord(user_id="u1", url=TARGET, schema_version=1, analysis=raw_analysis_v1)

    upgraded = validator.upgrade_record(record, first_party)

    assert upgraded.id == record.id
    assert upgraded.schema_version == 2
    assert upgraded.analysis["sources"][0]["url"] == TARGET
    assert record.schema_version == 1
    assert "sources" not in record.analysis


def test_upgrade_record_already_current(validator, raw_analysis):
    record = AnalysisRecord(user_id="u1", url=TARGET, analysis=raw_analysis)
    assert validator.upgrade_record(record) == record
