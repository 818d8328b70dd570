import pytest
import structlog
from unittest.mock import AsyncMock, MagicMock, patch

from clonecheck.models.schemas import FirstPartyData
from clonecheck.services.validation_service import ValidationService


@pytest.fixture
def mock_settings():
    """Create mock settings for testing."""
    settings = MagicMock()
    settings.gemini_api_key.get_secret_value.return_value = "gemini-test-key"
    settings.openai_api_key = None
    settings.anthropic_api_key = None

    settings.app_env = "development"
    settings.is_production = False
    settings.log_level = "INFO"
    settings.log_json = False

    settings.retry_max_attempts = 3
    settings.retry_delay_ms = 1000
    settings.retry_backoff_multiplier = 2.0
    settings.retry_max_delay_ms = 10000

    settings.ai_timeout_ms = 30000
    settings.first_party_timeout_ms = 10000
    settings.first_party_max_bytes = 2 * 1024 * 1024

    settings.get_ai_provider.return_value = "gemini"
    settings.require_ai_provider_key.return_value = "gemini"

    return settings


@pytest.fixture(autouse=True)
def patch_get_settings(mock_settings):
    """Globally patch get_settings to return mock_settings."""
    with patch("clonecheck.config.settings.get_settings", return_value=mock_settings):
        # Also patch the places that import get_settings directly
        with patch("clonecheck.pipeline.orchestrator.get_settings", return_value=mock_settings):
            with patch("clonecheck.services.first_party.get_settings", return_value=mock_settings):
                with patch("clonecheck.main.get_settings", return_value=mock_settings):
                    yield mock_settings


@pytest.fixture
def no_sleep():
    """Backoff sleep that returns immediately and records requested delays."""
    return AsyncMock(return_value=None)


@pytest.fixture
def validation_service():
    return ValidationService()


@pytest.fixture
def first_party():
    return FirstPartyData(
        title="Acme Widgets",
        description="Acme builds widgets for small teams that need to ship fast.",
        h1="Widgets for small teams",
        text_snippet="Acme is a widget company. Pricing starts at $9 per month.",
        url="https://acme.example/",
    )


@pytest.fixture
def raw_analysis():
    """A provider payload in the enhanced shape."""
    return {
        "overview": {
            "valueProposition": "Simple widgets for small teams",
            "targetAudience": "Startups",
            "monetization": "Subscription",
        },
        "market": {
            "competitors": [
                {"name": "Globex", "url": "https://globex.example", "notes": "Enterprise focus"},
                {"name": "Initech"},
            ],
            "swot": {
                "strengths": ["Fast onboarding"],
                "weaknesses": ["Small team"],
                "opportunities": ["Self-serve market"],
                "threats": ["Incumbents"],
            },
        },
        "technical": {
            "techStack": ["Next.js", "Postgres"],
            "uiColors": ["#112233"],
            "keyPages": ["/pricing"],
            "confidence": 0.8,
        },
        "data": {
            "trafficEstimates": {"value": "50k/month", "source": "https://similarweb.example/acme"},
            "keyMetrics": [
                {"name": "Customers", "value": "1200", "source": "https://acme.example/about", "asOf": "2024-01"},
            ],
        },
        "synthesis": {
            "summary": "Cloneable with moderate effort.",
            "keyInsights": ["Pricing is simple"],
            "nextActions": ["Build an MVP"],
        },
        "sources": [
            {"url": "https://news.example/acme", "excerpt": "Acme raised a seed round last year."},
        ],
    }


@pytest.fixture
def raw_analysis_v1(raw_analysis):
    """The same payload in the original shape: no confidence and no sources."""
    payload = {key: value for key, value in raw_analysis.items() if key != "sources"}
    payload["technical"] = {k: v for k, v in raw_analysis["technical"].items() if k != "confidence"}
    return payload


@pytest.fixture(autouse=True)
def reset_structlog():
    """Drop logging configuration made by a test (CLI commands reconfigure it)."""
    yield
    structlog.reset_defaults()
