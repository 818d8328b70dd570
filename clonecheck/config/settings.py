"""
Application settings and configuration management.

This module handles environment variables, AI provider credentials, and the
retry/timeout knobs of the analysis pipeline using Pydantic settings
management for type safety and validation.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from clonecheck.utils.errors import AppError


MIN_TIMEOUT_MS = 1000
MAX_TIMEOUT_MS = 60000


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All credentials are stored as SecretStr to prevent accidental logging.
    Settings are validated on load and cached.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # AI provider credentials
    gemini_api_key: Optional[SecretStr] = Field(default=None, alias="GEMINI_API_KEY")
    openai_api_key: Optional[SecretStr] = Field(default=None, alias="OPENAI_API_KEY")
    anthropic_api_key: Optional[SecretStr] = Field(default=None, alias="ANTHROPIC_API_KEY")

    # Application Configuration
    app_env: Literal["development", "staging", "production"] = Field(
        default="development",
        alias="APP_ENV"
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        alias="LOG_LEVEL"
    )
    log_json: bool = Field(default=True, alias="LOG_JSON")

    # Retry policy for AI provider calls
    retry_max_attempts: int = Field(default=3, ge=1, le=10, alias="RETRY_MAX_ATTEMPTS")
    retry_delay_ms: int = Field(default=1000, ge=0, alias="RETRY_DELAY_MS")
    retry_backoff_multiplier: float = Field(default=2.0, ge=1.0, alias="RETRY_BACKOFF_MULTIPLIER")
    retry_max_delay_ms: int = Field(default=10000, ge=0, alias="RETRY_MAX_DELAY_MS")

    # Timeouts
    ai_timeout_ms: int = Field(default=30000, alias="AI_TIMEOUT_MS")
    first_party_timeout_ms: int = Field(default=10000, alias="FIRST_PARTY_TIMEOUT_MS")
    first_party_max_bytes: int = Field(default=2 * 1024 * 1024, ge=1024, alias="FIRST_PARTY_MAX_BYTES")

    @field_validator("ai_timeout_ms", "first_party_timeout_ms")
    @classmethod
    def validate_timeouts(cls, v: int) -> int:
        """Keep timeouts inside the bounds accepted for request timeouts."""
        if v < MIN_TIMEOUT_MS:
            raise ValueError(f"Timeout must be at least {MIN_TIMEOUT_MS}ms")
        if v > MAX_TIMEOUT_MS:
            raise ValueError(f"Timeout cannot exceed {MAX_TIMEOUT_MS}ms")
        return v

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    def get_ai_provider(self) -> str:
        """Determine which AI provider to use based on available keys."""
        if self.gemini_api_key and self.gemini_api_key.get_secret_value():
            return "gemini"
        elif self.openai_api_key and self.openai_api_key.get_secret_value():
            return "openai"
        elif self.anthropic_api_key and self.anthropic_api_key.get_secret_value():
            return "anthropic"
        return "none"

    def require_ai_provider_key(self) -> str:
        """Return the configured provider name or fail with CONFIG_MISSING."""
        provider = self.get_ai_provider()
        if provider == "none":
            raise AppError.config_missing(
                "No AI provider API key available",
                details={"checked": ["GEMINI_API_KEY", "OPENAI_API_KEY", "ANTHROPIC_API_KEY"]},
            )
        return provider


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
