"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Map environments to their respective .env files (relative to PROJECT_ROOT)
ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Nested BaseSettings don't inherit env_file, so populate os.environ first
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


class LLMSettings(BaseSettings):
    """LLM provider configuration used for the analysis generation call."""

    provider: str = Field(
        "openai",
        description="LLM provider name (currently only openai)",
    )
    model: str = Field(
        "gpt-4o-mini",
        description="Model name used for fit analysis generation",
    )
    api_key: str | None = Field(
        None,
        description="API key for the provider",
    )
    base_url: str | None = Field(
        None,
        description="Custom API endpoint (OpenAI-compatible gateways)",
    )
    timeout_seconds: float = Field(
        30.0,
        description="Per-request timeout passed to the provider SDK",
        gt=0,
    )
    temperature: float = Field(
        0.7,
        description="Sampling temperature for generation",
        ge=0.0,
        le=2.0,
    )
    max_tokens: int = Field(
        4096,
        description="Maximum completion tokens",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="LLM_",
        case_sensitive=False,
    )


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    max_job_desc_chars: int = Field(
        10000,
        description="Hard maximum for trimmed job description length",
        ge=1,
    )
    min_job_desc_chars_warning: int = Field(
        50,
        description="Trimmed length below which a quality warning is surfaced",
        ge=0,
    )
    analysis_timeout_seconds: float = Field(
        30.0,
        description="End-to-end deadline for prompt build plus generation",
        gt=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class GuardrailSettings(BaseSettings):
    """Safety check configuration."""

    enabled: bool = Field(
        True,
        description="Run input safety checks before generation",
    )
    model: str = Field(
        "gpt-4o-mini",
        description="Model used by the classifier-style safety checks",
    )
    block_threshold: float = Field(
        0.8,
        description="Confidence at or above which a failed check blocks the request",
        ge=0.0,
        le=1.0,
    )
    validate_output: bool = Field(
        False,
        description="Also run content moderation on generated output",
    )
    timeout_seconds: float = Field(
        10.0,
        description="Timeout for each individual safety check call",
        gt=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="GUARDRAIL_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="json or plain")
    output: str = Field("stdout", description="stdout or file")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(0, description="Rotate file logs at this size (0 disables)", ge=0)
    backup_count: int = Field(3, description="Rotated files to keep", ge=0)
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to propagate the correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class PortfolioSettings(BaseSettings):
    """Portfolio owner identity and content location."""

    content_dir: str = Field(
        str(PROJECT_ROOT / "content"),
        description="Directory holding portfolio.json and knowledge/*.md",
    )
    owner_name: str = Field("Daniel Kreuzhofer", description="Full name")
    owner_first_name: str = Field("Daniel", description="First name")
    owner_role: str = Field("Senior Solutions Architect", description="Current role")
    owner_employer: str = Field("Amazon Web Services", description="Current employer")

    model_config = SettingsConfigDict(
        env_prefix="PORTFOLIO_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are malformed.
    """

    app_env: str = APP_ENV
    llm: LLMSettings = Field(default_factory=LLMSettings)
    app: AppSettings = Field(default_factory=AppSettings)
    guardrails: GuardrailSettings = Field(default_factory=GuardrailSettings)
    log: LogSettings = Field(default_factory=LogSettings)
    portfolio: PortfolioSettings = Field(default_factory=PortfolioSettings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
settings = Settings()
