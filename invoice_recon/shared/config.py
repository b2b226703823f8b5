"""Shared configuration management for the reconciliation pipeline.

Based on Pydantic Settings v2 best practices:
https://docs.pydantic.dev/latest/concepts/pydantic_settings/
"""

from decimal import Decimal
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with the prefix 'APP_'.
    Example: APP_RATE_LIMIT_MIN_INTERVAL_MS=5000
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Service configuration
    service_name: str = Field(
        default="invoice-recon",
        description="Service identifier for metrics and logs",
    )
    service_version: str = Field(
        default="0.1.0",
        description="Service version",
    )

    # Extraction providers, tried in order
    extraction_providers: list[str] = Field(
        default=["azure:prebuilt-invoice", "azure:prebuilt-document", "azure:prebuilt-layout"],
        description=(
            "Ordered provider/model list as 'provider:model' "
            "(e.g. azure:prebuilt-invoice, openai:gpt-4o)"
        ),
    )

    # Azure Document Intelligence (for provider "azure")
    azure_endpoint: str = Field(
        default="",
        description="Azure Document Intelligence endpoint (https://<name>.cognitiveservices.azure.com)",
    )
    azure_api_key: str = Field(
        default="",
        description="Azure Document Intelligence key (use env var APP_AZURE_API_KEY)",
    )
    azure_api_version: str = Field(
        default="2023-07-31",
        description="Form Recognizer REST API version",
    )

    # OpenAI vision (for provider "openai"); API key is read from OPENAI_API_KEY
    openai_max_tokens: int = Field(
        default=4000,
        description="Max completion tokens for vision extraction",
    )
    openai_temperature: float = Field(
        default=0.0,
        description="Sampling temperature for vision extraction",
    )

    http_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout for a single outbound HTTP request",
    )

    # Rate limiting and retries
    rate_limit_min_interval_ms: int = Field(
        default=2000,
        ge=0,
        description="Minimum gap between the start of two consecutive provider calls",
    )
    provider_max_attempts: int = Field(
        default=5,
        ge=1,
        description="Max attempts per provider before falling back to the next one",
    )
    batch_max_attempts: int = Field(
        default=2,
        ge=1,
        description="Max attempts per file when processing a batch",
    )
    rate_limited_cooldown_seconds: float = Field(
        default=10.0,
        ge=0,
        description="Wait before the next provider when the previous one was rate limited",
    )
    fallback_delay_seconds: float = Field(
        default=2.0,
        ge=0,
        description="Wait before the next provider after any other failure",
    )

    # Submit/poll providers
    poll_initial_interval_seconds: float = Field(default=2.0, gt=0)
    poll_backoff_factor: float = Field(default=1.5, ge=1)
    poll_max_interval_seconds: float = Field(default=10.0, gt=0)
    poll_timeout_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Absolute limit for a submitted analysis to complete",
    )

    # Matching
    grouping_similarity_threshold: float = Field(
        default=0.7,
        ge=0,
        le=1,
        description="Similarity at which two line items are merged into one product group",
    )
    catalog_suggestion_threshold: float = Field(
        default=0.6,
        ge=0,
        le=1,
        description="Similarity at which a catalog product is suggested for a group",
    )

    # Business defaults (owned outside the pipeline)
    sum_tolerance: Decimal = Field(
        default=Decimal("0.02"),
        description="Allowed difference between line item sum and invoice subtotal",
    )
    default_currency: str = Field(default="EUR", description="Currency when none is detected")
    default_vat_rate: Decimal = Field(
        default=Decimal("21"),
        description="VAT rate (percent) applied to line items without one",
    )

    # Uploads
    max_upload_bytes: int = Field(
        default=10 * 1024 * 1024,
        description="Maximum accepted document size",
    )


def get_settings() -> Settings:
    """Factory function to get settings instance.

    Returns:
        Configured Settings instance
    """
    return Settings()
