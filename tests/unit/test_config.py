"""Unit tests for configuration management."""

import os
from collections.abc import Generator
from decimal import Decimal

import pytest
from pydantic import ValidationError

from invoice_recon.shared.config import Settings, get_settings


@pytest.fixture
def clean_env() -> Generator[None, None, None]:
    """Clean environment variables before and after test."""
    original_env = dict(os.environ)
    env_vars = [k for k in os.environ if k.upper().startswith("APP_")]
    for var in env_vars:
        del os.environ[var]
    yield
    os.environ.clear()
    os.environ.update(original_env)


def test_settings_defaults(clean_env: None) -> None:
    """Test that settings have correct default values."""
    settings = Settings(_env_file=None)

    assert settings.environment == "development"
    assert settings.log_level == "INFO"
    assert settings.service_name == "invoice-recon"
    assert settings.extraction_providers == [
        "azure:prebuilt-invoice",
        "azure:prebuilt-document",
        "azure:prebuilt-layout",
    ]
    assert settings.rate_limit_min_interval_ms == 2000
    assert settings.provider_max_attempts == 5
    assert settings.batch_max_attempts == 2
    assert settings.grouping_similarity_threshold == 0.7
    assert settings.catalog_suggestion_threshold == 0.6
    assert settings.default_vat_rate == Decimal("21")
    assert settings.default_currency == "EUR"


def test_settings_from_env_vars(clean_env: None) -> None:
    """Test that settings can be overridden via environment variables."""
    os.environ["APP_ENVIRONMENT"] = "production"
    os.environ["APP_RATE_LIMIT_MIN_INTERVAL_MS"] = "5000"
    os.environ["APP_GROUPING_SIMILARITY_THRESHOLD"] = "0.8"
    os.environ["APP_EXTRACTION_PROVIDERS"] = '["openai:gpt-4o", "azure:prebuilt-invoice"]'

    settings = Settings(_env_file=None)

    assert settings.environment == "production"
    assert settings.rate_limit_min_interval_ms == 5000
    assert settings.grouping_similarity_threshold == 0.8
    assert settings.extraction_providers == ["openai:gpt-4o", "azure:prebuilt-invoice"]


def test_settings_case_insensitive(clean_env: None) -> None:
    """Test that environment variables are case insensitive."""
    os.environ["app_log_level"] = "DEBUG"

    settings = Settings(_env_file=None)

    assert settings.log_level == "DEBUG"


def test_threshold_out_of_range_rejected(clean_env: None) -> None:
    """Thresholds are similarities and must stay within [0, 1]."""
    with pytest.raises(ValidationError):
        Settings(_env_file=None, grouping_similarity_threshold=1.5)


def test_get_settings_factory() -> None:
    """Test that factory function returns Settings instance."""
    settings = get_settings()

    assert isinstance(settings, Settings)
