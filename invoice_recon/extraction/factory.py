"""Factory for creating the provider fallback chain from configuration.

Implements Factory Pattern for provider selection with registry pattern for extensibility.

Based on:
- Factory Pattern: https://refactoring.guru/design-patterns/factory-method/python
- Registry Pattern: Python Cookbook 3rd Edition, Recipe 9.22

Configuration lists providers as 'provider:model' strings, so the same
vendor can appear several times with different models.
"""

import logging

from invoice_recon.extraction.azure_provider import AzureDocumentIntelligenceProvider
from invoice_recon.extraction.base import ExtractionProvider
from invoice_recon.extraction.openai_provider import OpenAIVisionProvider
from invoice_recon.shared.config import Settings

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Registry of available extraction providers.

    Maintains a mapping of provider names to their implementation classes.
    Supports runtime registration of new providers.
    """

    _providers: dict[str, type[ExtractionProvider]] = {
        "azure": AzureDocumentIntelligenceProvider,
        "openai": OpenAIVisionProvider,
    }

    @classmethod
    def register(cls, name: str, provider_class: type[ExtractionProvider]) -> None:
        """Register a new provider.

        Args:
            name: Provider identifier used in APP_EXTRACTION_PROVIDERS
            provider_class: Provider class implementing ExtractionProvider interface
        """
        cls._providers[name] = provider_class
        logger.info(f"Registered extraction provider: {name}")

    @classmethod
    def get_provider_class(cls, name: str) -> type[ExtractionProvider]:
        """Get provider class by name.

        Raises:
            ValueError: If provider not found in registry
        """
        if name not in cls._providers:
            available = ", ".join(cls._providers.keys())
            raise ValueError(
                f"Unknown extraction provider: '{name}'. Available providers: {available}"
            )
        return cls._providers[name]

    @classmethod
    def list_providers(cls) -> list[str]:
        return list(cls._providers.keys())


def parse_provider_id(provider_id: str) -> tuple[str, str]:
    """Split 'provider:model' into its parts.

    Raises:
        ValueError: If either part is missing
    """
    name, sep, model = provider_id.partition(":")
    if not sep or not name.strip() or not model.strip():
        raise ValueError(f"Invalid provider identifier '{provider_id}', expected 'provider:model'")
    return name.strip(), model.strip()


def create_provider_chain(settings: Settings) -> list[ExtractionProvider]:
    """Instantiate the ordered provider chain.

    Unavailable providers (missing credentials) are skipped with a warning.

    Args:
        settings: Application settings with extraction_providers

    Returns:
        Available providers in fallback order (possibly empty)

    Raises:
        ValueError: If a configured provider is unknown or malformed

    Example:
        >>> settings = Settings(extraction_providers=["openai:gpt-4o"])
        >>> chain = create_provider_chain(settings)
    """
    chain: list[ExtractionProvider] = []
    for provider_id in settings.extraction_providers:
        name, model = parse_provider_id(provider_id)
        provider_class = ProviderRegistry.get_provider_class(name)
        provider = provider_class(settings, model)  # type: ignore[call-arg]

        if not provider.is_available():
            logger.warning(
                f"Extraction provider '{provider_id}' is not available. "
                f"Check configuration (e.g., endpoint, API keys)."
            )
            continue
        chain.append(provider)

    logger.info(f"Created provider chain: {[p.identifier for p in chain]}")
    return chain
