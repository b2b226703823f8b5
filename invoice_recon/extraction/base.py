"""Abstract base classes for extraction providers.

Enables switching between different OCR/vision providers (Azure Document
Intelligence models, OpenAI vision models) while maintaining a consistent
interface and type safety.

Based on Strategy Pattern:
https://refactoring.guru/design-patterns/strategy/python

Two provider shapes exist:
- ExtractionProvider: a single call returns the extracted invoice
- AsyncJobProvider: the document is submitted, then polled until the
  provider reports a terminal status (the orchestrator owns the polling loop)

Providers raise the typed errors from invoice_recon.shared.errors so that
the retry controller can tell quota problems from transient failures.
"""

from abc import ABC, abstractmethod
from enum import Enum

from pydantic import BaseModel, Field

from invoice_recon.extraction.schema import (
    Document,
    ExtractionAttempt,
    NormalizedInvoice,
    RawExtractedInvoice,
)
from invoice_recon.shared.config import Settings


class ExtractionResult(BaseModel):
    """Result of analyzing one document.

    Attributes:
        invoice: Normalized invoice data
        provider: Identifier of the provider that produced it (e.g. 'azure:prebuilt-invoice')
        attempts: Ordered attempt log, one entry per provider tried
    """

    invoice: NormalizedInvoice
    provider: str
    attempts: list[ExtractionAttempt] = Field(default_factory=list)


class PollStatus(str, Enum):
    """Status of a submitted analysis."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class PollResult(BaseModel):
    """One poll of a submitted analysis.

    Attributes:
        status: Current status
        result: Extracted invoice, present when status is SUCCEEDED
        error: Provider-reported failure reason, if any
    """

    status: PollStatus
    result: RawExtractedInvoice | None = None
    error: str | None = None


class ExtractionProvider(ABC):
    """Abstract base class for invoice extraction providers.

    All providers must implement this interface. A provider instance is bound
    to one model, so the same vendor can appear several times in a fallback
    chain with different models.
    """

    def __init__(self, settings: Settings, model: str) -> None:
        """Initialize provider with settings.

        Args:
            settings: Application settings
            model: Provider-specific model identifier
        """
        self.settings = settings
        self.model = model

    @abstractmethod
    async def analyze(self, document: Document) -> RawExtractedInvoice:
        """Extract invoice fields from a document in a single call.

        Args:
            document: Document to analyze

        Returns:
            Raw extracted invoice

        Raises:
            ProviderError: Any classified provider failure
        """

    @abstractmethod
    def is_available(self) -> bool:
        """Check if this provider is configured (credentials, endpoint).

        Returns:
            True if provider can be used, False otherwise
        """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Get provider name for logging/metrics.

        Returns:
            Provider identifier (e.g., 'azure', 'openai')
        """

    @property
    def identifier(self) -> str:
        """Provider and model, as recorded on extraction attempts."""
        return f"{self.provider_name}:{self.model}"

    async def aclose(self) -> None:
        """Release network resources. Default: nothing to release."""


class AsyncJobProvider(ExtractionProvider):
    """Provider with a submit-then-poll contract."""

    @abstractmethod
    async def submit(self, document: Document) -> str:
        """Submit a document and return an operation handle."""

    @abstractmethod
    async def poll(self, handle: str) -> PollResult:
        """Fetch the current status of a submitted analysis."""

    async def analyze(self, document: Document) -> RawExtractedInvoice:
        # The orchestrator drives submit/poll with its own backoff and timeout.
        raise NotImplementedError(f"{self.identifier} must be driven through submit/poll")
