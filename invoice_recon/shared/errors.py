"""Error taxonomy for extraction and reconciliation.

Provider errors are raised at the adapter boundary and classified for the
retry controller. Parsing problems are never errors: the normalizer degrades
them to defaults and warnings instead.
"""

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Classification recorded on extraction attempts."""

    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"
    MALFORMED = "malformed"
    REJECTED = "rejected"
    TIMED_OUT = "timed_out"
    UNKNOWN = "unknown"


class RetryClass(str, Enum):
    """Backoff policy selector."""

    RATE_LIMITED = "rate_limited"
    OTHER = "other"


class InvoiceReconError(Exception):
    """Base class for all errors raised by this package."""


class ProviderError(InvoiceReconError):
    """Failure reported by (or while talking to) an extraction provider."""

    kind = ErrorKind.UNKNOWN
    retryable = False

    def __init__(self, message: str, provider: str | None = None) -> None:
        super().__init__(message)
        self.provider = provider


class TransientProviderError(ProviderError):
    """Network failure, timeout or 5xx. Retried."""

    kind = ErrorKind.TRANSIENT
    retryable = True


class RateLimited(ProviderError):
    """Provider signaled quota exhaustion or HTTP 429. Retried with longer backoff."""

    kind = ErrorKind.RATE_LIMITED
    retryable = True

    def __init__(
        self, message: str, provider: str | None = None, retry_after: float | None = None
    ) -> None:
        super().__init__(message, provider)
        self.retry_after = retry_after


class MalformedProviderResponse(ProviderError):
    """Unparsable response or missing required fields. Not retried."""

    kind = ErrorKind.MALFORMED


class ProviderRejected(ProviderError):
    """Provider refused the request (auth, bad request, unsupported media). Not retried."""

    kind = ErrorKind.REJECTED


class AnalysisTimedOut(ProviderError):
    """A submitted analysis did not reach a terminal status in time."""

    kind = ErrorKind.TIMED_OUT


class ExhaustedRetries(InvoiceReconError):
    """All attempts of one retried operation failed.

    Attributes:
        last_error: Error raised by the final attempt
        attempts: Number of attempts made
    """

    def __init__(self, last_error: BaseException, attempts: int) -> None:
        super().__init__(f"Gave up after {attempts} attempt(s): {last_error}")
        self.last_error = last_error
        self.attempts = attempts


class AllProvidersFailed(InvoiceReconError):
    """Every configured provider failed for one document.

    Attributes:
        last_error: Terminal error of the last provider tried
        attempts: Full attempt history (list of ExtractionAttempt)
    """

    def __init__(self, last_error: BaseException | None, attempts: list[Any]) -> None:
        tried = ", ".join(a.provider for a in attempts) or "none configured"
        super().__init__(f"All providers failed ({tried}): {last_error}")
        self.last_error = last_error
        self.attempts = attempts


class CatalogError(InvoiceReconError):
    """Base class for catalog/pricing errors."""


class ProductNotFound(CatalogError):
    """Product has no supplier prices (or does not exist)."""

    def __init__(self, product_id: str) -> None:
        super().__init__(f"Product not found or has no prices: {product_id}")
        self.product_id = product_id


class SupplierPriceNotFound(CatalogError):
    """Supplier price does not belong to the given product."""

    def __init__(self, product_id: str, price_id: str) -> None:
        super().__init__(f"Supplier price {price_id} not found for product {product_id}")
        self.product_id = product_id
        self.price_id = price_id


def unwrap(error: BaseException) -> BaseException:
    """Return the underlying error of an ExhaustedRetries wrapper."""
    while isinstance(error, ExhaustedRetries):
        error = error.last_error
    return error


def classify_error(error: BaseException) -> ErrorKind:
    """Map any error to the kind recorded on an extraction attempt."""
    error = unwrap(error)
    if isinstance(error, ProviderError):
        return error.kind
    return ErrorKind.UNKNOWN


def retry_class(error: BaseException) -> RetryClass:
    """Select the backoff policy for a failed attempt."""
    if isinstance(unwrap(error), RateLimited):
        return RetryClass.RATE_LIMITED
    return RetryClass.OTHER
