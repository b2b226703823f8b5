"""Batch pipeline stage.

Documents flow through an asyncio.Queue and are analyzed one at a time;
results are emitted in queue order. A document that fails after its per-file
retries yields a failed DocumentResult and processing continues with the
next one.
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Callable, Sequence

from pydantic import BaseModel, Field

from invoice_recon.catalog.models import CatalogProduct
from invoice_recon.extraction.base import ExtractionResult
from invoice_recon.extraction.orchestrator import ProviderFallbackOrchestrator
from invoice_recon.extraction.retry import RetryController
from invoice_recon.extraction.schema import Document, ExtractionAttempt, NormalizedInvoice
from invoice_recon.matching.catalog import CatalogMatcher, GroupReview
from invoice_recon.matching.grouping import group_invoices
from invoice_recon.shared.config import Settings
from invoice_recon.shared.errors import (
    AllProvidersFailed,
    ErrorKind,
    ExhaustedRetries,
    classify_error,
    unwrap,
)

logger = logging.getLogger(__name__)

SUPPORTED_MEDIA_TYPES = {
    "application/pdf",
    "image/jpeg",
    "image/png",
    "image/heic",
    "image/heif",
    "image/webp",
    "image/tiff",
}


class DocumentResult(BaseModel):
    """Outcome of one document in a batch."""

    index: int = Field(..., description="0-based position in the batch")
    filename: str | None = None
    success: bool
    invoice: NormalizedInvoice | None = None
    provider: str | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    attempts: list[ExtractionAttempt] = Field(default_factory=list)
    processing_time_seconds: float = 0.0


def validate_documents(documents: Sequence[Document], max_bytes: int) -> list[str]:
    """Check a batch before processing.

    Args:
        documents: Documents to check
        max_bytes: Maximum size of one document

    Returns:
        Human-readable problems, empty when the batch is valid
    """
    errors = []
    seen: set[str] = set()
    for position, document in enumerate(documents, start=1):
        label = document.filename or f"document {position}"
        if document.media_type not in SUPPORTED_MEDIA_TYPES:
            errors.append(f"{label}: unsupported file type {document.media_type}")
        if document.size == 0:
            errors.append(f"{label}: file is empty")
        elif document.size > max_bytes:
            errors.append(f"{label}: file exceeds {max_bytes // (1024 * 1024)}MB limit")
        if document.filename:
            if document.filename in seen:
                errors.append(f"{label}: duplicate file name")
            seen.add(document.filename)
    return errors


class BatchPipeline:
    """Feeds documents to the orchestrator with per-file retries."""

    def __init__(
        self,
        orchestrator: ProviderFallbackOrchestrator,
        settings: Settings,
        retry: RetryController | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize pipeline.

        Args:
            orchestrator: Provider fallback orchestrator
            settings: Settings with batch_max_attempts
            retry: Per-file retry controller (retries AllProvidersFailed)
            clock: Clock used for processing times
        """
        self.orchestrator = orchestrator
        self.settings = settings
        self.retry = retry or RetryController(retry_on=(AllProvidersFailed,))
        self._clock = clock

    async def analyze(self, document: Document) -> ExtractionResult:
        """Analyze one document with per-file retries.

        The attempt log (of the result or of the raised error) covers every
        run, failed ones included.

        Raises:
            AllProvidersFailed: If every run failed
        """
        history: list[ExtractionAttempt] = []

        async def run() -> ExtractionResult:
            try:
                return await self.orchestrator.analyze(document)
            except AllProvidersFailed as e:
                history.extend(e.attempts)
                raise

        try:
            result = await self.retry.with_retry(
                run,
                max_attempts=self.settings.batch_max_attempts,
                label=f"file {document.filename or '<unnamed>'}",
            )
        except ExhaustedRetries as e:
            last = unwrap(e)
            if isinstance(last, AllProvidersFailed):
                raise AllProvidersFailed(last.last_error, history) from e
            raise
        return result.model_copy(update={"attempts": history + result.attempts})

    async def submit_document(
        self, content: bytes, media_type: str, filename: str | None = None
    ) -> NormalizedInvoice:
        """Analyze a single document.

        Raises:
            AllProvidersFailed: If the document could not be analyzed
        """
        document = Document(content=content, media_type=media_type, filename=filename)
        result = await self.analyze(document)
        return result.invoice

    async def stream(self, queue: "asyncio.Queue[Document | None]") -> AsyncIterator[DocumentResult]:
        """Consume documents until a None sentinel, yielding one result per document."""
        index = 0
        while True:
            document = await queue.get()
            try:
                if document is None:
                    return
                yield await self._process(index, document)
                index += 1
            finally:
                queue.task_done()

    async def submit_batch(self, documents: Sequence[Document]) -> list[DocumentResult]:
        """Process documents sequentially, continuing past failures."""
        queue: asyncio.Queue[Document | None] = asyncio.Queue()
        for document in documents:
            queue.put_nowait(document)
        queue.put_nowait(None)

        results = [result async for result in self.stream(queue)]
        succeeded = sum(1 for r in results if r.success)
        logger.info(f"Batch finished: {succeeded}/{len(results)} document(s) succeeded")
        return results

    async def _process(self, index: int, document: Document) -> DocumentResult:
        started = self._clock()
        try:
            result = await self.analyze(document)
        except Exception as e:
            error = unwrap(e)
            attempts: list[ExtractionAttempt] = []
            cause: BaseException | None = error
            if isinstance(error, AllProvidersFailed):
                attempts = error.attempts
                cause = error.last_error
            logger.error(f"Document {index} ({document.filename}) failed: {error}")
            return DocumentResult(
                index=index,
                filename=document.filename,
                success=False,
                error=str(error),
                error_kind=classify_error(cause) if cause is not None else ErrorKind.UNKNOWN,
                attempts=attempts,
                processing_time_seconds=self._clock() - started,
            )

        return DocumentResult(
            index=index,
            filename=document.filename,
            success=True,
            invoice=result.invoice,
            provider=result.provider,
            attempts=result.attempts,
            processing_time_seconds=self._clock() - started,
        )


def review_batch(
    results: Sequence[DocumentResult],
    catalog: Sequence[CatalogProduct],
    settings: Settings,
) -> list[GroupReview]:
    """Group the successful invoices of a batch and suggest catalog matches.

    Group instances index into the list of successful invoices, in result order.
    """
    invoices = [r.invoice for r in results if r.success and r.invoice is not None]
    groups = group_invoices(invoices, threshold=settings.grouping_similarity_threshold)
    matcher = CatalogMatcher(threshold=settings.catalog_suggestion_threshold)
    return matcher.suggest_for_groups(groups, catalog)
