"""Provider fallback orchestrator.

Tries each configured provider in order until one returns an invoice. Every
provider call is retried by the RetryController and every individual attempt
runs through the shared RateGovernor. Between providers the orchestrator
cools down: longer when the failed provider was rate limited.

For submit/poll providers the orchestrator owns the polling loop, so a
single attempt is: submit, then poll with growing delays until the analysis
succeeds, fails, or the absolute timeout passes.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence

from invoice_recon.extraction.base import (
    AsyncJobProvider,
    ExtractionProvider,
    ExtractionResult,
    PollStatus,
)
from invoice_recon.extraction.governor import RateGovernor
from invoice_recon.extraction.retry import RetryController
from invoice_recon.extraction.schema import (
    Document,
    ExtractionAttempt,
    RawExtractedInvoice,
)
from invoice_recon.normalization.fields import FieldNormalizer
from invoice_recon.shared.config import Settings
from invoice_recon.shared.errors import (
    AllProvidersFailed,
    AnalysisTimedOut,
    RateLimited,
    TransientProviderError,
    classify_error,
    unwrap,
)

logger = logging.getLogger(__name__)


class ProviderFallbackOrchestrator:
    """Analyzes documents with an ordered chain of providers."""

    def __init__(
        self,
        providers: Sequence[ExtractionProvider],
        governor: RateGovernor,
        settings: Settings,
        normalizer: FieldNormalizer | None = None,
        retry: RetryController | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize orchestrator.

        Args:
            providers: Providers in fallback order
            governor: Process-wide rate governor shared by all callers
            settings: Application settings (attempts, cooldowns, polling)
            normalizer: Field normalizer applied to the winning raw result
            retry: Retry controller (defaults to one using the same sleep)
            sleep: Async sleep used for cooldowns and poll delays
            clock: Monotonic clock used for poll deadlines and durations
        """
        self.providers = list(providers)
        self.governor = governor
        self.settings = settings
        self.normalizer = normalizer or FieldNormalizer(settings)
        self.retry = retry or RetryController(sleep=sleep)
        self._sleep = sleep
        self._clock = clock

    async def analyze(self, document: Document) -> ExtractionResult:
        """Extract and normalize one document.

        Args:
            document: Document to analyze

        Returns:
            ExtractionResult with the normalized invoice, winning provider
            identifier and the attempt log (one entry per provider tried)

        Raises:
            AllProvidersFailed: If every provider failed
        """
        attempts: list[ExtractionAttempt] = []
        last_error: BaseException | None = None

        for position, provider in enumerate(self.providers):
            started = self._clock()
            logger.info(f"Analyzing {document.filename or 'document'} with {provider.identifier}")
            try:
                raw = await self.retry.with_retry(
                    lambda p=provider: self.governor.execute(lambda: self._attempt(p, document)),
                    max_attempts=self.settings.provider_max_attempts,
                    label=provider.identifier,
                )
            except Exception as e:
                error = unwrap(e)
                last_error = error
                attempts.append(
                    ExtractionAttempt(
                        provider=provider.identifier,
                        success=False,
                        error_kind=classify_error(error),
                        error=str(error),
                        duration_seconds=self._clock() - started,
                    )
                )
                logger.warning(f"Provider {provider.identifier} failed: {error}")

                if position < len(self.providers) - 1:
                    await self._cool_down(error)
                continue

            attempts.append(
                ExtractionAttempt(
                    provider=provider.identifier,
                    success=True,
                    duration_seconds=self._clock() - started,
                )
            )
            invoice = self.normalizer.normalize(raw)
            logger.info(
                f"Extracted {len(invoice.line_items)} line item(s) with {provider.identifier}"
            )
            return ExtractionResult(invoice=invoice, provider=provider.identifier, attempts=attempts)

        raise AllProvidersFailed(last_error, attempts)

    async def _cool_down(self, error: BaseException) -> None:
        if isinstance(error, RateLimited):
            delay = self.settings.rate_limited_cooldown_seconds
            logger.info(f"Rate limited, waiting {delay}s before next provider")
        else:
            delay = self.settings.fallback_delay_seconds
        if delay > 0:
            await self._sleep(delay)

    async def _attempt(self, provider: ExtractionProvider, document: Document) -> RawExtractedInvoice:
        if isinstance(provider, AsyncJobProvider):
            return await self._run_job(provider, document)
        return await provider.analyze(document)

    async def _run_job(self, provider: AsyncJobProvider, document: Document) -> RawExtractedInvoice:
        """Submit a document and poll until a terminal status or the deadline."""
        handle = await provider.submit(document)
        deadline = self._clock() + self.settings.poll_timeout_seconds
        delay = self.settings.poll_initial_interval_seconds

        while True:
            status = await provider.poll(handle)
            if status.status is PollStatus.SUCCEEDED:
                if status.result is None:
                    raise TransientProviderError(
                        "Analysis succeeded without a result", provider.identifier
                    )
                return status.result
            if status.status is PollStatus.FAILED:
                raise TransientProviderError(
                    f"Analysis failed: {status.error or 'no reason given'}", provider.identifier
                )

            remaining = deadline - self._clock()
            if remaining <= 0:
                raise AnalysisTimedOut(
                    f"Analysis not finished after {self.settings.poll_timeout_seconds}s",
                    provider.identifier,
                )
            logger.debug(f"{provider.identifier}: analysis pending, polling again in {delay:.1f}s")
            await self._sleep(min(delay, remaining))
            delay = min(delay * self.settings.poll_backoff_factor, self.settings.poll_max_interval_seconds)
