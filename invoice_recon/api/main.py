"""FastAPI application for invoice extraction and reconciliation.

Endpoints:
- Health and readiness checks for Kubernetes
- Single invoice analysis through the provider fallback chain
- Batch analysis returning product groups with catalog suggestions
- Batch approval writing products, prices and quantities to the catalog
- Prometheus metrics for monitoring

Based on FastAPI best practices:
https://fastapi.tiangolo.com/
"""

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, File, HTTPException, Request, Response, UploadFile, status
from pydantic import BaseModel, Field

from invoice_recon.api import metrics
from invoice_recon.catalog.approval import BatchApprover
from invoice_recon.catalog.models import ApprovalSummary, GroupDecision
from invoice_recon.catalog.store import InMemoryCatalogStore
from invoice_recon.extraction.factory import create_provider_chain
from invoice_recon.extraction.governor import create_rate_governor
from invoice_recon.extraction.orchestrator import ProviderFallbackOrchestrator
from invoice_recon.extraction.schema import Document, ExtractionAttempt, NormalizedInvoice
from invoice_recon.matching.catalog import GroupReview
from invoice_recon.matching.grouping import ProductGroup
from invoice_recon.pipeline.batch import BatchPipeline, DocumentResult, review_batch, validate_documents
from invoice_recon.shared.config import get_settings
from invoice_recon.shared.errors import AllProvidersFailed, AnalysisTimedOut, CatalogError

settings = get_settings()
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

governor = create_rate_governor(settings)
providers = create_provider_chain(settings)
orchestrator = ProviderFallbackOrchestrator(providers, governor, settings)
pipeline = BatchPipeline(orchestrator, settings)
catalog_store = InMemoryCatalogStore()
approver = BatchApprover(catalog_store)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    for provider in providers:
        await provider.aclose()


app = FastAPI(
    title="Invoice Reconciliation",
    description="Invoice extraction and catalog reconciliation API",
    version=settings.service_version,
    lifespan=lifespan,
)


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Middleware to collect request metrics.

    Tracks:
    - Request count by method, endpoint, and status
    - Request duration by method and endpoint
    """
    # Skip metrics for /metrics endpoint itself
    if request.url.path == "/metrics":
        return await call_next(request)

    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    metrics.http_requests_total.labels(
        method=request.method,
        endpoint=request.url.path,
        status=response.status_code,
    ).inc()

    metrics.http_request_duration_seconds.labels(
        method=request.method,
        endpoint=request.url.path,
    ).observe(duration)

    return response


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    service: str


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool
    providers: list[str]


class AnalyzeResponse(BaseModel):
    """Single invoice analysis response."""

    invoice: NormalizedInvoice
    provider: str
    attempts: list[ExtractionAttempt]


class BatchResponse(BaseModel):
    """Batch analysis response: per-file results plus the review payload."""

    total: int
    succeeded: int
    failed: int
    results: list[DocumentResult]
    groups: list[GroupReview]


class ApprovalRequest(BaseModel):
    """Reviewed batch to commit to the catalog."""

    supplier_id: str
    invoices: list[NormalizedInvoice]
    groups: list[ProductGroup]
    decisions: list[GroupDecision]
    mark_preferred: bool = Field(True, description="Make written prices the preferred ones")


async def _read_document(file: UploadFile) -> Document:
    content = await file.read()
    metrics.document_upload_size_bytes.observe(len(content))
    return Document(
        content=content,
        media_type=file.content_type or "application/octet-stream",
        filename=file.filename,
    )


def _provider_failure(error: AllProvidersFailed) -> HTTPException:
    if isinstance(error.last_error, AnalysisTimedOut):
        return HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail=str(error))
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(error))


@app.get("/health", response_model=HealthResponse, tags=["Health"])
def health_check() -> HealthResponse:
    """Health check endpoint used as the liveness check."""
    return HealthResponse(
        status="healthy", version=settings.service_version, service=settings.service_name
    )


@app.get("/ready", response_model=ReadinessResponse, tags=["Health"])
def readiness_check() -> ReadinessResponse:
    """Readiness check: ready when at least one provider is configured."""
    configured = [p.identifier for p in orchestrator.providers]
    return ReadinessResponse(ready=bool(configured), providers=configured)


@app.get("/metrics", tags=["Monitoring"])
def get_metrics() -> Response:
    """Prometheus metrics endpoint."""
    metrics_data, content_type = metrics.get_metrics()
    return Response(content=metrics_data, media_type=content_type)


@app.post("/api/v1/invoices/analyze", response_model=AnalyzeResponse, tags=["Invoices"])
async def analyze_invoice(
    file: UploadFile = File(..., description="Invoice (PDF, JPEG, PNG, HEIC, WebP, TIFF)"),  # noqa: B008
) -> AnalyzeResponse:
    """Extract and normalize one invoice.

    ## Usage

    ```bash
    curl -X POST "http://localhost:8000/api/v1/invoices/analyze" \\
      -F "file=@invoice.jpg"
    ```

    ## Error Handling

    - 400 if the file is empty, too large or of an unsupported type
    - 502 if every provider failed
    - 504 if the last provider did not finish its analysis in time
    """
    document = await _read_document(file)
    errors = validate_documents([document], settings.max_upload_bytes)
    if errors:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="; ".join(errors))

    started = time.time()
    try:
        result = await pipeline.analyze(document)
    except AllProvidersFailed as e:
        metrics.documents_analyzed_total.labels(status="failed").inc()
        metrics.record_attempts(e.attempts)
        raise _provider_failure(e) from e
    finally:
        metrics.extraction_duration_seconds.observe(time.time() - started)

    metrics.documents_analyzed_total.labels(status="success").inc()
    metrics.record_attempts(result.attempts)
    return AnalyzeResponse(invoice=result.invoice, provider=result.provider, attempts=result.attempts)


@app.post("/api/v1/invoices/batch", response_model=BatchResponse, tags=["Invoices"])
async def analyze_batch(
    files: list[UploadFile] = File(..., description="Invoices to process in order"),  # noqa: B008
) -> BatchResponse:
    """Analyze a batch of invoices and group their line items for review.

    Documents are processed one at a time; a failed document is reported in
    its result and does not stop the batch. Group instances index into the
    successful invoices, in result order.
    """
    if not files:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No files provided")

    documents = [await _read_document(f) for f in files]
    errors = validate_documents(documents, settings.max_upload_bytes)
    if errors:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="; ".join(errors))

    results = await pipeline.submit_batch(documents)
    for result in results:
        metrics.documents_analyzed_total.labels(
            status="success" if result.success else "failed"
        ).inc()
        metrics.extraction_duration_seconds.observe(result.processing_time_seconds)
        metrics.record_attempts(result.attempts)

    reviews = review_batch(results, catalog_store.list_catalog_products(), settings)
    metrics.product_groups_per_batch.observe(len(reviews))

    succeeded = sum(1 for r in results if r.success)
    return BatchResponse(
        total=len(results),
        succeeded=succeeded,
        failed=len(results) - succeeded,
        results=results,
        groups=reviews,
    )


@app.post("/api/v1/invoices/approve", response_model=ApprovalSummary, tags=["Invoices"])
def approve_batch(request: ApprovalRequest) -> ApprovalSummary:
    """Commit reviewed groups: create or match products, write supplier prices."""
    try:
        return approver.approve(
            request.groups,
            request.decisions,
            request.invoices,
            supplier_id=request.supplier_id,
            mark_preferred=request.mark_preferred,
        )
    except (ValueError, IndexError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except CatalogError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
