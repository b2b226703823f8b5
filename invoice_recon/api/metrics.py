"""Prometheus metrics for the reconciliation API.

Exposes key metrics for monitoring:
- Request counts by endpoint and status
- Request duration histograms
- Documents analyzed and provider attempts by outcome
- Product groups produced per batch

Based on Prometheus best practices:
https://prometheus.io/docs/practices/naming/
"""

from collections.abc import Iterable

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

from invoice_recon.extraction.schema import ExtractionAttempt

# Request metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0),
)

document_upload_size_bytes = Histogram(
    "document_upload_size_bytes",
    "Document upload size in bytes",
    buckets=(1024, 10240, 102400, 1048576, 10485760),  # 1KB to 10MB
)

# Extraction metrics
documents_analyzed_total = Counter(
    "documents_analyzed_total",
    "Total documents analyzed",
    ["status"],  # success, failed
)

provider_attempts_total = Counter(
    "provider_attempts_total",
    "Extraction attempts by provider and outcome",
    ["provider", "outcome"],  # outcome: success or an error kind
)

extraction_duration_seconds = Histogram(
    "extraction_duration_seconds",
    "Time to analyze one document, fallbacks and retries included",
    buckets=(1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0),
)

# Reconciliation metrics
product_groups_per_batch = Histogram(
    "product_groups_per_batch",
    "Number of product groups produced by a batch",
    buckets=(1, 5, 10, 25, 50, 100, 250),
)


def record_attempts(attempts: Iterable[ExtractionAttempt]) -> None:
    """Count provider attempts by outcome."""
    for attempt in attempts:
        if attempt.success:
            outcome = "success"
        else:
            outcome = attempt.error_kind.value if attempt.error_kind else "unknown"
        provider_attempts_total.labels(provider=attempt.provider, outcome=outcome).inc()


def get_metrics() -> tuple[bytes, str]:
    """Generate Prometheus metrics in text format.

    Returns:
        Tuple of (metrics bytes, content type)
    """
    return generate_latest(), CONTENT_TYPE_LATEST
