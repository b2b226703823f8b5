"""Unit tests for the reconciliation API.

Tests cover:
- Health and readiness endpoints
- Single invoice analysis (success, validation, provider failures)
- Batch analysis with grouping and suggestions
- Batch approval
- Prometheus metrics endpoint
"""

from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import status
from fastapi.testclient import TestClient

from invoice_recon.api import main
from invoice_recon.api.main import app
from invoice_recon.catalog.approval import BatchApprover
from invoice_recon.catalog.models import CatalogProduct, GroupAction, GroupDecision
from invoice_recon.catalog.store import InMemoryCatalogStore
from invoice_recon.extraction.base import ExtractionResult
from invoice_recon.extraction.schema import (
    ExtractionAttempt,
    NormalizedInvoice,
    NormalizedLineItem,
    Unit,
)
from invoice_recon.matching.grouping import group_invoices
from invoice_recon.pipeline.batch import DocumentResult
from invoice_recon.shared.errors import (
    AllProvidersFailed,
    AnalysisTimedOut,
    ErrorKind,
    RateLimited,
)

PDF = b"%PDF-1.4 sample"


def make_invoice(number: str, *names: str) -> NormalizedInvoice:
    return NormalizedInvoice(
        invoice_number=number,
        invoice_date=date(2024, 1, 15),
        line_items=[
            NormalizedLineItem(
                name=name,
                quantity=Decimal("2"),
                unit=Unit.KG,
                unit_price=Decimal("5.00"),
                total_price=Decimal("10.00"),
                tax_rate=Decimal("21"),
            )
            for name in names
        ],
    )


@pytest.fixture
def client() -> TestClient:
    """Create test client."""
    return TestClient(app)


@pytest.fixture
def extraction_result() -> ExtractionResult:
    return ExtractionResult(
        invoice=make_invoice("SF-001", "Pomidorai"),
        provider="azure:prebuilt-document",
        attempts=[
            ExtractionAttempt(provider="azure:prebuilt-invoice", success=False, error_kind=ErrorKind.RATE_LIMITED),
            ExtractionAttempt(provider="azure:prebuilt-document", success=True),
        ],
    )


def test_health_check(client: TestClient) -> None:
    """Test health check endpoint."""
    response = client.get("/health")

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["status"] == "healthy"
    assert data["service"] == main.settings.service_name


def test_readiness_lists_providers(client: TestClient) -> None:
    provider = MagicMock(identifier="azure:prebuilt-invoice")

    with patch.object(main.orchestrator, "providers", [provider]):
        response = client.get("/ready")

    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"ready": True, "providers": ["azure:prebuilt-invoice"]}


def test_not_ready_without_providers(client: TestClient) -> None:
    with patch.object(main.orchestrator, "providers", []):
        response = client.get("/ready")

    assert response.json()["ready"] is False


class TestAnalyzeEndpoint:
    """POST /api/v1/invoices/analyze."""

    def test_success(self, client: TestClient, extraction_result: ExtractionResult) -> None:
        files = {"file": ("invoice.pdf", PDF, "application/pdf")}

        with patch.object(main.pipeline, "analyze", AsyncMock(return_value=extraction_result)) as mock_analyze:
            response = client.post("/api/v1/invoices/analyze", files=files)

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["provider"] == "azure:prebuilt-document"
        assert data["invoice"]["invoice_number"] == "SF-001"
        assert [a["success"] for a in data["attempts"]] == [False, True]
        document = mock_analyze.await_args.args[0]
        assert document.media_type == "application/pdf"
        assert document.content == PDF

    def test_unsupported_type(self, client: TestClient) -> None:
        files = {"file": ("notes.txt", b"hello", "text/plain")}

        response = client.post("/api/v1/invoices/analyze", files=files)

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "unsupported file type" in response.json()["detail"]

    def test_empty_file(self, client: TestClient) -> None:
        files = {"file": ("invoice.pdf", b"", "application/pdf")}

        response = client.post("/api/v1/invoices/analyze", files=files)

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_no_file(self, client: TestClient) -> None:
        response = client.post("/api/v1/invoices/analyze")

        assert response.status_code == 422

    def test_all_providers_failed(self, client: TestClient) -> None:
        error = AllProvidersFailed(
            RateLimited("quota"),
            [ExtractionAttempt(provider="azure:prebuilt-invoice", success=False, error_kind=ErrorKind.RATE_LIMITED)],
        )
        files = {"file": ("invoice.pdf", PDF, "application/pdf")}

        with patch.object(main.pipeline, "analyze", AsyncMock(side_effect=error)):
            response = client.post("/api/v1/invoices/analyze", files=files)

        assert response.status_code == status.HTTP_502_BAD_GATEWAY
        assert "All providers failed" in response.json()["detail"]

    def test_timeout_maps_to_504(self, client: TestClient) -> None:
        error = AllProvidersFailed(AnalysisTimedOut("not finished"), [])
        files = {"file": ("invoice.pdf", PDF, "application/pdf")}

        with patch.object(main.pipeline, "analyze", AsyncMock(side_effect=error)):
            response = client.post("/api/v1/invoices/analyze", files=files)

        assert response.status_code == status.HTTP_504_GATEWAY_TIMEOUT

    def test_metrics_recorded(self, client: TestClient, extraction_result: ExtractionResult) -> None:
        """Success counter and provider attempt counters are incremented."""
        from invoice_recon.api import metrics

        success = metrics.documents_analyzed_total.labels(status="success")
        rate_limited = metrics.provider_attempts_total.labels(
            provider="azure:prebuilt-invoice", outcome="rate_limited"
        )
        initial_success = success._value.get()
        initial_rate_limited = rate_limited._value.get()
        files = {"file": ("invoice.pdf", PDF, "application/pdf")}

        with patch.object(main.pipeline, "analyze", AsyncMock(return_value=extraction_result)):
            client.post("/api/v1/invoices/analyze", files=files)

        assert success._value.get() == initial_success + 1
        assert rate_limited._value.get() == initial_rate_limited + 1


class TestBatchEndpoint:
    """POST /api/v1/invoices/batch."""

    def test_batch_with_failure_and_groups(self, client: TestClient) -> None:
        results = [
            DocumentResult(index=0, filename="a.pdf", success=True, invoice=make_invoice("SF-1", "Pomidorai")),
            DocumentResult(
                index=1, filename="b.pdf", success=False, error="All providers failed", error_kind=ErrorKind.MALFORMED
            ),
            DocumentResult(
                index=2, filename="c.pdf", success=True, invoice=make_invoice("SF-3", "POMIDORAI 1 kg", "Bananai")
            ),
        ]
        store = InMemoryCatalogStore(products=[CatalogProduct(id="tomato", name="Pomidorai", unit=Unit.KG)])
        files = [("files", (name, PDF, "application/pdf")) for name in ["a.pdf", "b.pdf", "c.pdf"]]

        with (
            patch.object(main.pipeline, "submit_batch", AsyncMock(return_value=results)) as mock_batch,
            patch("invoice_recon.api.main.catalog_store", store),
        ):
            response = client.post("/api/v1/invoices/batch", files=files)

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert (data["total"], data["succeeded"], data["failed"]) == (3, 2, 1)
        assert [g["group"]["display_name"] for g in data["groups"]] == ["Pomidorai", "Bananai"]
        assert data["groups"][0]["decision"] == {"action": "match", "product_id": "tomato"}
        assert data["groups"][1]["decision"]["action"] == "create"
        assert [d.filename for d in mock_batch.await_args.args[0]] == ["a.pdf", "b.pdf", "c.pdf"]

    def test_duplicate_names_rejected(self, client: TestClient) -> None:
        files = [("files", ("a.pdf", PDF, "application/pdf")), ("files", ("a.pdf", PDF, "application/pdf"))]

        response = client.post("/api/v1/invoices/batch", files=files)

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "duplicate" in response.json()["detail"]


class TestApproveEndpoint:
    """POST /api/v1/invoices/approve."""

    def _payload(self, decisions: list[GroupDecision]) -> dict:
        invoices = [make_invoice("SF-1", "Pomidorai", "Agurkai")]
        groups = group_invoices(invoices)
        return {
            "supplier_id": "farm",
            "invoices": [i.model_dump(mode="json") for i in invoices],
            "groups": [g.model_dump(mode="json") for g in groups],
            "decisions": [d.model_dump(mode="json") for d in decisions],
        }

    def test_approve_writes_catalog(self, client: TestClient) -> None:
        store = InMemoryCatalogStore(products=[CatalogProduct(id="tomato", name="Pomidorai", unit=Unit.KG)])
        payload = self._payload(
            [
                GroupDecision(action=GroupAction.MATCH, product_id="tomato"),
                GroupDecision(action=GroupAction.CREATE),
            ]
        )

        with patch("invoice_recon.api.main.approver", BatchApprover(store)):
            response = client.post("/api/v1/invoices/approve", json=payload)

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["groups_matched"] == 1
        assert len(data["products_created"]) == 1
        assert data["prices_written"] == 2
        assert data["invoices_recorded"] == ["SF-1"]
        assert store.get_product("tomato").quantity == Decimal("2")

    def test_decision_count_mismatch(self, client: TestClient) -> None:
        payload = self._payload([GroupDecision(action=GroupAction.SKIP)])

        response = client.post("/api/v1/invoices/approve", json=payload)

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_unknown_product(self, client: TestClient) -> None:
        payload = self._payload(
            [
                GroupDecision(action=GroupAction.MATCH, product_id="missing"),
                GroupDecision(action=GroupAction.SKIP),
            ]
        )

        with patch("invoice_recon.api.main.approver", BatchApprover(InMemoryCatalogStore())):
            response = client.post("/api/v1/invoices/approve", json=payload)

        assert response.status_code == status.HTTP_404_NOT_FOUND


def test_metrics_endpoint(client: TestClient) -> None:
    """Test Prometheus metrics endpoint."""
    client.get("/health")

    response = client.get("/metrics")

    assert response.status_code == status.HTTP_200_OK
    assert "text/plain" in response.headers["content-type"]
    assert "http_requests_total" in response.text
