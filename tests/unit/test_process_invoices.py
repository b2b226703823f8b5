"""Unit tests for the batch processing script."""

import json
from datetime import date
from decimal import Decimal
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from invoice_recon.extraction.schema import NormalizedInvoice, NormalizedLineItem, Unit
from invoice_recon.pipeline.batch import DocumentResult
from scripts.process_invoices import load_catalog, load_documents, process


@pytest.fixture
def invoice_files(tmp_path: Path) -> list[Path]:
    paths = [tmp_path / "a.pdf", tmp_path / "b.jpg"]
    for path in paths:
        path.write_bytes(b"data")
    return paths


def test_load_documents_guesses_media_type(invoice_files: list[Path]) -> None:
    documents = load_documents(invoice_files)

    assert [d.media_type for d in documents] == ["application/pdf", "image/jpeg"]
    assert [d.filename for d in documents] == ["a.pdf", "b.jpg"]


def test_load_catalog(tmp_path: Path) -> None:
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps([{"id": "tomato", "name": "Pomidorai", "unit": "kg"}]), encoding="utf-8")

    catalog = load_catalog(path)

    assert catalog[0].id == "tomato"
    assert catalog[0].unit is Unit.KG
    assert load_catalog(None) == []


@pytest.mark.asyncio
async def test_invalid_files_exit_2(tmp_path: Path) -> None:
    path = tmp_path / "notes.txt"
    path.write_text("hello", encoding="utf-8")

    assert await process([path], None, None) == 2


@pytest.mark.asyncio
async def test_no_providers_exit_2(invoice_files: list[Path]) -> None:
    with patch("scripts.process_invoices.create_provider_chain", return_value=[]):
        assert await process(invoice_files, None, None) == 2


@pytest.mark.asyncio
async def test_report_written(invoice_files: list[Path], tmp_path: Path) -> None:
    """Results and groups are written; one failure gives exit code 1."""
    invoice = NormalizedInvoice(
        invoice_date=date(2024, 1, 15),
        line_items=[NormalizedLineItem(name="Pomidorai", quantity=Decimal("2"), unit=Unit.KG)],
    )
    results = [
        DocumentResult(index=0, filename="a.pdf", success=True, invoice=invoice, provider="azure:prebuilt-invoice"),
        DocumentResult(index=1, filename="b.jpg", success=False, error="All providers failed"),
    ]
    provider = MagicMock()
    provider.aclose = AsyncMock()
    pipeline = MagicMock()
    pipeline.submit_batch = AsyncMock(return_value=results)
    output = tmp_path / "review.json"

    with (
        patch("scripts.process_invoices.create_provider_chain", return_value=[provider]),
        patch("scripts.process_invoices.BatchPipeline", return_value=pipeline),
    ):
        code = await process(invoice_files, None, output)

    assert code == 1
    provider.aclose.assert_awaited_once()
    payload = json.loads(output.read_text(encoding="utf-8"))
    assert len(payload["results"]) == 2
    assert payload["groups"][0]["group"]["display_name"] == "Pomidorai"
