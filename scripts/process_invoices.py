#!/usr/bin/env python3
"""Process a batch of invoice files from the command line.

Runs every file through the configured provider chain, groups the line
items across invoices and prints catalog suggestions for each group.

Usage:
    python scripts/process_invoices.py invoices/*.jpg --catalog catalog.json --output review.json

Requirements:
    - APP_AZURE_ENDPOINT / APP_AZURE_API_KEY for Azure models
    - OPENAI_API_KEY for OpenAI models (add them via APP_EXTRACTION_PROVIDERS)
"""

import asyncio
import json
import logging
import mimetypes
from pathlib import Path

from invoice_recon.catalog.models import CatalogProduct
from invoice_recon.extraction.factory import create_provider_chain
from invoice_recon.extraction.governor import create_rate_governor
from invoice_recon.extraction.orchestrator import ProviderFallbackOrchestrator
from invoice_recon.extraction.schema import Document
from invoice_recon.pipeline.batch import BatchPipeline, review_batch, validate_documents
from invoice_recon.shared.config import Settings

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)


def load_documents(paths: list[Path]) -> list[Document]:
    """Read files into documents, guessing the media type from the extension."""
    documents = []
    for path in paths:
        media_type, _ = mimetypes.guess_type(path.name)
        documents.append(
            Document(
                content=path.read_bytes(),
                media_type=media_type or "application/octet-stream",
                filename=path.name,
            )
        )
    return documents


def load_catalog(path: Path | None) -> list[CatalogProduct]:
    """Load catalog products from a JSON list, or an empty catalog."""
    if path is None:
        return []
    with open(path, encoding="utf-8") as f:
        return [CatalogProduct(**item) for item in json.load(f)]


async def process(paths: list[Path], catalog_path: Path | None, output: Path | None) -> int:
    """Run the batch and report. Returns a process exit code."""
    settings = Settings()
    documents = load_documents(paths)

    errors = validate_documents(documents, settings.max_upload_bytes)
    if errors:
        for error in errors:
            logger.error(error)
        return 2

    providers = create_provider_chain(settings)
    if not providers:
        logger.error("No extraction provider is configured")
        return 2

    orchestrator = ProviderFallbackOrchestrator(providers, create_rate_governor(settings), settings)
    pipeline = BatchPipeline(orchestrator, settings)
    try:
        results = await pipeline.submit_batch(documents)
    finally:
        for provider in providers:
            await provider.aclose()

    print("\n" + "=" * 80)
    print("DOCUMENTS")
    print("=" * 80)
    for result in results:
        if result.success and result.invoice is not None:
            print(
                f"  [OK]   {result.filename}: {len(result.invoice.line_items)} item(s), "
                f"total {result.invoice.total} {result.invoice.currency} via {result.provider}"
            )
            for warning in result.invoice.warnings:
                print(f"         warning: {warning}")
        else:
            print(f"  [FAIL] {result.filename}: {result.error}")

    reviews = review_batch(results, load_catalog(catalog_path), settings)
    print("\n" + "=" * 80)
    print(f"PRODUCT GROUPS ({len(reviews)})")
    print("=" * 80)
    for review in reviews:
        group = review.group
        print(
            f"  {group.display_name} [{group.unit.value}] x{group.total_quantity}, "
            f"avg {group.average_price}, {group.variation_count} variation(s) "
            f"-> {review.decision.action.value}"
        )
        for suggestion in review.suggestions:
            print(f"      {suggestion.product_id}: {suggestion.confidence:.2f} ({suggestion.reason})")

    if output is not None:
        payload = {
            "results": [r.model_dump(mode="json") for r in results],
            "groups": [r.model_dump(mode="json") for r in reviews],
        }
        output.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
        logger.info(f"Review written to {output}")

    return 0 if all(r.success for r in results) else 1


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Extract and reconcile a batch of invoices")
    parser.add_argument("files", type=Path, nargs="+", help="Invoice files (PDF or images)")
    parser.add_argument(
        "--catalog",
        type=Path,
        default=None,
        help="JSON file with a list of catalog products",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Write results and review groups as JSON",
    )

    args = parser.parse_args()
    raise SystemExit(asyncio.run(process(args.files, args.catalog, args.output)))
