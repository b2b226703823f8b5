"""Persistence contract for the catalog, plus an in-memory implementation.

The pipeline never owns storage. Callers plug in anything that satisfies
CatalogStore; InMemoryCatalogStore backs the tests, the CLI and the demo API.
transaction(product_id) must make every write inside it atomic with respect
to other writes to that product's prices.
"""

import logging
import threading
from collections import defaultdict
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from datetime import UTC, datetime
from decimal import Decimal
from typing import Protocol

from invoice_recon.catalog.models import CatalogProduct, SupplierPrice
from invoice_recon.extraction.schema import NormalizedInvoice, Unit
from invoice_recon.shared.errors import ProductNotFound

logger = logging.getLogger(__name__)


class CatalogStore(Protocol):
    """Operations the pipeline needs from the persistence layer."""

    def list_catalog_products(self) -> list[CatalogProduct]: ...

    def get_product(self, product_id: str) -> CatalogProduct: ...

    def list_supplier_prices(self, product_id: str | None = None) -> list[SupplierPrice]: ...

    def save_supplier_price(self, price: SupplierPrice) -> SupplierPrice: ...

    def adjust_product_quantity(self, product_id: str, delta: Decimal) -> CatalogProduct: ...

    def create_product(self, name: str, unit: Unit) -> CatalogProduct: ...

    def transaction(self, product_id: str) -> AbstractContextManager[None]: ...

    def find_invoice(self, supplier_id: str, invoice_number: str) -> NormalizedInvoice | None: ...

    def record_invoice(self, supplier_id: str, invoice: NormalizedInvoice) -> None: ...


class InMemoryCatalogStore:
    """Thread-safe dictionary-backed store. Returns copies, never live objects."""

    def __init__(
        self,
        products: list[CatalogProduct] | None = None,
        prices: list[SupplierPrice] | None = None,
    ) -> None:
        self._products: dict[str, CatalogProduct] = {p.id: p for p in products or []}
        self._prices: dict[str, SupplierPrice] = {p.id: p for p in prices or []}
        self._invoices: dict[tuple[str, str], NormalizedInvoice] = {}
        self._guard = threading.RLock()
        self._product_locks: defaultdict[str, threading.RLock] = defaultdict(threading.RLock)

    def list_catalog_products(self) -> list[CatalogProduct]:
        with self._guard:
            return [p.model_copy() for p in self._products.values()]

    def get_product(self, product_id: str) -> CatalogProduct:
        """Raises ProductNotFound for unknown ids."""
        with self._guard:
            product = self._products.get(product_id)
            if product is None:
                raise ProductNotFound(product_id)
            return product.model_copy()

    def list_supplier_prices(self, product_id: str | None = None) -> list[SupplierPrice]:
        with self._guard:
            return [
                p.model_copy()
                for p in self._prices.values()
                if product_id is None or p.product_id == product_id
            ]

    def save_supplier_price(self, price: SupplierPrice) -> SupplierPrice:
        stored = price.model_copy(update={"last_updated": datetime.now(UTC)})
        with self._guard:
            self._prices[stored.id] = stored
        return stored.model_copy()

    def adjust_product_quantity(self, product_id: str, delta: Decimal) -> CatalogProduct:
        with self._guard:
            product = self._products.get(product_id)
            if product is None:
                raise ProductNotFound(product_id)
            updated = product.model_copy(update={"quantity": product.quantity + delta})
            self._products[product_id] = updated
        logger.debug(f"Adjusted quantity of {product_id} by {delta}")
        return updated.model_copy()

    def create_product(self, name: str, unit: Unit) -> CatalogProduct:
        product = CatalogProduct(name=name, unit=unit)
        with self._guard:
            self._products[product.id] = product
        logger.info(f"Created product {product.id}: {name} ({unit.value})")
        return product.model_copy()

    @contextmanager
    def transaction(self, product_id: str) -> Iterator[None]:
        """Per-product mutual exclusion. Re-entrant within one thread."""
        with self._guard:
            lock = self._product_locks[product_id]
        with lock:
            yield

    def find_invoice(self, supplier_id: str, invoice_number: str) -> NormalizedInvoice | None:
        with self._guard:
            invoice = self._invoices.get((supplier_id, invoice_number))
        return invoice.model_copy() if invoice is not None else None

    def record_invoice(self, supplier_id: str, invoice: NormalizedInvoice) -> None:
        """Remember an approved invoice; invoices without a number are not tracked."""
        if not invoice.invoice_number:
            return
        with self._guard:
            self._invoices[(supplier_id, invoice.invoice_number)] = invoice.model_copy()
        logger.info(f"Recorded invoice {invoice.invoice_number} of supplier {supplier_id}")
