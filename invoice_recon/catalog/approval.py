"""Commit a reviewed batch to the catalog.

Each product group carries a reviewer decision: match it to an existing
product, create a new product for it, or skip it. For every invoice line in
a committed group a supplier price is written and the product's on-hand
quantity is increased. Approved invoices are recorded with the store per
supplier and invoice number.
"""

import logging
from collections.abc import Sequence
from decimal import ROUND_HALF_UP, Decimal

from invoice_recon.catalog.models import (
    ApprovalSummary,
    GroupAction,
    GroupDecision,
    SupplierPrice,
)
from invoice_recon.catalog.pricing import PreferredPriceManager
from invoice_recon.catalog.store import CatalogStore
from invoice_recon.extraction.schema import NormalizedInvoice
from invoice_recon.matching.grouping import GroupInstance, ProductGroup

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def price_including_vat(unit_price: Decimal, vat_rate: Decimal) -> Decimal:
    """unit_price * (1 + vat_rate / 100), rounded half up to cents."""
    return (unit_price * (1 + vat_rate / 100)).quantize(CENT, rounding=ROUND_HALF_UP)


class BatchApprover:
    """Applies group decisions through the store and the price manager."""

    def __init__(self, store: CatalogStore, pricing: PreferredPriceManager | None = None) -> None:
        self.store = store
        self.pricing = pricing or PreferredPriceManager(store)

    def approve(
        self,
        groups: Sequence[ProductGroup],
        decisions: Sequence[GroupDecision],
        invoices: Sequence[NormalizedInvoice],
        supplier_id: str,
        mark_preferred: bool = True,
    ) -> ApprovalSummary:
        """Commit groups to the catalog.

        Decisions are checked before anything is written. Lines from invoices
        the supplier already has on record (or that repeat an invoice number
        earlier in the batch) are skipped, so approving the same invoice
        twice does not count its stock twice.

        Args:
            groups: Product groups of the batch
            decisions: One decision per group, same order
            invoices: Invoices the groups' instances point into
            supplier_id: Supplier the prices belong to
            mark_preferred: Make the written prices preferred

        Returns:
            Summary of what was written

        Raises:
            ValueError: On a decision count mismatch, a match without
                product_id or an instance pointing past the invoices
            ProductNotFound: If a match decision names an unknown product
        """
        self._check(groups, decisions, invoices)

        duplicates = self._recorded_invoices(invoices, supplier_id)
        summary = ApprovalSummary(
            invoices_skipped=[str(invoices[index].invoice_number) for index in sorted(duplicates)]
        )

        for group, decision in zip(groups, decisions):
            instances = [i for i in group.instances if i.invoice_index not in duplicates]
            if decision.action is GroupAction.SKIP or not instances:
                summary.groups_skipped += 1
                continue

            if decision.action is GroupAction.MATCH:
                product_id = str(decision.product_id)
                summary.groups_matched += 1
            else:
                product = self.store.create_product(group.display_name, group.unit)
                product_id = product.id
                summary.products_created.append(product_id)

            for instance in instances:
                invoice = invoices[instance.invoice_index]
                self._write_price(instance, invoice, product_id, supplier_id, mark_preferred)
                summary.prices_written += 1
                self.store.adjust_product_quantity(product_id, instance.quantity)
                summary.quantities_adjusted += 1

        for index, invoice in enumerate(invoices):
            if index not in duplicates and invoice.invoice_number:
                self.store.record_invoice(supplier_id, invoice)
                summary.invoices_recorded.append(invoice.invoice_number)

        logger.info(
            f"Approved batch: {len(summary.products_created)} created, "
            f"{summary.groups_matched} matched, {summary.groups_skipped} skipped, "
            f"{summary.prices_written} price(s) written, "
            f"{len(summary.invoices_skipped)} invoice(s) already recorded"
        )
        return summary

    def _check(
        self,
        groups: Sequence[ProductGroup],
        decisions: Sequence[GroupDecision],
        invoices: Sequence[NormalizedInvoice],
    ) -> None:
        if len(groups) != len(decisions):
            raise ValueError(f"Got {len(decisions)} decision(s) for {len(groups)} group(s)")

        for group, decision in zip(groups, decisions):
            if decision.action is GroupAction.SKIP:
                continue
            for instance in group.instances:
                if not 0 <= instance.invoice_index < len(invoices):
                    raise ValueError(
                        f"Group '{group.display_name}' refers to invoice {instance.invoice_index}, "
                        f"but only {len(invoices)} invoice(s) were given"
                    )
            if decision.action is GroupAction.MATCH:
                if not decision.product_id:
                    raise ValueError(f"Match decision for '{group.display_name}' has no product_id")
                self.store.get_product(decision.product_id)

    def _recorded_invoices(self, invoices: Sequence[NormalizedInvoice], supplier_id: str) -> set[int]:
        """Indexes of invoices whose number is already on record for the supplier."""
        seen: set[str] = set()
        duplicates = set()
        for index, invoice in enumerate(invoices):
            number = invoice.invoice_number
            if not number:
                continue
            if number in seen or self.store.find_invoice(supplier_id, number) is not None:
                logger.warning(f"Invoice {number} of supplier {supplier_id} already recorded, skipping")
                duplicates.add(index)
            seen.add(number)
        return duplicates

    def _write_price(
        self,
        instance: GroupInstance,
        invoice: NormalizedInvoice,
        product_id: str,
        supplier_id: str,
        preferred: bool,
    ) -> SupplierPrice:
        return self.pricing.upsert_supplier_price(
            SupplierPrice(
                product_id=product_id,
                supplier_id=supplier_id,
                price=instance.unit_price,
                price_excl_vat=instance.unit_price,
                price_incl_vat=price_including_vat(instance.unit_price, instance.tax_rate),
                vat_rate=instance.tax_rate,
                currency=invoice.currency,
                preferred=preferred,
                invoice_id=invoice.invoice_number,
            )
        )
