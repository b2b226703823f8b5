"""Cross-invoice grouping of line items into product groups.

Incremental single-pass clustering: each line item is compared with the
canonical key of every existing group of the same unit and joins the most
similar one at or above the threshold (first-created group wins ties),
otherwise it starts a new group. A group's key is the key of the item that
created it, so the result depends on arrival order. Re-grouping the
flattened output of a grouping yields the same partition.

Complexity is O(items x groups).
"""

import logging
from collections.abc import Iterable, Sequence
from decimal import Decimal

from pydantic import BaseModel, Field, computed_field

from invoice_recon.extraction.schema import NormalizedInvoice, NormalizedLineItem, Unit
from invoice_recon.matching.canonical import canonicalize, clean_name
from invoice_recon.matching.similarity import similarity

logger = logging.getLogger(__name__)

# (invoice index, line item index, line item)
GroupingItem = tuple[int, int, NormalizedLineItem]


class GroupInstance(BaseModel):
    """One occurrence of a product on an invoice."""

    invoice_index: int
    line_item_index: int
    quantity: Decimal
    unit_price: Decimal
    total_price: Decimal
    tax_rate: Decimal
    original_name: str
    cleaned_name: str
    sku: str | None = None
    needs_review: bool = False


class ProductGroup(BaseModel):
    """Line items believed to refer to the same physical product.

    Attributes:
        display_name: Shortest cleaned variant longer than 2 characters
        canonical_key: Key of the item that created the group
        unit: Shared unit of all instances
        instances: Occurrences in arrival order
        variations: Distinct cleaned names in first-seen order
    """

    display_name: str
    canonical_key: str
    unit: Unit
    instances: list[GroupInstance] = Field(default_factory=list)
    variations: list[str] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_quantity(self) -> Decimal:
        return sum((i.quantity for i in self.instances), Decimal("0"))

    @computed_field  # type: ignore[prop-decorator]
    @property
    def average_price(self) -> Decimal:
        """Quantity-weighted average unit price."""
        total_quantity = self.total_quantity
        if total_quantity == 0:
            return Decimal("0")
        weighted = sum((i.quantity * i.unit_price for i in self.instances), Decimal("0"))
        return (weighted / total_quantity).quantize(Decimal("0.0001"))

    @computed_field  # type: ignore[prop-decorator]
    @property
    def variation_count(self) -> int:
        return len(self.variations)

    def add(self, instance: GroupInstance) -> None:
        self.instances.append(instance)
        if instance.cleaned_name not in self.variations:
            self.variations.append(instance.cleaned_name)
            self.display_name = _display_name(self.variations)


def _display_name(variations: Sequence[str]) -> str:
    candidates = [v for v in variations if len(v) > 2]
    if not candidates:
        return variations[0]
    # min() keeps the first of equally short names
    return min(candidates, key=len)


def _item_key(item: NormalizedLineItem) -> str:
    return canonicalize(item.name) or clean_name(item.name).casefold()


class GroupingEngine:
    """Groups line items from one batch into ProductGroups."""

    def __init__(self, threshold: float = 0.7) -> None:
        """Initialize engine.

        Args:
            threshold: Minimum key similarity for an item to join a group
        """
        self.threshold = threshold

    def group(self, items: Iterable[GroupingItem]) -> list[ProductGroup]:
        """Cluster items in arrival order.

        Items flagged needs_review always form their own group: their names
        are placeholders and say nothing about the product.

        Args:
            items: (invoice index, line item index, line item) tuples

        Returns:
            Groups in creation order
        """
        groups: list[ProductGroup] = []
        open_groups: list[ProductGroup] = []

        for invoice_index, line_item_index, item in items:
            key = _item_key(item)
            cleaned = clean_name(item.name) or item.name

            best: ProductGroup | None = None
            best_score = -1.0
            if not item.needs_review:
                for candidate in open_groups:
                    if candidate.unit != item.unit:
                        continue
                    score = similarity(key, candidate.canonical_key)
                    if score >= self.threshold and score > best_score:
                        best, best_score = candidate, score

            if best is None:
                best = ProductGroup(display_name=cleaned, canonical_key=key, unit=item.unit)
                groups.append(best)
                if not item.needs_review:
                    open_groups.append(best)

            best.add(
                GroupInstance(
                    invoice_index=invoice_index,
                    line_item_index=line_item_index,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    total_price=item.total_price,
                    tax_rate=item.tax_rate,
                    original_name=item.name,
                    cleaned_name=cleaned,
                    sku=item.sku,
                    needs_review=item.needs_review,
                )
            )

        logger.info(f"Grouped line items into {len(groups)} product group(s)")
        return groups


def iter_invoice_items(invoices: Sequence[NormalizedInvoice]) -> Iterable[GroupingItem]:
    """Flatten invoices into grouping items in arrival order."""
    for invoice_index, invoice in enumerate(invoices):
        for line_item_index, item in enumerate(invoice.line_items):
            yield invoice_index, line_item_index, item


def flatten_groups(groups: Sequence[ProductGroup]) -> list[GroupingItem]:
    """Turn groups back into grouping items, group by group."""
    items = []
    for group in groups:
        for instance in group.instances:
            item = NormalizedLineItem(
                name=instance.original_name,
                quantity=instance.quantity,
                unit=group.unit,
                unit_price=instance.unit_price,
                total_price=instance.total_price,
                tax_rate=instance.tax_rate,
                sku=instance.sku,
                needs_review=instance.needs_review,
            )
            items.append((instance.invoice_index, instance.line_item_index, item))
    return items


def group_invoices(
    invoices: Sequence[NormalizedInvoice], threshold: float = 0.7
) -> list[ProductGroup]:
    """Group every line item of a batch of invoices."""
    return GroupingEngine(threshold).group(iter_invoice_items(invoices))
