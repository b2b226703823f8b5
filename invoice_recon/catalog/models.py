"""Catalog-side data models: products, supplier prices, review decisions."""

import uuid
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field

from invoice_recon.extraction.schema import Unit


def _new_id() -> str:
    return uuid.uuid4().hex


def _now() -> datetime:
    return datetime.now(UTC)


class CatalogProduct(BaseModel):
    """Product owned by the persistence layer."""

    id: str = Field(default_factory=_new_id)
    name: str
    unit: Unit = Unit.PCS
    quantity: Decimal = Field(Decimal("0"), description="Quantity on hand")
    min_stock: Decimal | None = None
    sku: str | None = None


class SupplierPrice(BaseModel):
    """Price a supplier charges for a product.

    At most one price per product is preferred at any time; writes that set
    preferred go through PreferredPriceManager.
    """

    id: str = Field(default_factory=_new_id)
    product_id: str
    supplier_id: str
    price: Decimal
    price_excl_vat: Decimal
    price_incl_vat: Decimal
    vat_rate: Decimal = Decimal("0")
    currency: str = "EUR"
    preferred: bool = False
    last_updated: datetime = Field(default_factory=_now)
    invoice_id: str | None = None


class MatchSuggestion(BaseModel):
    """Candidate catalog product for a name or group."""

    product_id: str
    confidence: float = Field(..., ge=0, le=1)
    reason: str


class GroupAction(str, Enum):
    """Reviewer decision for a product group."""

    MATCH = "match"
    CREATE = "create"
    SKIP = "skip"


class GroupDecision(BaseModel):
    """Decision for one group; product_id is required for MATCH."""

    action: GroupAction
    product_id: str | None = None


class ApprovalSummary(BaseModel):
    """Outcome of committing a reviewed batch."""

    products_created: list[str] = Field(default_factory=list)
    groups_matched: int = 0
    groups_skipped: int = 0
    prices_written: int = 0
    quantities_adjusted: int = 0
    invoices_recorded: list[str] = Field(default_factory=list)
    invoices_skipped: list[str] = Field(
        default_factory=list, description="Invoice numbers already recorded for the supplier"
    )
