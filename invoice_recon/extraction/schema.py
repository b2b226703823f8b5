"""Invoice data models for extraction and normalization.

Two shapes are kept apart on purpose: RawExtractedInvoice is whatever a
provider adapter could read (loosely typed, possibly locale-formatted
strings), NormalizedInvoice is what the rest of the pipeline consumes.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from invoice_recon.shared.errors import ErrorKind


class Unit(str, Enum):
    """Canonical measurement units for line items."""

    PCS = "pcs"
    KG = "kg"
    G = "g"
    L = "l"
    ML = "ml"


class Document(BaseModel):
    """Binary payload submitted for extraction. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    content: bytes = Field(repr=False)
    media_type: str = Field(..., description="Declared MIME type, e.g. image/jpeg")
    filename: str | None = Field(None, description="Original file name, if known")

    @property
    def size(self) -> int:
        return len(self.content)


class ExtractionAttempt(BaseModel):
    """Diagnostics for one provider tried on one document."""

    provider: str = Field(..., description="Provider/model identifier, e.g. azure:prebuilt-invoice")
    success: bool
    error_kind: ErrorKind | None = None
    error: str | None = None
    duration_seconds: float = 0.0


class RawLineItem(BaseModel):
    """Line item as read by a provider adapter."""

    name: Any = None
    quantity: Any = None
    unit: Any = None
    unit_price: Any = None
    total_price: Any = None
    tax_rate: Any = None
    product_code: Any = Field(None, description="Supplier article code or barcode")


class RawExtractedInvoice(BaseModel):
    """Provider-neutral but not yet normalized invoice."""

    invoice_number: Any = None
    invoice_date: Any = None
    subtotal: Any = Field(None, description="Total excluding tax")
    total: Any = Field(None, description="Total including tax")
    tax_amount: Any = None
    currency: Any = None
    vendor_name: Any = None
    raw_text: str | None = Field(None, description="Full text content, when the provider returns it")
    line_items: list[RawLineItem] = Field(default_factory=list)


class NormalizedLineItem(BaseModel):
    """Line item with canonical types."""

    name: str
    quantity: Decimal
    unit: Unit = Unit.PCS
    unit_price: Decimal = Decimal("0")
    total_price: Decimal = Decimal("0")
    tax_rate: Decimal = Decimal("0")
    sku: str | None = Field(None, description="Supplier article code, if one was printed")
    needs_review: bool = False


class NormalizedInvoice(BaseModel):
    """Structured invoice data with canonical types."""

    invoice_number: str | None = Field(None, description="Unique invoice identifier")
    invoice_date: date = Field(..., description="Date invoice was issued")

    vendor_name: str | None = Field(None, description="Supplier/vendor company name")

    subtotal: Decimal = Field(Decimal("0"), description="Subtotal before tax")
    tax_amount: Decimal = Field(Decimal("0"), description="Tax amount")
    total: Decimal = Field(Decimal("0"), description="Total amount including tax")
    currency: str = Field("EUR", description="Currency code (ISO 4217)")

    line_items: list[NormalizedLineItem] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
