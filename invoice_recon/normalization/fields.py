"""Field normalizer.

Turns a loosely typed RawExtractedInvoice into a NormalizedInvoice. Nothing
in here raises on bad input: unparsable numbers become 0, unparsable dates
become today, unknown units become pcs, and inconsistent totals become a
warning on the invoice.
"""

import logging
import math
import re
from collections.abc import Callable
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from dateutil import parser as date_parser

from invoice_recon.extraction.schema import (
    NormalizedInvoice,
    NormalizedLineItem,
    RawExtractedInvoice,
    RawLineItem,
)
from invoice_recon.normalization.supplier import clean_supplier_name, recover_vendor_name
from invoice_recon.normalization.units import infer_unit, normalize_unit
from invoice_recon.shared.config import Settings

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

_NON_NUMERIC = re.compile(r"[^0-9,.\-]")
_INVISIBLE = re.compile("[\u00ad\u200b\u200c\u200d\u2060\ufeff]")
_WHITESPACE = re.compile(r"\s+")
_TRAILING_SKU = re.compile(
    r"\s+(?:(?:#|sku:?|art\.?|kodas:?)\s*)?(?P<code>(?:[A-Z]{1,4}-?)?\d{5,})$", re.IGNORECASE
)
_YEAR_FIRST = re.compile(r"^\s*(\d{4})[-./](\d{1,2})[-./](\d{1,2})\b")

CURRENCY_SYMBOLS = {"€": "EUR", "$": "USD", "£": "GBP", "zł": "PLN", "kr": "SEK"}

# Names whose alphanumeric characters are mostly digits are OCR garbage
MAX_DIGIT_SHARE = 0.6


def parse_number(value: Any) -> Decimal:
    """Parse a locale-formatted number. Never raises; unparsable -> 0.

    The last separator wins as decimal point when both ',' and '.' appear
    ("1.234,56" and "1,234.56" are both 1234.56). A single comma is a
    decimal comma ("12,5"); repeated separators of one kind are thousands
    separators ("1,234,567", "1.234.567").

    Args:
        value: str, int, float, Decimal or None

    Returns:
        Parsed Decimal
    """
    if value is None or isinstance(value, bool):
        return ZERO
    if isinstance(value, Decimal):
        return value if value.is_finite() else ZERO
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(str(value)) if math.isfinite(value) else ZERO

    text = _NON_NUMERIC.sub("", str(value))
    negative = text.startswith("-")
    text = text.replace("-", "")

    if "," in text and "." in text:
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    elif "," in text:
        text = text.replace(",", "") if text.count(",") > 1 else text.replace(",", ".")
    elif text.count(".") > 1:
        text = text.replace(".", "")

    try:
        number = Decimal(text)
    except InvalidOperation:
        return ZERO
    if not number.is_finite():
        return ZERO
    return -number if negative else number


def parse_date(value: Any, today: Callable[[], date] = date.today) -> date:
    """Parse an invoice date, day-first. Unparsable or missing -> today.

    Args:
        value: date, datetime or string ("2024-01-15", "15.01.2024",
            "15/01/2024", "January 15, 2024", ...)
        today: Fallback date source

    Returns:
        Parsed date
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if value is None or not str(value).strip():
        return today()

    text = str(value).strip()
    year_first = _YEAR_FIRST.match(text)
    try:
        if year_first:
            year, month, day = (int(part) for part in year_first.groups())
            return date(year, month, day)
        return date_parser.parse(text, dayfirst=True).date()
    except (ValueError, OverflowError, TypeError):
        logger.warning(f"Unparsable invoice date {text!r}, using processing date")
        return today()


def parse_currency(value: Any, default: str = "EUR") -> str:
    """Return a 3-letter upper-case currency code."""
    if value is None:
        return default
    text = str(value).strip()
    if len(text) == 3 and text.isalpha():
        return text.upper()
    for symbol, code in CURRENCY_SYMBOLS.items():
        if symbol in text:
            return code
    letters = re.search(r"\b([A-Za-z]{3})\b", text)
    return letters.group(1).upper() if letters else default


def sanitize_name(value: Any, position: int) -> tuple[str, bool]:
    """Clean a line item name.

    Removes invisible characters, collapses whitespace and strips trailing
    SKU/barcode codes. Names that end up empty or mostly digits are replaced
    by a positional placeholder and flagged for review.

    Args:
        value: Raw name
        position: 1-based line item position, used for the placeholder

    Returns:
        (name, needs_review)
    """
    text = "" if value is None else str(value)
    text = _INVISIBLE.sub("", text)
    text = _WHITESPACE.sub(" ", text).strip()
    text = _TRAILING_SKU.sub("", text).strip()

    alnum = [c for c in text if c.isalnum()]
    if not alnum:
        return f"Product {position}", True
    digits = sum(1 for c in alnum if c.isdigit())
    if digits / len(alnum) > MAX_DIGIT_SHARE:
        return f"Product {position}", True
    return text, False


def extract_sku(product_code: Any, name: Any) -> str | None:
    """Article code of a line item.

    A code the provider read as a separate field wins; otherwise a trailing
    code stripped from the name by sanitize_name is used.
    """
    if product_code is not None and str(product_code).strip():
        return _WHITESPACE.sub(" ", str(product_code)).strip()
    if name is None:
        return None
    text = _WHITESPACE.sub(" ", _INVISIBLE.sub("", str(name))).strip()
    match = _TRAILING_SKU.search(text)
    return match.group("code") if match else None


class FieldNormalizer:
    """Normalizes raw provider output using configured business defaults."""

    def __init__(self, settings: Settings, today: Callable[[], date] = date.today) -> None:
        """Initialize normalizer.

        Args:
            settings: Settings with default_currency, default_vat_rate, sum_tolerance
            today: Date used when an invoice date cannot be parsed
        """
        self.settings = settings
        self._today = today

    def normalize(self, raw: RawExtractedInvoice) -> NormalizedInvoice:
        """Coerce every field of a raw invoice to its canonical type.

        Args:
            raw: Raw extracted invoice

        Returns:
            Normalized invoice (warnings list populated on inconsistencies)
        """
        line_items = [
            self.normalize_line_item(item, position)
            for position, item in enumerate(raw.line_items, start=1)
        ]

        subtotal = parse_number(raw.subtotal)
        total = parse_number(raw.total)
        tax_amount = parse_number(raw.tax_amount)
        if tax_amount == ZERO and total > subtotal > ZERO:
            tax_amount = total - subtotal

        vendor_name = None
        if raw.vendor_name is not None and str(raw.vendor_name).strip():
            vendor_name = clean_supplier_name(str(raw.vendor_name))
        vendor_name = recover_vendor_name(vendor_name, raw.raw_text)

        invoice_number = None
        if raw.invoice_number is not None and str(raw.invoice_number).strip():
            invoice_number = str(raw.invoice_number).strip()

        warnings = []
        lines_total = sum((item.total_price for item in line_items), ZERO)
        if abs(lines_total - subtotal) > self.settings.sum_tolerance:
            message = (
                f"Line items total ({lines_total:.2f}) doesn't match "
                f"invoice subtotal ({subtotal:.2f})"
            )
            logger.warning(message)
            warnings.append(message)

        return NormalizedInvoice(
            invoice_number=invoice_number,
            invoice_date=parse_date(raw.invoice_date, self._today),
            vendor_name=vendor_name,
            subtotal=subtotal,
            tax_amount=tax_amount,
            total=total,
            currency=parse_currency(raw.currency, self.settings.default_currency),
            line_items=line_items,
            warnings=warnings,
        )

    def normalize_line_item(self, item: RawLineItem, position: int) -> NormalizedLineItem:
        name, needs_review = sanitize_name(item.name, position)

        quantity = parse_number(item.quantity)
        if quantity == ZERO:
            quantity = Decimal("1")

        unit_price = parse_number(item.unit_price)
        total_price = parse_number(item.total_price)
        if unit_price == ZERO and total_price != ZERO:
            unit_price = (total_price / quantity).quantize(Decimal("0.0001"))
        elif total_price == ZERO and unit_price != ZERO:
            total_price = unit_price * quantity

        if item.tax_rate is None or str(item.tax_rate).strip() == "":
            tax_rate = self.settings.default_vat_rate
        else:
            tax_rate = parse_number(item.tax_rate)

        return NormalizedLineItem(
            name=name,
            quantity=quantity,
            unit=infer_unit(name, normalize_unit(item.unit), quantity),
            unit_price=unit_price,
            total_price=total_price,
            tax_rate=tax_rate,
            sku=extract_sku(item.product_code, item.name),
            needs_review=needs_review,
        )
