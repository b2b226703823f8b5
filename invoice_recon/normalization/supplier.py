"""Supplier (vendor) name cleanup.

Invoice headers often put the VAT payer code, registration number or the
address on the same line as the company name. clean_supplier_name() strips
those tails. recover_vendor_name() looks for a fuller company name in the
document text when the provider only returned an abbreviation (e.g. "LiDL").
"""

import logging
import re

logger = logging.getLogger(__name__)

# Names shorter than this are treated as abbreviations
MIN_VENDOR_NAME_LENGTH = 10

_SUPPLIER_NOISE_PATTERNS = (
    # Lithuanian
    re.compile(r"\s*PVM\s+mok[ėe]tojo\s+kodas\s+r?\.?\s*[A-Z0-9\s]+", re.IGNORECASE),
    re.compile(r"\s*Juridinis\s*adresas[^\n]*", re.IGNORECASE),
    re.compile(r"\s*\bAdresas\b[^\n]*", re.IGNORECASE),
    re.compile(r"\s*\b[A-Z]{2}[0-9]{9,12}\b\s*"),
    # International
    re.compile(r"\s*\bVAT\b\s*[A-Z0-9\s]+", re.IGNORECASE),
    re.compile(r"\s*\bTax\s*ID\b[:\s]*[A-Z0-9\s]+", re.IGNORECASE),
    re.compile(r"\s*\bRegistration\s*No\b[:.\s]*[A-Z0-9\s]+", re.IGNORECASE),
)

_LITHUANIAN_COMPANY = re.compile(
    r"\b(?:UAB|MB|AB|I[IĮ]|V[SŠ][IĮ]|T[UŪ]B|K[UŪ]B)\s+[^\n]+", re.IGNORECASE
)
_INTERNATIONAL_COMPANY = re.compile(
    r"[A-Z][A-Za-z &.'-]+\s+(?:Ltd|LLC|Inc|Corp|GmbH|S\.?A\.?|B\.?V\.?|AG|AS|Oy|AB|ApS"
    r"|S\.?r\.?l\.?|Sp\.\s*z\s*o\.?o\.?)\b[^\n]*",
    re.IGNORECASE,
)
_SUPPLIER_LABEL = re.compile(r"Tiek[eė]jas[:\s]+([^\n]+)", re.IGNORECASE)


def clean_supplier_name(name: str | None) -> str | None:
    """Strip tax codes, addresses and quotes from a supplier name.

    Returns the original (trimmed) name if cleanup would leave nothing.
    """
    if not name:
        return name

    cleaned = name.strip()
    for pattern in _SUPPLIER_NOISE_PATTERNS:
        cleaned = pattern.sub(" ", cleaned)

    cleaned = re.sub(r"^[\"'„“”]+|[\"'„“”]+$", "", cleaned.strip())
    cleaned = re.sub(r"\s+", " ", cleaned).strip(" ,;:-")
    return cleaned or name.strip()


def recover_vendor_name(name: str | None, raw_text: str | None) -> str | None:
    """Replace an abbreviated vendor name with a company name found in the text.

    Tries, in order: a Lithuanian legal form (UAB, MB, AB, ...), an
    international legal form (Ltd, GmbH, ...), a 'Tiekėjas:' label.

    Args:
        name: Vendor name as extracted (already cleaned)
        raw_text: Full document text, if the provider returned it

    Returns:
        The recovered name, or the given name when nothing better is found
    """
    if not raw_text or (name and len(name) >= MIN_VENDOR_NAME_LENGTH):
        return name

    match = _LITHUANIAN_COMPANY.search(raw_text) or _INTERNATIONAL_COMPANY.search(raw_text)
    if match:
        found = match.group(0)
    else:
        label = _SUPPLIER_LABEL.search(raw_text)
        if not label:
            return name
        found = label.group(1)

    recovered = clean_supplier_name(found.strip())
    logger.info(f"Recovered vendor name {recovered!r} (extracted: {name!r})")
    return recovered
