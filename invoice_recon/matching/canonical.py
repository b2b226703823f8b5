"""Product name canonicalization.

canonicalize() produces the key used for similarity comparison; it is
never shown to users. clean_name() produces the human-readable variant used
as a group's display name.
"""

import re

_UNIT_WORDS = (
    "kg|kgs|g|gr|l|ltr|ml|pcs|pc|piece|pieces|vnt|pak|pack|packet|box|bottle|can|unit|units"
)
_NUMBER = r"\d+(?:[.,]\d+)?"

# 4x2.5kg, 6 x 0,5 l, 10*100g
_COMPOUND_QUANTITY = re.compile(rf"\b{_NUMBER}\s*[x×*]\s*{_NUMBER}\s*(?:{_UNIT_WORDS})?\b")
# 1 kg, 0,5l, 500g, 2.5%
_QUANTITY_WITH_UNIT = re.compile(rf"\b{_NUMBER}\s*(?:(?:{_UNIT_WORDS})\b|%)")
_NON_WORD = re.compile(r"[^\w\s]|_")
_UNIT_TOKEN = re.compile(rf"\b(?:{_UNIT_WORDS})\b")
# VAT/currency labels and promo markers OCR picks up from the same row
_NOISE_TOKEN = re.compile(r"\b(?:pvm|vat|eur|akcija|nuolaida|promo)\b")
_BARE_NUMBER = re.compile(r"\b\d+\b")
_WHITESPACE = re.compile(r"\s+")

_DISPLAY_DISALLOWED = re.compile(r"[^\w\s&-]|_")


def canonicalize(name: str) -> str:
    """Compute the canonical key of a product name.

    "POMIDORAI, 1 KG" and "Pomidorai 1kg" both become "pomidorai".
    Accented letters are kept.
    """
    key = name.casefold()
    key = _COMPOUND_QUANTITY.sub(" ", key)
    key = _QUANTITY_WITH_UNIT.sub(" ", key)
    key = _NON_WORD.sub(" ", key)
    key = _UNIT_TOKEN.sub(" ", key)
    key = _NOISE_TOKEN.sub(" ", key)
    key = _BARE_NUMBER.sub(" ", key)
    return _WHITESPACE.sub(" ", key).strip()


def clean_name(name: str) -> str:
    """Display variant: letters, digits, spaces, '-' and '&' only."""
    return _WHITESPACE.sub(" ", _DISPLAY_DISALLOWED.sub(" ", name)).strip()
