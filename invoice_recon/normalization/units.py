"""Unit normalization and unit inference.

normalize_unit() maps free-text units (English and Lithuanian abbreviations)
to the canonical Unit enum. infer_unit() refines a 'pcs' unit from the
product name and quantity using a rule table: OCR often loses the unit
column, and "Pomidorai 0,85" is almost certainly 0.85 kg.

Rules are plain data. Add a UnitRule to UNIT_RULES to support more
products or locales.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from invoice_recon.extraction.schema import Unit

UNIT_SYNONYMS: dict[str, Unit] = {
    # Weight
    "kg": Unit.KG,
    "kgs": Unit.KG,
    "kilogram": Unit.KG,
    "kilograms": Unit.KG,
    "kilogramai": Unit.KG,
    "g": Unit.G,
    "gr": Unit.G,
    "gram": Unit.G,
    "grams": Unit.G,
    "gramai": Unit.G,
    # Volume
    "l": Unit.L,
    "ltr": Unit.L,
    "liter": Unit.L,
    "litre": Unit.L,
    "liters": Unit.L,
    "litres": Unit.L,
    "litrai": Unit.L,
    "ml": Unit.ML,
    "milliliter": Unit.ML,
    "millilitre": Unit.ML,
    "milliliters": Unit.ML,
    "mililitrai": Unit.ML,
    # Pieces (Lithuanian: vnt = vienetai)
    "pcs": Unit.PCS,
    "pc": Unit.PCS,
    "piece": Unit.PCS,
    "pieces": Unit.PCS,
    "vnt": Unit.PCS,
    "vienetai": Unit.PCS,
    "unit": Unit.PCS,
    "units": Unit.PCS,
    "item": Unit.PCS,
    "items": Unit.PCS,
}


@dataclass(frozen=True)
class UnitRule:
    """Unit choice for products whose name contains one of the keywords.

    Attributes:
        keywords: Lower-case substrings matched against the product name
        below_one: Unit when quantity is below 1
        whole: Unit when quantity is a whole number of at least 1
        otherwise: Unit for any other quantity
    """

    keywords: tuple[str, ...]
    below_one: Unit
    whole: Unit
    otherwise: Unit

    def matches(self, name: str) -> bool:
        return any(keyword in name for keyword in self.keywords)

    def choose(self, quantity: Decimal) -> Unit:
        if quantity < 1:
            return self.below_one
        if quantity == quantity.to_integral_value():
            return self.whole
        return self.otherwise


UNIT_RULES: tuple[UnitRule, ...] = (
    # Vegetables
    UnitRule(
        keywords=(
            "agurkai", "pomidorai", "kopūstai", "morkos", "bulvės", "svogūnai",
            "česnakai", "pipirai", "salotos", "žalumynai", "daržovės",
            "cucumber", "tomato", "cabbage", "carrot", "potato", "onion", "garlic",
        ),
        below_one=Unit.KG,
        whole=Unit.PCS,
        otherwise=Unit.KG,
    ),
    # Liquids
    UnitRule(
        keywords=(
            "sultys", "gėrimas", "pienas", "aliejus", "sirupas", "padažas",
            "juice", "drink", "milk", "oil", "syrup", "sauce",
        ),
        below_one=Unit.L,
        whole=Unit.L,
        otherwise=Unit.L,
    ),
    # Meat and eggs
    UnitRule(
        keywords=(
            "mėsa", "kumpis", "šoninė", "dešra", "kiaušiniai",
            "meat", "ham", "bacon", "sausage", "eggs",
        ),
        below_one=Unit.KG,
        whole=Unit.PCS,
        otherwise=Unit.PCS,
    ),
)

# Fractional quantities in this open range are read as kilograms
# when no rule matches the name.
GENERIC_WEIGHT_RANGE = (Decimal("0.01"), Decimal("1"))


def normalize_unit(value: Any) -> Unit:
    """Map a raw unit string to a canonical Unit. Unknown or missing -> pcs."""
    if isinstance(value, Unit):
        return value
    if value is None:
        return Unit.PCS
    cleaned = str(value).strip().lower().replace(".", "")
    return UNIT_SYNONYMS.get(cleaned, Unit.PCS)


def infer_unit(
    name: str,
    unit: Unit,
    quantity: Decimal,
    rules: tuple[UnitRule, ...] = UNIT_RULES,
) -> Unit:
    """Refine a 'pcs' unit from the product name and quantity.

    Args:
        name: Product name
        unit: Unit after normalize_unit()
        quantity: Parsed quantity

    Returns:
        The extracted unit when it is anything but pcs, otherwise the
        unit chosen by the first matching rule
    """
    if unit is not Unit.PCS:
        return unit

    lowered = name.lower()
    for rule in rules:
        if rule.matches(lowered):
            return rule.choose(quantity)

    low, high = GENERIC_WEIGHT_RANGE
    if low < quantity < high:
        return Unit.KG
    return unit
