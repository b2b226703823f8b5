"""Unit tests for catalog suggestions."""

from decimal import Decimal

import pytest

from invoice_recon.catalog.models import CatalogProduct, GroupAction
from invoice_recon.extraction.schema import NormalizedLineItem, Unit
from invoice_recon.matching.catalog import CatalogMatcher
from invoice_recon.matching.grouping import GroupingEngine


@pytest.fixture
def catalog() -> list[CatalogProduct]:
    return [
        CatalogProduct(id="tomato-kg", name="Pomidorai", unit=Unit.KG),
        CatalogProduct(id="cherry-kg", name="Pomidorai vyšniniai", unit=Unit.KG),
        CatalogProduct(id="tomato-pcs", name="Pomidorai", unit=Unit.PCS),
        CatalogProduct(id="cucumber-kg", name="Agurkai", unit=Unit.KG, sku="AGR-1"),
    ]


@pytest.fixture
def matcher() -> CatalogMatcher:
    return CatalogMatcher(threshold=0.6, limit=3)


class TestSuggest:
    """Scoring of single names."""

    def test_exact_then_prefix(self, matcher: CatalogMatcher, catalog: list[CatalogProduct]) -> None:
        """Exact key match first, prefix-boosted match second, other units excluded."""
        suggestions = matcher.suggest("POMIDORAI 1 kg", Unit.KG, catalog)

        assert [s.product_id for s in suggestions] == ["tomato-kg", "cherry-kg"]
        assert suggestions[0].confidence == 1.0
        assert suggestions[0].reason == "Exact match"
        assert suggestions[1].reason == "Name starts with match"
        assert suggestions[1].confidence == pytest.approx(1 - 10 / 19 + 0.2)

    def test_unit_filter(self, matcher: CatalogMatcher, catalog: list[CatalogProduct]) -> None:
        suggestions = matcher.suggest("Pomidorai", Unit.PCS, catalog)

        assert [s.product_id for s in suggestions] == ["tomato-pcs"]

    def test_no_unit_considers_all(self, matcher: CatalogMatcher, catalog: list[CatalogProduct]) -> None:
        ids = [s.product_id for s in matcher.suggest("Pomidorai", None, catalog)]

        assert ids[:2] == ["tomato-kg", "tomato-pcs"]

    def test_sku_is_exact(self, matcher: CatalogMatcher, catalog: list[CatalogProduct]) -> None:
        suggestions = matcher.suggest("agr-1", Unit.KG, catalog)

        assert suggestions[0].product_id == "cucumber-kg"
        assert suggestions[0].confidence == 1.0

    def test_group_sku_is_exact(self, matcher: CatalogMatcher, catalog: list[CatalogProduct]) -> None:
        """A printed article code matches even when the name does not."""
        item = NormalizedLineItem(name="Šviežios daržovės", quantity=Decimal("1"), unit=Unit.KG, sku="agr-1")
        group = GroupingEngine().group([(0, 0, item)])[0]

        suggestions = matcher.suggest(group, None, catalog)

        assert suggestions[0].product_id == "cucumber-kg"
        assert suggestions[0].confidence == 1.0
        assert suggestions[0].reason == "Exact match"

    def test_similarity_reason(self, matcher: CatalogMatcher, catalog: list[CatalogProduct]) -> None:
        suggestions = matcher.suggest("Pomidoras", Unit.KG, catalog)

        assert suggestions[0].product_id == "tomato-kg"
        assert suggestions[0].reason == "89% name similarity"

    def test_below_threshold_excluded(self, matcher: CatalogMatcher, catalog: list[CatalogProduct]) -> None:
        assert matcher.suggest("Bananai", Unit.KG, catalog) == []

    def test_empty_key_matches_nothing(self, matcher: CatalogMatcher, catalog: list[CatalogProduct]) -> None:
        assert matcher.suggest("500 g", Unit.KG, catalog) == []

    def test_limit_and_stable_order(self) -> None:
        """Equal scores keep catalog order; at most `limit` are returned."""
        catalog = [CatalogProduct(id=f"p{n}", name="Pienas", unit=Unit.L) for n in range(5)]

        suggestions = CatalogMatcher(limit=3).suggest("Pienas", Unit.L, catalog)

        assert [s.product_id for s in suggestions] == ["p0", "p1", "p2"]


class TestSuggestForGroups:
    """Pre-selected review decisions."""

    def test_match_or_create(self, matcher: CatalogMatcher, catalog: list[CatalogProduct]) -> None:
        def item(name: str) -> NormalizedLineItem:
            return NormalizedLineItem(name=name, quantity=Decimal("1"), unit=Unit.KG)

        groups = GroupingEngine().group([(0, 0, item("Pomidorai")), (0, 1, item("Bananai"))])

        reviews = matcher.suggest_for_groups(groups, iter(catalog))

        assert reviews[0].decision.action is GroupAction.MATCH
        assert reviews[0].decision.product_id == "tomato-kg"
        assert reviews[1].decision.action is GroupAction.CREATE
        assert reviews[1].suggestions == []
