"""Catalog matcher: ranked product suggestions for names and groups.

Suggestions are advisory. The reviewer decides match/create/skip per group;
nothing here writes to the catalog.
"""

from collections.abc import Iterable, Sequence, Set

from pydantic import BaseModel, Field

from invoice_recon.catalog.models import (
    CatalogProduct,
    GroupAction,
    GroupDecision,
    MatchSuggestion,
)
from invoice_recon.extraction.schema import Unit
from invoice_recon.matching.canonical import canonicalize
from invoice_recon.matching.grouping import ProductGroup
from invoice_recon.matching.similarity import similarity

EXACT_MATCH_REASON = "Exact match"
PREFIX_REASON = "Name starts with match"
PREFIX_BOOST = 0.2


class GroupReview(BaseModel):
    """A group with its catalog suggestions and the pre-selected decision."""

    group: ProductGroup
    suggestions: list[MatchSuggestion] = Field(default_factory=list)
    decision: GroupDecision


class CatalogMatcher:
    """Scores catalog products against a name or a product group."""

    def __init__(self, threshold: float = 0.6, limit: int = 3) -> None:
        """Initialize matcher.

        Args:
            threshold: Minimum confidence for a suggestion
            limit: Maximum number of suggestions returned
        """
        self.threshold = threshold
        self.limit = limit

    def suggest(
        self,
        name_or_group: str | ProductGroup,
        unit: Unit | None,
        catalog: Iterable[CatalogProduct],
    ) -> list[MatchSuggestion]:
        """Rank unit-compatible catalog products.

        Args:
            name_or_group: Product name or ProductGroup
            unit: Required unit (defaults to the group's unit for groups)
            catalog: Catalog products to score

        Returns:
            Up to `limit` suggestions, highest confidence first
        """
        if isinstance(name_or_group, ProductGroup):
            key = name_or_group.canonical_key
            codes = {i.sku.strip().casefold() for i in name_or_group.instances if i.sku}
            unit = unit or name_or_group.unit
        else:
            key = canonicalize(name_or_group)
            # a bare name may itself be an article code
            codes = {name_or_group.strip().casefold()}

        suggestions = []
        for product in catalog:
            if unit is not None and product.unit != unit:
                continue
            suggestion = self._score(key, codes, product)
            if suggestion is not None and suggestion.confidence >= self.threshold:
                suggestions.append(suggestion)

        suggestions.sort(key=lambda s: s.confidence, reverse=True)
        return suggestions[: self.limit]

    def _score(
        self, key: str, codes: Set[str], product: CatalogProduct
    ) -> MatchSuggestion | None:
        product_key = canonicalize(product.name)
        sku = product.sku.strip().casefold() if product.sku else None

        if (key and product_key == key) or (sku and sku in codes):
            return MatchSuggestion(product_id=product.id, confidence=1.0, reason=EXACT_MATCH_REASON)
        if not key or not product_key:
            return None

        score = similarity(key, product_key)
        if key.startswith(product_key) or product_key.startswith(key):
            return MatchSuggestion(
                product_id=product.id,
                confidence=min(1.0, score + PREFIX_BOOST),
                reason=PREFIX_REASON,
            )
        return MatchSuggestion(
            product_id=product.id,
            confidence=score,
            reason=f"{round(score * 100)}% name similarity",
        )

    def suggest_for_groups(
        self, groups: Sequence[ProductGroup], catalog: Iterable[CatalogProduct]
    ) -> list[GroupReview]:
        """Suggestions for every group, with match-or-create pre-selected."""
        products = list(catalog)
        reviews = []
        for group in groups:
            suggestions = self.suggest(group, group.unit, products)
            if suggestions:
                decision = GroupDecision(action=GroupAction.MATCH, product_id=suggestions[0].product_id)
            else:
                decision = GroupDecision(action=GroupAction.CREATE)
            reviews.append(GroupReview(group=group, suggestions=suggestions, decision=decision))
        return reviews
