"""Preferred supplier price invariant.

For every product at most one SupplierPrice is preferred. All writes that
set preferred=True go through PreferredPriceManager, which demotes the
other prices inside the store's per-product transaction.
"""

import logging

from invoice_recon.catalog.models import SupplierPrice
from invoice_recon.catalog.store import CatalogStore
from invoice_recon.shared.errors import ProductNotFound, SupplierPriceNotFound

logger = logging.getLogger(__name__)


class PreferredPriceManager:
    """Owns the one-preferred-price-per-product invariant."""

    def __init__(self, store: CatalogStore) -> None:
        self.store = store

    def set_preferred(self, product_id: str, price_id: str) -> SupplierPrice:
        """Make price_id the only preferred price of product_id.

        Idempotent: repeating the call leaves the same end state.

        Args:
            product_id: Product whose prices are updated
            price_id: Price to prefer

        Returns:
            The preferred price as stored

        Raises:
            ProductNotFound: If the product has no prices at all
            SupplierPriceNotFound: If price_id is not a price of the product
        """
        with self.store.transaction(product_id):
            prices = self.store.list_supplier_prices(product_id)
            if not prices:
                raise ProductNotFound(product_id)

            target = next((p for p in prices if p.id == price_id), None)
            if target is None:
                raise SupplierPriceNotFound(product_id, price_id)

            for price in prices:
                if price.id != price_id and price.preferred:
                    self.store.save_supplier_price(price.model_copy(update={"preferred": False}))
                    logger.info(f"Demoted preferred price {price.id} of product {product_id}")

            if not target.preferred:
                target = self.store.save_supplier_price(target.model_copy(update={"preferred": True}))
            return target

    def upsert_supplier_price(self, price: SupplierPrice) -> SupplierPrice:
        """Create or update a price, enforcing the invariant in the same transaction."""
        with self.store.transaction(price.product_id):
            saved = self.store.save_supplier_price(price)
            if saved.preferred:
                return self.set_preferred(saved.product_id, saved.id)
            return saved
