"""
Purchase Catalog

Helpers that work on purchase history rather than on a single receipt:
pre-filling a new purchase from a brand, and correcting an item a store
sells across every past receipt at once.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog
from pydantic import BaseModel, Field

from household_ledger.models.ledger import Brand, Purchase
from household_ledger.models.receipt import InventoryItemUpdate
from household_ledger.reconciliation.entity_resolver import EntityResolver
from household_ledger.services.storage import LedgerStorageInterface, NotFoundError


logger = structlog.get_logger(__name__)


class BrandSuggestion(BaseModel):
    """Pre-fill data for a new purchase of a brand."""
    brand: Optional[Brand] = None
    recent_purchases: list[Purchase] = Field(default_factory=list)


class StoreItemUpdate(BaseModel):
    """Outcome of correcting one store item."""
    purchase: Purchase
    changed_fields: list[str] = Field(default_factory=list)
    propagated_count: int = 0


class PurchaseCatalog:
    """Brand suggestions and store-wide item corrections."""

    def __init__(
        self,
        storage: LedgerStorageInterface,
        resolver: Optional[EntityResolver] = None,
    ):
        self._storage = storage
        self._resolver = resolver or EntityResolver(storage)

    def suggest_for_brand(
        self,
        household_id: UUID,
        brand: str,
        store_id: Optional[UUID] = None,
        limit: int = 5,
    ) -> BrandSuggestion:
        """
        The brand's defaults and its most recent purchases.

        Args:
            household_id: Owning household
            brand: Brand text; purchases match when their brand contains it
            store_id: Only purchases made at this store
            limit: Maximum number of purchases returned
        """
        brand = brand.strip()
        if not brand:
            return BrandSuggestion()

        return BrandSuggestion(
            brand=self._storage.find_brand(household_id, brand),
            recent_purchases=self._storage.find_recent_purchases(
                household_id, brand, store_id=store_id, limit=limit,
            ),
        )

    def update_store_item(
        self,
        household_id: UUID,
        store_id: UUID,
        purchase_id: UUID,
        update: InventoryItemUpdate,
    ) -> StoreItemUpdate:
        """
        Correct brand, unit or unit price of an item bought at a store.

        With `propagate`, each changed field is also applied to every other
        purchase at the store that has the same original brand and still
        holds the old value. Fields that were empty before are not
        propagated.

        Raises:
            NotFoundError: If the purchase was not made at this store
        """
        with self._storage.transaction():
            purchase = self._storage.get_store_purchase(household_id, store_id, purchase_id)
            if purchase is None:
                raise NotFoundError("Store item not found")

            changes = self._resolve_names(update.changed_fields, household_id)
            changes = {
                name: value
                for name, value in changes.items()
                if getattr(purchase, name) != value
            }
            if not changes:
                return StoreItemUpdate(purchase=purchase)
            if "price_per_unit" in changes and purchase.price_per_count is not None:
                raise ValueError("This item is priced per count, not per unit")

            self._storage.update_purchase_fields(purchase.id, changes)

            propagated = 0
            if update.propagate:
                # Brand is the match key, so it moves last
                for name in sorted(changes, key=lambda n: n == "brand"):
                    new_value = changes[name]
                    old_value = getattr(purchase, name)
                    if old_value is None:
                        continue
                    propagated += self._storage.propagate_store_purchase_field(
                        household_id=household_id,
                        store_id=store_id,
                        brand=purchase.brand,
                        field=name,
                        old_value=old_value,
                        new_value=new_value,
                        exclude_purchase_id=purchase.id,
                    )

            updated = self._storage.get_purchase(purchase.id, household_id)

        logger.info(
            "store_item_updated",
            purchase_id=str(purchase_id),
            store_id=str(store_id),
            fields=sorted(changes),
            propagated_count=propagated,
        )
        return StoreItemUpdate(
            purchase=updated,
            changed_fields=sorted(changes),
            propagated_count=propagated,
        )

    def _resolve_names(self, changes: dict, household_id: UUID) -> dict:
        """Swap typed brand and unit names for the household's stored spelling."""
        resolved = dict(changes)
        if "brand" in resolved:
            resolved["brand"] = self._resolver.ensure_brand(resolved["brand"], household_id).name
        if "unit" in resolved:
            unit = self._resolver.ensure_unit(resolved["unit"], household_id)
            resolved["unit"] = unit.name if unit else None
        if "price_per_unit" in resolved:
            resolved["price_per_unit"] = Decimal(resolved["price_per_unit"])
        return resolved

    def upsert_brand_defaults(
        self,
        household_id: UUID,
        name: str,
        default_item: Optional[str] = None,
        default_unit: Optional[str] = None,
        default_tags: Optional[list[str]] = None,
    ) -> Brand:
        """Create the brand if needed and overwrite its defaults."""
        with self._storage.transaction():
            brand = self._resolver.ensure_brand(name, household_id)
            brand = brand.model_copy(update={
                "default_item": default_item,
                "default_unit": default_unit,
                "default_tags": list(default_tags or []),
            })
            return self._storage.update_brand_defaults(brand)
