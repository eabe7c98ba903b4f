"""
Entity Resolver

Idempotent get-or-create for the household reference rows a receipt
touches: stores, brands, units and the per-store expense source.

DESIGN DECISION: Races are resolved optimistically. Two confirmations
that both see "no such brand" will both try to insert it; the database's
unique index rejects the second insert and the loser re-reads the row the
winner created. No pre-locking, no duplicate rows.

Found rows are returned unchanged. Updating a brand's defaults or a
store's address is a separate, explicit operation.
"""

from typing import Callable, Optional, TypeVar
from uuid import UUID

import structlog

from household_ledger.models.ledger import (
    GENERIC_BRAND,
    UNKNOWN_STORE,
    Brand,
    BudgetSource,
    EntryType,
    Store,
    Unit,
)
from household_ledger.models.receipt import ReceiptStoreInput
from household_ledger.reconciliation.tax import TaxCalculator
from household_ledger.services.storage import (
    DuplicateError,
    LedgerStorageInterface,
    NotFoundError,
)


logger = structlog.get_logger(__name__)

T = TypeVar("T")


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


class EntityResolver:
    """
    Resolves household reference data by natural key.

    Every method may be called inside an open transaction; the calls join it.
    """

    def __init__(self, storage: LedgerStorageInterface):
        self._storage = storage

    def _get_or_create(
        self,
        lookup: Callable[[], Optional[T]],
        create: Callable[[], T],
        entity: str,
        key: str,
    ) -> T:
        """
        Look up a row, insert it when missing, re-read it when the insert lost a race.
        """
        existing = lookup()
        if existing is not None:
            return existing

        try:
            # A savepoint keeps a rejected insert from aborting the caller's transaction
            with self._storage.savepoint():
                created = create()
        except DuplicateError:
            winner = lookup()
            if winner is None:
                raise
            logger.info("entity_created_concurrently", entity=entity, key=key)
            return winner

        logger.info("entity_created", entity=entity, key=key)
        return created

    # -------------------------------------------------------------------------
    # Stores
    # -------------------------------------------------------------------------

    def ensure_store(
        self,
        params: Optional[ReceiptStoreInput],
        household_id: UUID,
    ) -> Store:
        """
        Resolve the store a receipt was issued by.

        Resolution order:
        1. An explicit store id (must belong to the household)
        2. The external store code, else the store name
        3. The "Unknown Store" placeholder when no store data was sent

        Raises:
            NotFoundError: If an explicit id does not match a household store
        """
        if params is not None and params.id is not None:
            store = self._storage.get_store(params.id, household_id)
            if store is None:
                raise NotFoundError("Store not found")
            return store

        if params is None or params.is_empty:
            params = ReceiptStoreInput(name=UNKNOWN_STORE)

        store_code = _clean(params.store_code)
        name = _clean(params.name) or UNKNOWN_STORE

        def lookup() -> Optional[Store]:
            if store_code:
                return self._storage.find_store(household_id, store_code=store_code)
            return self._storage.find_store(household_id, name=name)

        def create() -> Store:
            tax_rate = TaxCalculator.to_stored_rate(params.tax_rate)
            if tax_rate is None:
                tax_rate = TaxCalculator.default_rate_for_state(params.state)
            return self._storage.insert_store(Store(
                household_id=household_id,
                name=name,
                address=_clean(params.address),
                street=_clean(params.street),
                city=_clean(params.city),
                state=_clean(params.state),
                zip_code=_clean(params.zip_code),
                phone=_clean(params.phone),
                store_code=store_code,
                tax_rate=tax_rate,
            ))

        return self._get_or_create(lookup, create, "store", store_code or name)

    # -------------------------------------------------------------------------
    # Brands and units
    # -------------------------------------------------------------------------

    def ensure_brand(self, name: Optional[str], household_id: UUID) -> Brand:
        """Resolve a brand by name; a blank name means the Generic brand."""
        name = _clean(name) or GENERIC_BRAND
        return self._get_or_create(
            lambda: self._storage.find_brand(household_id, name),
            lambda: self._storage.insert_brand(Brand(household_id=household_id, name=name)),
            "brand",
            name,
        )

    def ensure_unit(self, name: Optional[str], household_id: UUID) -> Optional[Unit]:
        """Resolve a unit by name; a blank name means no unit."""
        name = _clean(name)
        if name is None:
            return None
        return self._get_or_create(
            lambda: self._storage.find_unit(household_id, name),
            lambda: self._storage.insert_unit(Unit(household_id=household_id, name=name)),
            "unit",
            name,
        )

    # -------------------------------------------------------------------------
    # Budget sources
    # -------------------------------------------------------------------------

    def ensure_expense_source(
        self,
        store_name: str,
        household_id: UUID,
        user_id: Optional[UUID] = None,
    ) -> BudgetSource:
        """The expense source named after a store, created on first use."""
        return self._get_or_create(
            lambda: self._storage.find_budget_source(household_id, store_name, EntryType.EXPENSE),
            lambda: self._storage.insert_budget_source(BudgetSource(
                household_id=household_id,
                user_id=user_id,
                name=store_name,
                type=EntryType.EXPENSE,
            )),
            "budget_source",
            store_name,
        )
