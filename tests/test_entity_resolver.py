"""
Tests for get-or-create of household reference data

Covers idempotence, case-insensitive natural keys, household scoping and
convergence when two writers race to create the same row.
"""

import pytest
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from uuid import uuid4

from household_ledger.models.ledger import GENERIC_BRAND, UNKNOWN_STORE, Brand, EntryType
from household_ledger.models.receipt import ReceiptStoreInput
from household_ledger.reconciliation import EntityResolver
from household_ledger.services.storage import NotFoundError, SQLiteClient, SQLiteLedgerStorage


class TestEnsureStore:
    """Tests for store resolution."""

    def test_creates_then_reuses_by_code(self, resolver, household_id):
        """Test that the store code is the natural key when present."""
        first = resolver.ensure_store(
            ReceiptStoreInput(name="Walmart", store_code="#1234", state="IN"),
            household_id,
        )
        second = resolver.ensure_store(
            ReceiptStoreInput(name="Walmart Supercenter", store_code="#1234"),
            household_id,
        )
        assert second.id == first.id
        assert second.name == "Walmart"

    def test_reuses_by_name_case_insensitive(self, resolver, household_id):
        """Test that a store without a code is keyed by name."""
        first = resolver.ensure_store(ReceiptStoreInput(name="Aldi"), household_id)
        second = resolver.ensure_store(ReceiptStoreInput(name="ALDI"), household_id)
        assert second.id == first.id

    def test_unknown_store_placeholder(self, resolver, household_id):
        """Test that a receipt without store data gets the placeholder store."""
        first = resolver.ensure_store(None, household_id)
        second = resolver.ensure_store(ReceiptStoreInput(address="12 Main St"), household_id)
        assert first.name == UNKNOWN_STORE
        assert second.id == first.id

    def test_explicit_id(self, resolver, household_id):
        """Test that an explicit store id resolves to that store."""
        store = resolver.ensure_store(ReceiptStoreInput(name="Meijer"), household_id)
        found = resolver.ensure_store(ReceiptStoreInput(id=store.id), household_id)
        assert found.id == store.id

    def test_explicit_id_from_other_household(self, resolver, household_id, other_household_id):
        """Test that another household's store id is not found."""
        store = resolver.ensure_store(ReceiptStoreInput(name="Meijer"), other_household_id)
        with pytest.raises(NotFoundError, match="Store not found"):
            resolver.ensure_store(ReceiptStoreInput(id=store.id), household_id)

    def test_explicit_id_missing(self, resolver, household_id):
        """Test that an unknown store id raises NotFoundError."""
        with pytest.raises(NotFoundError):
            resolver.ensure_store(ReceiptStoreInput(id=uuid4()), household_id)

    def test_tax_rate_normalized(self, resolver, household_id):
        """Test that a percent rate is stored as a fraction."""
        store = resolver.ensure_store(ReceiptStoreInput(name="Kroger", tax_rate="8.25"), household_id)
        assert store.tax_rate == Decimal("0.0825")

    def test_state_default_rate(self, resolver, household_id):
        """Test the state fallback for a new store without a rate."""
        store = resolver.ensure_store(ReceiptStoreInput(name="Kroger", state="IN"), household_id)
        assert store.tax_rate == Decimal("0.07")

    def test_found_store_is_not_updated(self, resolver, household_id):
        """Test that resolving an existing store leaves it unchanged."""
        resolver.ensure_store(ReceiptStoreInput(name="Kroger", tax_rate="0.05"), household_id)
        again = resolver.ensure_store(ReceiptStoreInput(name="Kroger", tax_rate="0.09"), household_id)
        assert again.tax_rate == Decimal("0.05")

    def test_stores_are_household_scoped(self, resolver, household_id, other_household_id):
        """Test that the same name in two households makes two stores."""
        mine = resolver.ensure_store(ReceiptStoreInput(name="Target"), household_id)
        theirs = resolver.ensure_store(ReceiptStoreInput(name="Target"), other_household_id)
        assert mine.id != theirs.id


class TestEnsureBrandAndUnit:
    """Tests for brand and unit resolution."""

    def test_brand_idempotent(self, resolver, household_id):
        """Test that a brand is created once."""
        first = resolver.ensure_brand("Great Value", household_id)
        second = resolver.ensure_brand("great value", household_id)
        assert second.id == first.id
        assert second.name == "Great Value"

    def test_blank_brand_is_generic(self, resolver, household_id):
        """Test that a blank brand resolves to Generic."""
        assert resolver.ensure_brand("  ", household_id).name == GENERIC_BRAND
        assert resolver.ensure_brand(None, household_id).name == GENERIC_BRAND

    def test_unit(self, resolver, household_id):
        """Test unit resolution and the blank case."""
        unit = resolver.ensure_unit("oz", household_id)
        assert resolver.ensure_unit("OZ", household_id).id == unit.id
        assert resolver.ensure_unit("", household_id) is None

    def test_expense_source(self, resolver, storage, household_id):
        """Test that the per-store expense source is created once."""
        first = resolver.ensure_expense_source("Walmart", household_id)
        second = resolver.ensure_expense_source("Walmart", household_id)
        assert second.id == first.id
        assert storage.find_budget_source(household_id, "Walmart", EntryType.EXPENSE).id == first.id


class TestConcurrentCreation:
    """Tests for create races converging on one row."""

    def test_lost_race_returns_winner(self, resolver, storage, household_id, monkeypatch):
        """Test that a duplicate insert re-reads the row another writer created."""
        winner = storage.insert_brand(Brand(household_id=household_id, name="Kirkland"))

        real_find = storage.find_brand
        calls = []

        def stale_find(hid, name):
            calls.append(name)
            # The first lookup runs before the other writer committed
            if len(calls) == 1:
                return None
            return real_find(hid, name)

        monkeypatch.setattr(storage, "find_brand", stale_find)

        brand = resolver.ensure_brand("Kirkland", household_id)
        assert brand.id == winner.id
        assert len(calls) == 2

    def test_lost_race_inside_transaction(self, resolver, storage, household_id, monkeypatch):
        """Test that a lost race does not abort the surrounding transaction."""
        existing = resolver.ensure_unit("lb", household_id)

        real_find = storage.find_unit
        state = {"first": True}

        def stale_find(hid, name):
            if state["first"]:
                state["first"] = False
                return None
            return real_find(hid, name)

        monkeypatch.setattr(storage, "find_unit", stale_find)

        with storage.transaction():
            unit = resolver.ensure_unit("LB", household_id)
            brand = resolver.ensure_brand("Dole", household_id)

        assert unit.id == existing.id
        assert storage.find_brand(household_id, "Dole").id == brand.id

    def test_parallel_writers_converge(self, db_path, household_id):
        """Test that parallel get-or-create calls agree on one brand."""
        storage = SQLiteLedgerStorage(SQLiteClient(db_path))
        resolver = EntityResolver(storage)

        def create(_):
            with storage.transaction():
                return resolver.ensure_brand("Kirkland Signature", household_id).id

        with ThreadPoolExecutor(max_workers=6) as pool:
            ids = set(pool.map(create, range(12)))

        assert len(ids) == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
