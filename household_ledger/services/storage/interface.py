"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Keep reconciliation logic decoupled from SQL
2. Swap SQLite for a server database later
3. Exercise race handling in tests by stubbing single lookups

The interface is intentionally narrow - we're not building a full ORM.
Just the operations the receipt and budget paths need.

Transactions are explicit: `transaction()` opens one unit of work and every
call made inside it (on the same thread) joins it; `savepoint()` nests an
isolated sub-unit that can fail without aborting the outer transaction.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel

from household_ledger.models.audit import AuditEvent
from household_ledger.models.ledger import (
    Brand,
    BudgetEntry,
    BudgetSource,
    CalendarTask,
    EntryType,
    FormatCorrection,
    Purchase,
    Stop,
    Store,
    Tag,
    Trip,
    Unit,
)


class TripPurchase(BaseModel):
    """A purchase together with the trip it belongs to and its store's tax rate."""
    trip_id: UUID
    purchase: Purchase
    store_tax_rate: Optional[Decimal] = None


class LedgerStorageInterface(ABC):
    """
    Abstract interface for ledger storage operations.

    Every lookup is scoped to a household; a row from another household
    is reported exactly like a missing row.
    """

    # -------------------------------------------------------------------------
    # Units of work
    # -------------------------------------------------------------------------

    @abstractmethod
    def transaction(self) -> AbstractContextManager[None]:
        """
        Open a write transaction for the current thread.

        Commits when the block exits normally, rolls back when it raises.

        Raises:
            StorageBusyError: If the database stays locked by other writers
        """
        pass

    @abstractmethod
    def savepoint(self) -> AbstractContextManager[None]:
        """
        Open a nested unit inside the current transaction.

        If the block raises, only the work done inside it is undone and the
        exception propagates. Outside a transaction it behaves like
        `transaction()`.
        """
        pass

    # -------------------------------------------------------------------------
    # Stores
    # -------------------------------------------------------------------------

    @abstractmethod
    def get_store(self, store_id: UUID, household_id: UUID) -> Optional[Store]:
        """Get a store by id, or None if it does not belong to the household."""
        pass

    @abstractmethod
    def find_store(
        self,
        household_id: UUID,
        *,
        store_code: Optional[str] = None,
        name: Optional[str] = None,
    ) -> Optional[Store]:
        """
        Find a store by its natural key (case-insensitive).

        Args:
            household_id: Owning household
            store_code: External store code; takes precedence when given
            name: Store name, used when no store code is given

        Returns:
            The matching store, or None
        """
        pass

    @abstractmethod
    def insert_store(self, store: Store) -> Store:
        """
        Insert a new store.

        Raises:
            DuplicateError: If the household already has a store with this key
        """
        pass

    # -------------------------------------------------------------------------
    # Brands, units, tags, budget sources
    # -------------------------------------------------------------------------

    @abstractmethod
    def find_brand(self, household_id: UUID, name: str) -> Optional[Brand]:
        """Find a brand by name (case-insensitive)."""
        pass

    @abstractmethod
    def insert_brand(self, brand: Brand) -> Brand:
        """
        Insert a new brand.

        Raises:
            DuplicateError: If the household already has a brand with this name
        """
        pass

    @abstractmethod
    def update_brand_defaults(self, brand: Brand) -> Brand:
        """
        Overwrite a brand's default item, unit and tags.

        Raises:
            NotFoundError: If the brand does not exist
        """
        pass

    @abstractmethod
    def find_unit(self, household_id: UUID, name: str) -> Optional[Unit]:
        """Find a unit by name (case-insensitive)."""
        pass

    @abstractmethod
    def insert_unit(self, unit: Unit) -> Unit:
        """
        Insert a new unit.

        Raises:
            DuplicateError: If the household already has a unit with this name
        """
        pass

    @abstractmethod
    def insert_tag(self, tag: Tag) -> Tag:
        """Insert a new tag."""
        pass

    @abstractmethod
    def get_tags(self, household_id: UUID, tag_ids: list[UUID]) -> list[Tag]:
        """
        Load tags by id.

        Raises:
            NotFoundError: If any id is not a tag of the household
        """
        pass

    @abstractmethod
    def find_budget_source(
        self,
        household_id: UUID,
        name: str,
        entry_type: EntryType,
    ) -> Optional[BudgetSource]:
        """Find a budget source by exact name and type."""
        pass

    @abstractmethod
    def insert_budget_source(self, source: BudgetSource) -> BudgetSource:
        """
        Insert a new budget source.

        Raises:
            DuplicateError: If a source with this name and type exists
        """
        pass

    # -------------------------------------------------------------------------
    # Trips, stops, calendar tasks
    # -------------------------------------------------------------------------

    @abstractmethod
    def insert_trip(self, trip: Trip) -> Trip:
        """Insert a new trip."""
        pass

    @abstractmethod
    def get_trip(self, trip_id: UUID, household_id: UUID) -> Optional[Trip]:
        """Get a trip by id, or None if it does not belong to the household."""
        pass

    @abstractmethod
    def update_trip_start(self, trip_id: UUID, trip_start: datetime) -> None:
        """Move a trip's start timestamp."""
        pass

    @abstractmethod
    def next_stop_position(self, trip_id: UUID) -> int:
        """Position the next stop of a trip takes (1 for an empty trip)."""
        pass

    @abstractmethod
    def insert_stop(self, stop: Stop) -> Stop:
        """Insert a new stop."""
        pass

    @abstractmethod
    def get_stops(self, stop_ids: list[UUID]) -> dict[UUID, Stop]:
        """Load stops by id."""
        pass

    @abstractmethod
    def insert_task(self, task: CalendarTask) -> CalendarTask:
        """Insert a calendar task."""
        pass

    @abstractmethod
    def list_trip_tasks(self, trip_id: UUID) -> list[CalendarTask]:
        """Calendar tasks linked to a trip."""
        pass

    @abstractmethod
    def redate_trip_tasks(self, trip_id: UUID, new_date: date) -> int:
        """
        Move every calendar task linked to a trip to a new date.

        Returns:
            Number of tasks updated
        """
        pass

    # -------------------------------------------------------------------------
    # Budget entries
    # -------------------------------------------------------------------------

    @abstractmethod
    def insert_budget_entry(self, entry: BudgetEntry) -> BudgetEntry:
        """
        Insert a budget entry and its tag links.

        Raises:
            StorageError: If a constraint rejects the row
        """
        pass

    @abstractmethod
    def get_budget_entry(self, entry_id: UUID, household_id: UUID) -> Optional[BudgetEntry]:
        """Get a budget entry by id."""
        pass

    @abstractmethod
    def delete_budget_entry(self, entry_id: UUID, household_id: UUID) -> bool:
        """
        Delete a budget entry.

        Returns:
            True if a row was deleted
        """
        pass

    @abstractmethod
    def redate_trip_entries(self, trip_id: UUID, new_date: date) -> int:
        """
        Move the budget entries of every purchase on a trip to a new date.

        Returns:
            Number of entries updated
        """
        pass

    @abstractmethod
    def list_budget_entries(
        self,
        household_id: UUID,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        entry_type: Optional[EntryType] = None,
        tag_ids: Optional[list[UUID]] = None,
        exclude_stop_purchases: bool = True,
    ) -> list[BudgetEntry]:
        """
        List budget entries with optional filters, ordered by date.

        Args:
            household_id: Owning household
            date_from: Entries on or after this date
            date_to: Entries on or before this date
            entry_type: Only income or only expense
            tag_ids: Entries carrying at least one of these tags
            exclude_stop_purchases: Skip entries that back a purchase made
                at a stop; those are reported through their stop instead

        Returns:
            Matching entries with their tags
        """
        pass

    # -------------------------------------------------------------------------
    # Purchases
    # -------------------------------------------------------------------------

    @abstractmethod
    def insert_purchase(self, purchase: Purchase) -> Purchase:
        """
        Insert a purchase and its tag links.

        Raises:
            StorageError: If a constraint rejects the row
        """
        pass

    @abstractmethod
    def get_purchase(self, purchase_id: UUID, household_id: UUID) -> Optional[Purchase]:
        """Get a purchase by id."""
        pass

    @abstractmethod
    def get_purchase_for_entry(self, entry_id: UUID) -> Optional[Purchase]:
        """Get the purchase backed by a budget entry, if any."""
        pass

    @abstractmethod
    def delete_purchase(self, purchase_id: UUID, household_id: UUID) -> bool:
        """
        Delete a purchase row only.

        Returns:
            True if a row was deleted
        """
        pass

    @abstractmethod
    def list_stop_purchases(
        self,
        household_id: UUID,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[Purchase]:
        """
        Purchases made at a stop, with tags and entry dates.

        The date range applies to the paired budget entry's date.
        """
        pass

    @abstractmethod
    def list_trip_purchases(
        self,
        household_id: UUID,
        period_start: date,
        period_end: date,
    ) -> list[TripPurchase]:
        """
        Purchases on trips that started within a period.

        Args:
            household_id: Owning household
            period_start: First day of the period
            period_end: Last day of the period

        Returns:
            Each purchase with its trip id and its store's tax rate
        """
        pass

    @abstractmethod
    def find_recent_purchases(
        self,
        household_id: UUID,
        brand: str,
        store_id: Optional[UUID] = None,
        limit: int = 5,
    ) -> list[Purchase]:
        """Most recent purchases whose brand contains `brand` (case-insensitive)."""
        pass

    @abstractmethod
    def get_store_purchase(
        self,
        household_id: UUID,
        store_id: UUID,
        purchase_id: UUID,
    ) -> Optional[Purchase]:
        """Get a purchase only if it was made at a stop at the given store."""
        pass

    @abstractmethod
    def update_purchase_fields(self, purchase_id: UUID, fields: dict[str, Any]) -> None:
        """Set brand, unit and/or price_per_unit on one purchase."""
        pass

    @abstractmethod
    def propagate_store_purchase_field(
        self,
        household_id: UUID,
        store_id: UUID,
        brand: str,
        field: str,
        old_value: Any,
        new_value: Any,
        exclude_purchase_id: UUID,
    ) -> int:
        """
        Apply one field change to matching purchases at a store.

        Matches purchases at `store_id` with brand `brand` whose `field`
        still equals `old_value`.

        Returns:
            Number of purchases updated
        """
        pass

    # -------------------------------------------------------------------------
    # Format corrections
    # -------------------------------------------------------------------------

    @abstractmethod
    def find_format_correction(
        self,
        household_id: UUID,
        raw_text: str,
    ) -> Optional[FormatCorrection]:
        """Get the correction learned for a normalized raw text."""
        pass

    @abstractmethod
    def upsert_format_correction(self, correction: FormatCorrection) -> FormatCorrection:
        """
        Insert or layer a correction onto the existing one.

        Fields left as None keep whatever was learned before.

        Returns:
            The stored correction after the merge
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Args:
            event: The audit event to log

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one confirmation).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


class StorageBusyError(StorageError):
    """The database stayed locked by another writer."""
    pass
