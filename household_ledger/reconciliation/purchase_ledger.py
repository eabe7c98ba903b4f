"""
Purchase Ledger

The write path of the receipt flow. Confirming a receipt turns every
line item into a Purchase and its paired expense BudgetEntry, tied to the
store visit (Stop) and, optionally, to a shopping Trip.

DESIGN DECISION: One receipt is one transaction, with one savepoint per
line item. A line that cannot be stored (bad number, unknown tag,
constraint violation) is rolled back on its own, logged and reported in
`skipped`; its siblings are still saved. Anything that fails outside a
line item (store, trip, stop) rolls the whole receipt back.

Brands, units and learned corrections are only touched after a line was
stored, so a rejected line never leaves reference rows behind.
"""

from datetime import date, datetime, time
from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog

from household_ledger.models.ledger import (
    GENERIC_BRAND,
    BudgetEntry,
    BudgetSource,
    EntryType,
    Purchase,
    Stop,
    Store,
    Trip,
)
from household_ledger.models.receipt import (
    ConfirmedPurchase,
    ConfirmReceiptRequest,
    ReceiptConfirmation,
    ReceiptItemInput,
    SkippedItem,
)
from household_ledger.reconciliation.coercion import (
    canonical_decimal,
    parse_receipt_date,
    parse_receipt_time,
    read_receipt_date,
)
from household_ledger.reconciliation.correction_learner import CorrectionLearner
from household_ledger.reconciliation.entity_resolver import EntityResolver
from household_ledger.reconciliation.tax import TaxCalculator
from household_ledger.services.storage import (
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
)


logger = structlog.get_logger(__name__)


def _decimal(value) -> Optional[Decimal]:
    canonical = canonical_decimal(value)
    return Decimal(canonical) if canonical is not None else None


class PurchaseLedger:
    """
    Confirms receipts into the ledger and deletes what they created.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        resolver: Optional[EntityResolver] = None,
        learner: Optional[CorrectionLearner] = None,
    ):
        self._storage = storage
        self._resolver = resolver or EntityResolver(storage)
        self._learner = learner or CorrectionLearner(storage)

    # =========================================================================
    # CONFIRMATION
    # =========================================================================

    def confirm_receipt(
        self,
        request: ConfirmReceiptRequest,
        user_id: Optional[UUID],
        household_id: UUID,
    ) -> ReceiptConfirmation:
        """
        Store every line of a confirmed receipt.

        Args:
            request: The user-reviewed receipt
            user_id: User confirming the receipt
            household_id: Owning household

        Returns:
            The store, the new stop (if a trip was given), the created
            purchases and the lines that were skipped

        Raises:
            NotFoundError: If the store id or trip id is not in the household
            StorageBusyError: If the database stayed locked
        """
        warnings = []
        receipt_date, date_warning = parse_receipt_date(request.transaction.date)
        arrival, time_warning = parse_receipt_time(request.transaction.time)
        warnings.extend(w for w in (date_warning, time_warning) if w)

        with self._storage.transaction():
            store = self._resolver.ensure_store(request.store, household_id)

            stop = None
            previous_start = new_start = None
            if request.trip_id is not None:
                trip = self._storage.get_trip(request.trip_id, household_id)
                if trip is None:
                    raise NotFoundError("Trip not found")
                stop = self._add_stop(trip, store, arrival)
                # A fallback date must not move the trip
                if read_receipt_date(request.transaction.date) is not None:
                    previous_start, new_start = self._reconcile_trip_date(trip, receipt_date, arrival)

            source = self._resolver.ensure_expense_source(store.name, household_id, user_id)

            purchases = []
            skipped = []
            for index, item in enumerate(request.items):
                try:
                    with self._storage.savepoint():
                        purchase = self._insert_item(
                            item, store, stop, source, receipt_date, user_id, household_id,
                        )
                except (ValueError, StorageError) as e:
                    logger.warning(
                        "purchase_skipped",
                        household_id=str(household_id),
                        index=index,
                        raw_text=item.raw_text,
                        error=str(e),
                    )
                    skipped.append(SkippedItem(index=index, raw_text=item.raw_text, reason=str(e)))
                    continue

                self._resolver.ensure_brand(purchase.brand, household_id)
                self._resolver.ensure_unit(purchase.unit, household_id)
                self._learner.record_if_edited(item, household_id)
                purchases.append(ConfirmedPurchase.from_purchase(purchase))

        logger.info(
            "receipt_confirmed",
            household_id=str(household_id),
            store_id=str(store.id),
            stop_id=str(stop.id) if stop else None,
            created_count=len(purchases),
            skipped_count=len(skipped),
        )

        return ReceiptConfirmation(
            store=store,
            stop_id=stop.id if stop else None,
            purchases=purchases,
            skipped=skipped,
            warnings=warnings,
            trip_id=request.trip_id if new_start else None,
            previous_trip_start=previous_start,
            new_trip_start=new_start,
        )

    def _add_stop(self, trip: Trip, store: Store, arrival: time) -> Stop:
        return self._storage.insert_stop(Stop(
            trip_id=trip.id,
            store_id=store.id,
            store_name=store.name,
            store_address=store.address,
            position=self._storage.next_stop_position(trip.id),
            time_arrived=arrival,
            time_left=arrival,
        ))

    def _reconcile_trip_date(
        self,
        trip: Trip,
        receipt_date: date,
        arrival: time,
    ) -> tuple[Optional[datetime], Optional[datetime]]:
        """
        Move a trip to the date printed on its receipt.

        The receipt is the source of truth; a trip's start is often a
        placeholder entered before the shopping happened. The time of day
        is kept, linked calendar tasks and the entries of the trip's
        earlier purchases follow the new date.

        Returns:
            (previous start, new start), or (None, None) if nothing moved
        """
        previous = trip.trip_start
        if previous is not None and previous.date() == receipt_date:
            return None, None

        if previous is not None:
            new_start = datetime.combine(receipt_date, previous.timetz())
        else:
            new_start = datetime.combine(receipt_date, arrival)

        self._storage.update_trip_start(trip.id, new_start)
        tasks = self._storage.redate_trip_tasks(trip.id, receipt_date)
        entries = self._storage.redate_trip_entries(trip.id, receipt_date)
        logger.info(
            "trip_rescheduled",
            trip_id=str(trip.id),
            previous_start=previous.isoformat() if previous else None,
            new_start=new_start.isoformat(),
            tasks_moved=tasks,
            entries_moved=entries,
        )
        return previous, new_start

    def _insert_item(
        self,
        item: ReceiptItemInput,
        store: Store,
        stop: Optional[Stop],
        source: BudgetSource,
        receipt_date: date,
        user_id: Optional[UUID],
        household_id: UUID,
    ) -> Purchase:
        """Insert one line as an entry plus purchase. Raises ValueError or StorageError."""
        quantity = _decimal(item.quantity)
        unit_quantity = _decimal(item.unit_quantity)
        unit_price = _decimal(item.unit_price)
        total = _decimal(item.total_price)
        # Read so an unreadable per-line tax fails this line like any other number
        _decimal(item.tax_amount)
        tax_rate = TaxCalculator.to_stored_rate(item.tax_rate)

        tags = self._storage.get_tags(household_id, item.tag_ids)
        raw_text = (item.raw_text or "").strip() or None

        entry = self._storage.insert_budget_entry(BudgetEntry(
            household_id=household_id,
            user_id=user_id,
            date=receipt_date,
            amount=total if total is not None else Decimal("0"),
            type=EntryType.EXPENSE,
            notes=raw_text,
            source_id=source.id,
            tags=tags,
        ))

        per_unit = unit_quantity is not None
        return self._storage.insert_purchase(Purchase(
            household_id=household_id,
            budget_entry_id=entry.id,
            stop_id=stop.id if stop else None,
            brand=(item.brand or "").strip() or GENERIC_BRAND,
            item=(item.item or "").strip() or raw_text or "",
            unit=(item.unit or "").strip() or None,
            count=quantity if quantity is not None else Decimal("1"),
            price_per_count=None if per_unit else unit_price,
            units=unit_quantity,
            price_per_unit=unit_price if per_unit else None,
            taxable=item.taxable,
            tax_rate=tax_rate,
            total_price=total if total is not None else Decimal("0"),
            store_code=(item.store_code or "").strip() or None,
            item_name=raw_text,
            tags=tags,
            entry_date=receipt_date,
        ))

    # =========================================================================
    # DELETION
    # =========================================================================

    def delete_purchase(self, purchase_id: UUID, household_id: UUID) -> Purchase:
        """
        Delete a purchase, keeping its budget entry.

        The entry stays in the ledger as a standalone expense so the
        household's spending history does not change.

        Raises:
            NotFoundError: If the purchase is not in the household
        """
        with self._storage.transaction():
            purchase = self._storage.get_purchase(purchase_id, household_id)
            if purchase is None:
                raise NotFoundError("Purchase not found")
            self._storage.delete_purchase(purchase_id, household_id)

        logger.info(
            "purchase_deleted",
            purchase_id=str(purchase_id),
            budget_entry_id=str(purchase.budget_entry_id),
        )
        return purchase

    def delete_budget_entry(self, entry_id: UUID, household_id: UUID) -> Optional[Purchase]:
        """
        Delete a budget entry and the purchase it backs, if any.

        Returns:
            The purchase deleted along with the entry, or None

        Raises:
            NotFoundError: If the entry is not in the household
        """
        with self._storage.transaction():
            entry = self._storage.get_budget_entry(entry_id, household_id)
            if entry is None:
                raise NotFoundError("Budget entry not found")
            purchase = self._storage.get_purchase_for_entry(entry_id)
            if purchase is not None:
                self._storage.delete_purchase(purchase.id, household_id)
            self._storage.delete_budget_entry(entry_id, household_id)

        logger.info(
            "budget_entry_deleted",
            entry_id=str(entry_id),
            purchase_id=str(purchase.id) if purchase else None,
        )
        return purchase
