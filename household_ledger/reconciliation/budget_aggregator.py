"""
Budget Aggregator

The read path of the ledger. Two kinds of rows make up a household's
ledger:
1. Regular budget entries (manual entries, and purchases made without a trip)
2. Purchases made at a stop, which are folded into one entry per stop

DESIGN DECISION: Every purchase owns a budget entry, so summing entries
and purchases naively would count stop purchases twice. Entries that back
a stop purchase are excluded from the regular side; stop purchases are
reported only through their stop.
"""

from calendar import monthrange
from collections import OrderedDict
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional
from uuid import UUID

import structlog

from household_ledger.models.ledger import (
    BudgetEntry,
    EntryType,
    LedgerEntry,
    LedgerFilters,
    LedgerStop,
    MonthlySummary,
    Purchase,
    Stop,
    Tag,
)
from household_ledger.reconciliation.tax import TaxCalculator
from household_ledger.services.storage import LedgerStorageInterface


logger = structlog.get_logger(__name__)

ZERO = Decimal("0")


class BudgetAggregator:
    """Builds the unified ledger listing and monthly summaries."""

    def __init__(self, storage: LedgerStorageInterface):
        self._storage = storage

    # =========================================================================
    # LEDGER LISTING
    # =========================================================================

    def list_ledger(
        self,
        household_id: UUID,
        filters: Optional[LedgerFilters] = None,
    ) -> list[LedgerEntry]:
        """
        The household ledger, oldest first.

        Args:
            household_id: Owning household
            filters: Optional date range, type and tag filters. Malformed
                values were already dropped by LedgerFilters.

        Returns:
            Regular entries and one trip entry per stop, sorted by date
        """
        filters = filters or LedgerFilters()

        entries = [
            self._from_budget_entry(entry)
            for entry in self._storage.list_budget_entries(
                household_id,
                date_from=filters.start_date,
                date_to=filters.end_date,
                entry_type=filters.type,
                tag_ids=filters.tag_ids or None,
                exclude_stop_purchases=True,
            )
        ]

        # Trips are always expenses
        if filters.type != EntryType.INCOME:
            trip_entries = self._trip_entries(household_id, filters)
            if filters.tag_ids:
                wanted = set(filters.tag_ids)
                trip_entries = [
                    e for e in trip_entries
                    if wanted.intersection(tag.id for tag in e.tags)
                ]
            entries.extend(trip_entries)

        # Stable sort keeps storage order within a day
        entries.sort(key=lambda e: e.date)

        logger.debug(
            "ledger_listed",
            household_id=str(household_id),
            entry_count=len(entries),
        )
        return entries

    @staticmethod
    def _from_budget_entry(entry: BudgetEntry) -> LedgerEntry:
        return LedgerEntry(
            id=entry.id,
            date=entry.date,
            amount=entry.amount,
            type=entry.type,
            notes=entry.notes,
            source_id=entry.source_id,
            tags=entry.tags,
            is_trip=False,
        )

    def _trip_entries(self, household_id: UUID, filters: LedgerFilters) -> list[LedgerEntry]:
        purchases = self._storage.list_stop_purchases(
            household_id,
            date_from=filters.start_date,
            date_to=filters.end_date,
        )

        by_stop: "OrderedDict[UUID, list[Purchase]]" = OrderedDict()
        for purchase in purchases:
            by_stop.setdefault(purchase.stop_id, []).append(purchase)

        stops = self._storage.get_stops(list(by_stop))
        return [
            self._fold_stop(stops[stop_id], stop_purchases)
            for stop_id, stop_purchases in by_stop.items()
            if stop_id in stops
        ]

    @staticmethod
    def _fold_stop(stop: Stop, purchases: list[Purchase]) -> LedgerEntry:
        """Fold a stop's purchases into one synthetic ledger entry."""
        tags: "OrderedDict[UUID, Tag]" = OrderedDict()
        for purchase in purchases:
            for tag in purchase.tags:
                tags.setdefault(tag.id, tag)

        dates = [p.entry_date for p in purchases if p.entry_date is not None]

        return LedgerEntry(
            id=stop.id,
            date=min(dates),
            amount=sum((p.total_price for p in purchases), ZERO),
            type=EntryType.EXPENSE,
            notes=stop.notes or f"Trip to {stop.store_name or 'Unknown Store'}",
            tags=list(tags.values()),
            is_trip=True,
            stop=LedgerStop(
                id=stop.id,
                trip_id=stop.trip_id,
                store_id=stop.store_id,
                store_name=stop.store_name,
                store_address=stop.store_address,
                position=stop.position,
                time_arrived=stop.time_arrived,
                notes=stop.notes,
                purchases=purchases,
            ),
        )

    # =========================================================================
    # MONTHLY SUMMARY
    # =========================================================================

    def monthly_summary(self, household_id: UUID, year: int, month: int) -> MonthlySummary:
        """
        Income, expense, net and savings rate for one calendar month.

        Trip purchases are re-priced with tax here; regular entries are
        taken at face value.
        """
        first = date(year, month, 1)
        last = date(year, month, monthrange(year, month)[1])

        regular = self._storage.list_budget_entries(
            household_id,
            date_from=first,
            date_to=last,
            exclude_stop_purchases=True,
        )
        income = sum((e.amount for e in regular if e.type == EntryType.INCOME), ZERO)
        expense = sum((e.amount for e in regular if e.type == EntryType.EXPENSE), ZERO)

        trip_ids = set()
        trip_expense = ZERO
        for row in self._storage.list_trip_purchases(household_id, first, last):
            trip_ids.add(row.trip_id)
            purchase = row.purchase
            trip_expense += TaxCalculator.purchase_total(
                purchase.total_price,
                purchase.taxable,
                purchase.tax_rate,
                row.store_tax_rate,
            )

        income = TaxCalculator.quantize_money(income)
        expense = TaxCalculator.quantize_money(expense + trip_expense)
        net = income - expense

        if income > 0:
            savings_rate = (net / income * 100).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        else:
            savings_rate = ZERO

        return MonthlySummary(
            year=year,
            month=month,
            income=income,
            expense=expense,
            net=net,
            savings_rate=savings_rate,
            entry_count=len(regular) + len(trip_ids),
        )
