"""
Main Orchestrator for Household Ledger

This module ties together all the components and defines the
end-to-end flows for:
1. Receipt scan (image → parse → normalize → enrich → review)
2. Receipt confirmation (payload → validate → reconcile → audit)
3. Budget reads (ledger listing, monthly summary)
4. Catalog edits (brand suggestions, store-wide item corrections)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Nothing is written during a scan; only a confirmation writes
- A confirmation payload is validated before any transaction opens
- Every step is audited
"""

from typing import Any, Optional
from uuid import UUID

import structlog

from household_ledger.audit import AuditLogger, create_correlation_id
from household_ledger.models.ledger import LedgerEntry, LedgerFilters, MonthlySummary, Purchase
from household_ledger.models.receipt import (
    InventoryItemUpdate,
    ParsedReceipt,
    ReceiptConfirmation,
    ValidationResult,
)
from household_ledger.reconciliation import (
    BrandSuggestion,
    BudgetAggregator,
    CorrectionLearner,
    EntityResolver,
    PurchaseCatalog,
    PurchaseLedger,
    StoreItemUpdate,
)
from household_ledger.services.parser import (
    ReceiptParseError,
    ReceiptParser,
    ReceiptScanner,
    UnconfiguredReceiptParser,
)
from household_ledger.services.storage import (
    LedgerStorageInterface,
    SQLiteAuditStorage,
    SQLiteClient,
    SQLiteLedgerStorage,
)
from household_ledger.validation import ConfirmationValidator


logger = structlog.get_logger(__name__)


class ConfirmationRejected(Exception):
    """A confirmation payload failed validation; nothing was written."""

    def __init__(self, result: ValidationResult):
        self.result = result
        super().__init__(f"Confirmation rejected with {result.error_count} errors")


class ReceiptFlow:
    """
    Orchestrates the receipt flow.

    Flow:
    1. Scan → Parse the image once, normalize, match household data
    2. Review → The user edits the parsed receipt (outside this service)
    3. Validate → Two-stage validation of the confirmed payload
    4. Confirm → One transaction: store, stop, entries, purchases
    5. Audit → Confirmation, skipped lines, trip re-dating
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        scanner: ReceiptScanner,
        ledger: Optional[PurchaseLedger] = None,
        validator: Optional[ConfirmationValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._scanner = scanner
        self._ledger = ledger or PurchaseLedger(storage)
        self._validator = validator or ConfirmationValidator()
        self._audit_logger = audit_logger or AuditLogger()

    def scan(
        self,
        image: str,
        household_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> ParsedReceipt:
        """
        Parse a receipt image for review.

        Raises:
            ReceiptParseError: If the image could not be parsed
        """
        correlation_id = correlation_id or create_correlation_id()

        try:
            receipt = self._scanner.scan(image, household_id)
        except ReceiptParseError as e:
            self._audit_logger.log_receipt_scan_failed(
                household_id=household_id,
                reason=str(e),
                correlation_id=correlation_id,
            )
            raise

        self._audit_logger.log_receipt_scanned(
            household_id=household_id,
            item_count=len(receipt.items),
            store_name=receipt.store.name,
            correlation_id=correlation_id,
        )
        return receipt

    def confirm(
        self,
        payload: Any,
        user_id: Optional[UUID],
        household_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> ReceiptConfirmation:
        """
        Validate and store a user-confirmed receipt.

        Raises:
            ConfirmationRejected: If the payload failed validation
            NotFoundError: If the store or trip is not in the household
        """
        correlation_id = correlation_id or create_correlation_id()

        result = self._validator.validate(payload)
        if not result.is_valid:
            self._audit_logger.log_validation_failed(
                household_id=household_id,
                issues=[issue.model_dump() for issue in result.issues],
                correlation_id=correlation_id,
                summary=self._validator.get_user_friendly_summary(result),
            )
            raise ConfirmationRejected(result)

        confirmation = self._ledger.confirm_receipt(result.request, user_id, household_id)

        # Validation warnings the ledger did not already report
        extra = [w for w in result.warnings if w not in confirmation.warnings]
        if extra:
            confirmation = confirmation.model_copy(
                update={"warnings": confirmation.warnings + extra}
            )

        if confirmation.trip_rescheduled:
            self._audit_logger.log_trip_rescheduled(
                household_id=household_id,
                trip_id=confirmation.trip_id,
                old_start=confirmation.previous_trip_start,
                new_start=confirmation.new_trip_start,
                correlation_id=correlation_id,
            )

        for skipped in confirmation.skipped:
            self._audit_logger.log_purchase_skipped(
                household_id=household_id,
                index=skipped.index,
                raw_text=skipped.raw_text,
                reason=skipped.reason,
                correlation_id=correlation_id,
            )

        self._audit_logger.log_receipt_confirmed(
            household_id=household_id,
            store_id=confirmation.store.id,
            stop_id=confirmation.stop_id,
            created_count=confirmation.created_count,
            skipped_count=len(confirmation.skipped),
            correlation_id=correlation_id,
        )
        return confirmation

    def delete_purchase(
        self,
        purchase_id: UUID,
        household_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> Purchase:
        """Delete a purchase; its budget entry stays in the ledger."""
        purchase = self._ledger.delete_purchase(purchase_id, household_id)
        self._audit_logger.log_purchase_deleted(
            household_id=household_id,
            purchase_id=purchase.id,
            budget_entry_id=purchase.budget_entry_id,
            correlation_id=correlation_id or create_correlation_id(),
        )
        return purchase


class BudgetFlow:
    """
    Orchestrates ledger reads.

    Reads are not audited.
    """

    def __init__(self, aggregator: BudgetAggregator):
        self._aggregator = aggregator

    def list_entries(self, household_id: UUID, params: dict) -> list[LedgerEntry]:
        """List the ledger; malformed filter values are ignored."""
        raw = {
            "start_date": params.get("start_date"),
            "end_date": params.get("end_date"),
            "type": params.get("type"),
            "tag_ids": params.get("tag_ids"),
        }
        filters = LedgerFilters.model_validate(raw)

        ignored = [
            name for name in ("start_date", "end_date", "type")
            if raw[name] and getattr(filters, name) is None
        ]
        if raw["tag_ids"] and not filters.tag_ids:
            ignored.append("tag_ids")
        if ignored:
            logger.info("ledger_filter_ignored", household_id=str(household_id), fields=ignored)

        return self._aggregator.list_ledger(household_id, filters)

    def monthly_summary(self, household_id: UUID, year: int, month: int) -> MonthlySummary:
        return self._aggregator.monthly_summary(household_id, year, month)


class CatalogFlow:
    """Orchestrates brand suggestions and store item corrections."""

    def __init__(
        self,
        catalog: PurchaseCatalog,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._catalog = catalog
        self._audit_logger = audit_logger or AuditLogger()

    def suggest_for_brand(
        self,
        household_id: UUID,
        brand: str,
        store_id: Optional[UUID] = None,
    ) -> BrandSuggestion:
        return self._catalog.suggest_for_brand(household_id, brand, store_id=store_id)

    def update_store_item(
        self,
        household_id: UUID,
        store_id: UUID,
        purchase_id: UUID,
        update: InventoryItemUpdate,
        correlation_id: Optional[UUID] = None,
    ) -> StoreItemUpdate:
        """Correct a store item, optionally across the store's history."""
        result = self._catalog.update_store_item(household_id, store_id, purchase_id, update)
        if result.changed_fields:
            self._audit_logger.log_inventory_updated(
                household_id=household_id,
                purchase_id=purchase_id,
                fields=result.changed_fields,
                propagated_count=result.propagated_count,
                correlation_id=correlation_id or create_correlation_id(),
            )
        return result


def create_app_components(
    db_path: Optional[str] = None,
    parser: Optional[ReceiptParser] = None,
) -> tuple[ReceiptFlow, BudgetFlow, CatalogFlow, AuditLogger]:
    """
    Factory function to create all application components.

    Args:
        db_path: SQLite database file; defaults to the configured path
        parser: Receipt parser backend; without one, scans fail with a
               readable error

    Returns:
        (receipt_flow, budget_flow, catalog_flow, audit_logger)
    """
    client = SQLiteClient(db_path)
    storage = SQLiteLedgerStorage(client)
    audit_logger = AuditLogger(SQLiteAuditStorage(client))

    resolver = EntityResolver(storage)
    learner = CorrectionLearner(storage)

    receipt_flow = ReceiptFlow(
        storage=storage,
        scanner=ReceiptScanner(parser or UnconfiguredReceiptParser(), storage, learner),
        ledger=PurchaseLedger(storage, resolver, learner),
        audit_logger=audit_logger,
    )
    budget_flow = BudgetFlow(BudgetAggregator(storage))
    catalog_flow = CatalogFlow(PurchaseCatalog(storage, resolver), audit_logger)

    logger.info("app_components_created", db_path=client.db_path)
    return receipt_flow, budget_flow, catalog_flow, audit_logger
