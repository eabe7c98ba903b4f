"""
Audit Logger

DESIGN DECISION: Every significant action in the receipt flow is logged.
This provides:
1. Traceability from a scan to the purchases it produced
2. A record of line items that were dropped and why
3. A history of automatic changes (trip re-dating, propagated edits)

The audit logger:
- Gracefully handles failures (a failed audit write never fails a confirmation)
- Supports correlation IDs to trace related events
"""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

import structlog

from household_ledger.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from household_ledger.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The audit_events table (for persistence)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger()

    def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    def log_receipt_scanned(
        self,
        household_id: UUID,
        item_count: int,
        store_name: Optional[str],
        correlation_id: UUID,
    ) -> None:
        """Log a successful scan."""
        self.log(AuditEventBuilder.receipt_scanned(
            household_id=household_id,
            item_count=item_count,
            store_name=store_name,
            correlation_id=correlation_id,
        ))

    def log_receipt_scan_failed(
        self,
        household_id: UUID,
        reason: str,
        correlation_id: UUID,
    ) -> None:
        self.log(AuditEventBuilder.receipt_scan_failed(
            household_id=household_id,
            reason=reason,
            correlation_id=correlation_id,
        ))

    def log_validation_failed(
        self,
        household_id: UUID,
        issues: list[dict],
        correlation_id: UUID,
        summary: Optional[str] = None,
    ) -> None:
        """Log a rejected confirmation payload."""
        self.log(AuditEventBuilder.validation_failed(
            household_id=household_id,
            issues=issues,
            correlation_id=correlation_id,
            summary=summary,
        ))

    def log_receipt_confirmed(
        self,
        household_id: UUID,
        store_id: UUID,
        stop_id: Optional[UUID],
        created_count: int,
        skipped_count: int,
        correlation_id: UUID,
    ) -> None:
        self.log(AuditEventBuilder.receipt_confirmed(
            household_id=household_id,
            store_id=store_id,
            stop_id=stop_id,
            created_count=created_count,
            skipped_count=skipped_count,
            correlation_id=correlation_id,
        ))

    def log_purchase_skipped(
        self,
        household_id: UUID,
        index: int,
        raw_text: Optional[str],
        reason: str,
        correlation_id: UUID,
    ) -> None:
        """Log a line item that was not saved."""
        self.log(AuditEventBuilder.purchase_skipped(
            household_id=household_id,
            index=index,
            raw_text=raw_text,
            reason=reason,
            correlation_id=correlation_id,
        ))

    def log_trip_rescheduled(
        self,
        household_id: UUID,
        trip_id: UUID,
        old_start: Optional[datetime],
        new_start: datetime,
        correlation_id: UUID,
    ) -> None:
        self.log(AuditEventBuilder.trip_rescheduled(
            household_id=household_id,
            trip_id=trip_id,
            old_start=old_start,
            new_start=new_start,
            correlation_id=correlation_id,
        ))

    def log_inventory_updated(
        self,
        household_id: UUID,
        purchase_id: UUID,
        fields: list[str],
        propagated_count: int,
        correlation_id: UUID,
    ) -> None:
        self.log(AuditEventBuilder.inventory_updated(
            household_id=household_id,
            purchase_id=purchase_id,
            fields=fields,
            propagated_count=propagated_count,
            correlation_id=correlation_id,
        ))

    def log_purchase_deleted(
        self,
        household_id: UUID,
        purchase_id: UUID,
        budget_entry_id: UUID,
        correlation_id: UUID,
    ) -> None:
        self.log(AuditEventBuilder.purchase_deleted(
            household_id=household_id,
            purchase_id=purchase_id,
            budget_entry_id=budget_entry_id,
            correlation_id=correlation_id,
        ))

    def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., a receipt confirmation).
    Pass it through all subsequent operations.
    """
    return uuid4()
