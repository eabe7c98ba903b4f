"""
Audit Models for Household Ledger

Every significant action in the receipt flow is logged for audit purposes.
This provides:
1. Traceability from a scanned receipt to the ledger rows it produced
2. Debugging information when a line item is dropped
3. A record of automatic changes (trip re-dating, propagated edits)

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from household_ledger.models.ledger import utc_now


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every step in the receipt pipeline has its own event type.
    """
    # Scanning
    RECEIPT_SCANNED = "receipt_scanned"
    RECEIPT_SCAN_FAILED = "receipt_scan_failed"

    # Validation
    VALIDATION_FAILED = "validation_failed"

    # Confirmation
    RECEIPT_CONFIRMED = "receipt_confirmed"
    PURCHASE_SKIPPED = "purchase_skipped"
    TRIP_RESCHEDULED = "trip_rescheduled"

    # Later edits
    INVENTORY_UPDATED = "inventory_updated"
    PURCHASE_DELETED = "purchase_deleted"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Scope
    household_id: Optional[UUID] = Field(
        default=None,
        description="Household the event belongs to"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'purchase', 'trip', 'receipt')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events in one confirmation)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "household_id": str(self.household_id) if self.household_id else None,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_storage_row(self) -> tuple:
        """
        Convert to a row for the audit_events table.

        Columns in order:
        (event_id, timestamp, event_type, severity, household_id, entity_type,
         entity_id, correlation_id, description, details_json, error_message,
         is_user_action)
        """
        return (
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            str(self.household_id) if self.household_id else None,
            self.entity_type,
            str(self.entity_id) if self.entity_id else None,
            str(self.correlation_id) if self.correlation_id else None,
            self.description,
            json.dumps(self.details, default=str) if self.details else None,
            self.error_message,
            int(self.is_user_action),
        )


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.receipt_scanned(household_id, 12, correlation_id)
        event = AuditEventBuilder.purchase_skipped(household_id, 2, "GV MLK", reason, correlation_id)
    """

    @staticmethod
    def receipt_scanned(
        household_id: UUID,
        item_count: int,
        store_name: Optional[str],
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECEIPT_SCANNED,
            household_id=household_id,
            entity_type="receipt",
            correlation_id=correlation_id,
            description=f"Receipt scanned with {item_count} items",
            details={
                "item_count": item_count,
                "store_name": store_name,
            },
            is_user_action=True,
        )

    @staticmethod
    def receipt_scan_failed(
        household_id: UUID,
        reason: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECEIPT_SCAN_FAILED,
            severity=AuditSeverity.WARNING,
            household_id=household_id,
            entity_type="receipt",
            correlation_id=correlation_id,
            description="Receipt could not be parsed",
            error_message=reason,
        )

    @staticmethod
    def validation_failed(
        household_id: UUID,
        issues: list[dict],
        correlation_id: UUID,
        summary: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            household_id=household_id,
            entity_type="receipt",
            correlation_id=correlation_id,
            description=(summary or f"Confirmation rejected with {len(issues)} issues")[:500],
            details={"issues": issues},
        )

    @staticmethod
    def receipt_confirmed(
        household_id: UUID,
        store_id: UUID,
        stop_id: Optional[UUID],
        created_count: int,
        skipped_count: int,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECEIPT_CONFIRMED,
            household_id=household_id,
            entity_type="store",
            entity_id=store_id,
            correlation_id=correlation_id,
            description=f"Receipt confirmed: {created_count} purchases saved",
            details={
                "stop_id": str(stop_id) if stop_id else None,
                "created_count": created_count,
                "skipped_count": skipped_count,
            },
            is_user_action=True,
        )

    @staticmethod
    def purchase_skipped(
        household_id: UUID,
        index: int,
        raw_text: Optional[str],
        reason: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PURCHASE_SKIPPED,
            severity=AuditSeverity.WARNING,
            household_id=household_id,
            entity_type="receipt_item",
            correlation_id=correlation_id,
            description=f"Line item {index + 1} was not saved",
            details={
                "index": index,
                "raw_text": raw_text,
            },
            error_message=reason,
        )

    @staticmethod
    def trip_rescheduled(
        household_id: UUID,
        trip_id: UUID,
        old_start: Optional[datetime],
        new_start: datetime,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRIP_RESCHEDULED,
            household_id=household_id,
            entity_type="trip",
            entity_id=trip_id,
            correlation_id=correlation_id,
            description="Trip start moved to the receipt date",
            details={
                "old_start": old_start.isoformat() if old_start else None,
                "new_start": new_start.isoformat(),
            },
        )

    @staticmethod
    def inventory_updated(
        household_id: UUID,
        purchase_id: UUID,
        fields: list[str],
        propagated_count: int,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVENTORY_UPDATED,
            household_id=household_id,
            entity_type="purchase",
            entity_id=purchase_id,
            correlation_id=correlation_id,
            description=f"Store item updated ({', '.join(fields)})",
            details={
                "fields": fields,
                "propagated_count": propagated_count,
            },
            is_user_action=True,
        )

    @staticmethod
    def purchase_deleted(
        household_id: UUID,
        purchase_id: UUID,
        budget_entry_id: UUID,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PURCHASE_DELETED,
            household_id=household_id,
            entity_type="purchase",
            entity_id=purchase_id,
            correlation_id=correlation_id,
            description="Purchase deleted; its budget entry was kept",
            details={"budget_entry_id": str(budget_entry_id)},
            is_user_action=True,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
