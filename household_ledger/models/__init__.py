"""
Data Models Package

This package contains all Pydantic models used by the Household Ledger.
All data flowing through the reconciliation path must conform to these schemas.
"""

from household_ledger.models.ledger import (
    GENERIC_BRAND,
    UNKNOWN_STORE,
    Brand,
    BudgetEntry,
    BudgetSource,
    CalendarTask,
    EntryType,
    FormatCorrection,
    LedgerEntry,
    LedgerFilters,
    LedgerStop,
    MatchType,
    MonthlySummary,
    Purchase,
    Stop,
    Store,
    Tag,
    Trip,
    Unit,
)
from household_ledger.models.receipt import (
    ConfirmReceiptRequest,
    ConfirmedPurchase,
    InventoryItemUpdate,
    ParsedItem,
    ParsedReceipt,
    ParsedStore,
    ReceiptConfirmation,
    ReceiptItemInput,
    ReceiptStoreInput,
    SkippedItem,
    TransactionInput,
    ValidationIssue,
    ValidationResult,
)
from household_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "GENERIC_BRAND",
    "UNKNOWN_STORE",
    "Brand",
    "BudgetEntry",
    "BudgetSource",
    "CalendarTask",
    "EntryType",
    "FormatCorrection",
    "LedgerEntry",
    "LedgerFilters",
    "LedgerStop",
    "MatchType",
    "MonthlySummary",
    "Purchase",
    "Stop",
    "Store",
    "Tag",
    "Trip",
    "Unit",
    # Receipt models
    "ConfirmReceiptRequest",
    "ConfirmedPurchase",
    "InventoryItemUpdate",
    "ParsedItem",
    "ParsedReceipt",
    "ParsedStore",
    "ReceiptConfirmation",
    "ReceiptItemInput",
    "ReceiptStoreInput",
    "SkippedItem",
    "TransactionInput",
    "ValidationIssue",
    "ValidationResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
