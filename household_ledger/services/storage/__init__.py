"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Currently implements SQLite as the backend, but designed to be swappable.
"""

from household_ledger.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    LedgerStorageInterface,
    NotFoundError,
    StorageBusyError,
    StorageError,
    TripPurchase,
)
from household_ledger.services.storage.sqlite import (
    SQLiteAuditStorage,
    SQLiteClient,
    SQLiteLedgerStorage,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "LedgerStorageInterface",
    "TripPurchase",
    # Implementations
    "SQLiteAuditStorage",
    "SQLiteClient",
    "SQLiteLedgerStorage",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageBusyError",
    "StorageError",
]
