"""Configuration package."""

from household_ledger.config.settings import (
    AppSettings,
    DatabaseSettings,
    ReceiptParserSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "DatabaseSettings",
    "ReceiptParserSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
