"""Receipt parsing services package."""

from household_ledger.services.parser.interface import (
    ReceiptParseError,
    ReceiptParser,
    UnconfiguredReceiptParser,
)
from household_ledger.services.parser.normalize import (
    combine_duplicate_items,
    normalize_parsed_receipt,
    to_title_case,
)
from household_ledger.services.parser.scanner import ReceiptScanner

__all__ = [
    "ReceiptParseError",
    "ReceiptParser",
    "ReceiptScanner",
    "UnconfiguredReceiptParser",
    "combine_duplicate_items",
    "normalize_parsed_receipt",
    "to_title_case",
]
