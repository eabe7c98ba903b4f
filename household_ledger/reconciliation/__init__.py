"""
Reconciliation Package

Turns confirmed receipts into ledger rows and reads them back:
- EntityResolver: idempotent get-or-create of stores, brands and units
- CorrectionLearner: remembers user edits to parsed receipt lines
- TaxCalculator: tax-inclusive totals and rate conversions
- PurchaseLedger: the transactional write path
- BudgetAggregator: the unified ledger and monthly summaries
- PurchaseCatalog: brand suggestions and store-wide item corrections
"""

from household_ledger.reconciliation.budget_aggregator import BudgetAggregator
from household_ledger.reconciliation.catalog import (
    BrandSuggestion,
    PurchaseCatalog,
    StoreItemUpdate,
)
from household_ledger.reconciliation.coercion import (
    InvalidAmountError,
    canonical_decimal,
    parse_receipt_date,
    parse_receipt_time,
    read_receipt_date,
)
from household_ledger.reconciliation.correction_learner import (
    CorrectionLearner,
    is_similar,
    normalize_raw_text,
)
from household_ledger.reconciliation.entity_resolver import EntityResolver
from household_ledger.reconciliation.purchase_ledger import PurchaseLedger
from household_ledger.reconciliation.tax import TaxCalculator

__all__ = [
    "BrandSuggestion",
    "BudgetAggregator",
    "CorrectionLearner",
    "EntityResolver",
    "InvalidAmountError",
    "PurchaseCatalog",
    "PurchaseLedger",
    "StoreItemUpdate",
    "TaxCalculator",
    "canonical_decimal",
    "is_similar",
    "normalize_raw_text",
    "parse_receipt_date",
    "parse_receipt_time",
    "read_receipt_date",
]
