"""
Household Ledger - Source Package

Receipt-to-ledger reconciliation for a household planner: parsed receipts
become stores, brands, units, purchases and budget entries, and the budget
read path folds shopping trips back into one ledger.

DESIGN PRINCIPLES:
1. Parser suggests → Human confirms → Ledger reconciles
2. One receipt, one transaction
3. A purchase always has exactly one budget entry
4. Learning never blocks confirmation
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Household Ledger Team"
