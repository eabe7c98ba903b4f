"""Validation package."""

from household_ledger.validation.validator import ConfirmationValidator

__all__ = ["ConfirmationValidator"]
