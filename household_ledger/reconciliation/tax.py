"""
Tax Calculator

Purchases keep the pre-tax line total printed on the receipt. Tax is
applied when the ledger is read, so a store's tax rate can be corrected
later without rewriting historical rows.

DESIGN DECISION: Rates are fractions (0.0825) in new rows, but older rows
and user input carry whole-number percents (8.25). Every read goes through
`as_fraction`, and every write through `to_stored_rate`, so both forms
compute the same total.

Totals are NOT rounded here. Rounding to cents happens once, at the edge
(summaries and edit forms), so `recover_pre_tax` is the exact inverse of
`purchase_total`.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

from household_ledger.models.ledger import Purchase
from household_ledger.reconciliation.coercion import canonical_decimal


CENTS = Decimal("0.01")
HUNDRED = Decimal("100")

# Fallback sales tax for new stores whose receipt shows no rate
STATE_DEFAULT_RATES = {
    "IN": Decimal("0.07"),
    "MI": Decimal("0.06"),
}


class TaxCalculator:
    """Stateless tax arithmetic for purchases."""

    @staticmethod
    def as_fraction(rate: Optional[Decimal]) -> Decimal:
        """Read a persisted rate as a fraction; values >= 1 are percents."""
        if rate is None:
            return Decimal("0")
        rate = Decimal(rate)
        return rate / HUNDRED if rate >= 1 else rate

    @staticmethod
    def as_percent(rate: Optional[Decimal]) -> Optional[Decimal]:
        """Display form of a persisted rate (0.0825 -> 8.25)."""
        if rate is None:
            return None
        rate = Decimal(rate)
        percent = rate * HUNDRED if rate < 1 else rate
        return percent.normalize()

    @staticmethod
    def percent_to_fraction(percent: Union[Decimal, int, str]) -> Decimal:
        """Convert a user-typed percent (8.25) to a stored fraction (0.0825)."""
        return (Decimal(str(percent)) / HUNDRED).normalize()

    @staticmethod
    def to_stored_rate(value: Optional[Union[Decimal, int, float, str]]) -> Optional[Decimal]:
        """
        Normalize a rate of unknown form for writing.

        Values below 1 are already fractions; anything else is a percent.
        """
        canonical = canonical_decimal(value)
        if canonical is None:
            return None
        rate = Decimal(canonical)
        if rate < 0:
            raise ValueError(f"Tax rate cannot be negative: {value}")
        if rate >= 1:
            rate = rate / HUNDRED
        return rate.normalize()

    @classmethod
    def effective_rate(
        cls,
        tax_rate: Optional[Decimal] = None,
        store_tax_rate: Optional[Decimal] = None,
    ) -> Decimal:
        """The purchase's own rate, else its store's, else zero."""
        if tax_rate is not None:
            return cls.as_fraction(tax_rate)
        return cls.as_fraction(store_tax_rate)

    @classmethod
    def purchase_total(
        cls,
        pre_tax: Decimal,
        taxable: bool,
        tax_rate: Optional[Decimal] = None,
        store_tax_rate: Optional[Decimal] = None,
    ) -> Decimal:
        """
        Tax-inclusive amount of a purchase.

        Examples:
            purchase_total(Decimal("10.00"), True, Decimal("0.0825")) -> 10.825
            purchase_total(Decimal("10.00"), True, Decimal("8.25"))   -> 10.825
            purchase_total(Decimal("10.00"), False, Decimal("0.0825")) -> 10.00
        """
        pre_tax = Decimal(pre_tax)
        if not taxable:
            return pre_tax
        return pre_tax * (1 + cls.effective_rate(tax_rate, store_tax_rate))

    @classmethod
    def recover_pre_tax(
        cls,
        total: Decimal,
        taxable: bool,
        tax_rate: Optional[Decimal] = None,
        store_tax_rate: Optional[Decimal] = None,
    ) -> Decimal:
        """Inverse of `purchase_total`."""
        total = Decimal(total)
        if not taxable:
            return total
        return total / (1 + cls.effective_rate(tax_rate, store_tax_rate))

    @staticmethod
    def default_rate_for_state(state: Optional[str]) -> Optional[Decimal]:
        if not state:
            return None
        return STATE_DEFAULT_RATES.get(state.strip().upper())

    @staticmethod
    def quantize_money(amount: Decimal) -> Decimal:
        return Decimal(amount).quantize(CENTS, rounding=ROUND_HALF_UP)

    @classmethod
    def edit_prefill(
        cls,
        purchase: Purchase,
        store_tax_rate: Optional[Decimal] = None,
    ) -> dict:
        """
        Form values for editing a purchase.

        The total shown is tax-inclusive; saving the form sends it back
        through `recover_pre_tax` so the stored pre-tax amount is unchanged.
        """
        rate = purchase.tax_rate if purchase.tax_rate is not None else store_tax_rate
        total = cls.purchase_total(
            purchase.total_price,
            purchase.taxable,
            purchase.tax_rate,
            store_tax_rate,
        )
        return {
            "taxable": purchase.taxable,
            "tax_rate_percent": cls.as_percent(rate) if purchase.taxable else None,
            "pre_tax": cls.quantize_money(purchase.total_price),
            "total": cls.quantize_money(total),
        }
