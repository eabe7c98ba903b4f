"""
Parsed Receipt Normalization

Cleans up what the parser returned before the user sees it:
- ALL-CAPS receipt text becomes Title Case ("CHICKEN BREAST" -> "Chicken Breast")
- Missing quantities become 1, missing taxable flags become False
- Repeated lines for the same brand and item are merged into one

Unreadable numbers are dropped to None here; the user fixes them on the
review screen and the confirmation path validates them again.
"""

from collections import OrderedDict
from decimal import Decimal
from typing import Any, Optional

import structlog

from household_ledger.models.receipt import (
    ParsedItem,
    ParsedReceipt,
    ParsedStore,
    TransactionInput,
)
from household_ledger.reconciliation.coercion import InvalidAmountError, canonical_decimal


logger = structlog.get_logger(__name__)

# Acronyms that stay uppercase in Title Case
ACRONYMS = frozenset({"TV", "DVD", "USB", "PC", "AC", "DC", "LED", "LCD", "HD", "SD", "AM", "PM"})


def _format_word(word: str) -> str:
    upper = word.upper()
    if upper in ACRONYMS:
        return upper
    if word == upper and len(word) > 1:
        return word.capitalize()
    # Mixed case is left alone
    return word


def to_title_case(text: Optional[str]) -> str:
    """
    Title-case ALL-CAPS words.

    Examples:
        to_title_case("GV WHOLE MILK")  -> "Gv Whole Milk"
        to_title_case("SAMSUNG LED TV") -> "Samsung LED TV"
        to_title_case("iPhone case")    -> "iPhone case"
    """
    if not text:
        return ""
    return " ".join(_format_word(word) for word in text.split())


def _lenient_decimal(value: Any) -> Optional[Decimal]:
    try:
        canonical = canonical_decimal(value)
    except InvalidAmountError:
        return None
    return Decimal(canonical) if canonical is not None else None


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _normalize_item(raw: dict) -> ParsedItem:
    quantity = _lenient_decimal(raw.get("quantity"))
    return ParsedItem(
        raw_text=_text(raw.get("raw_text")),
        brand=to_title_case(_text(raw.get("brand"))),
        item=to_title_case(_text(raw.get("item"))),
        quantity=quantity if quantity is not None else Decimal("1"),
        unit=_text(raw.get("unit")),
        unit_quantity=_lenient_decimal(raw.get("unit_quantity")),
        unit_price=_lenient_decimal(raw.get("unit_price")),
        total_price=_lenient_decimal(raw.get("total_price")),
        taxable=bool(raw.get("taxable") or False),
        tax_amount=_lenient_decimal(raw.get("tax_amount")),
        store_code=_text(raw.get("store_code")),
    )


def _merge_group(items: list[ParsedItem]) -> ParsedItem:
    if len(items) == 1:
        return items[0]

    base = items[0]
    total_tax = sum((i.tax_amount or Decimal("0") for i in items), Decimal("0"))
    raw_texts = [i.raw_text for i in items if i.raw_text]

    return base.model_copy(update={
        "quantity": sum((i.quantity for i in items), Decimal("0")),
        "total_price": sum((i.total_price or Decimal("0") for i in items), Decimal("0")),
        "tax_amount": total_tax if total_tax > 0 else None,
        "raw_text": " | ".join(raw_texts) if raw_texts else base.raw_text,
    })


def combine_duplicate_items(items: list[ParsedItem]) -> list[ParsedItem]:
    """
    Merge lines that share a brand and item (case-insensitive).

    Quantities, totals and per-line tax are summed; raw texts are joined
    with " | ". Groups keep the position of their first line.
    """
    groups: "OrderedDict[tuple[str, str], list[ParsedItem]]" = OrderedDict()
    for item in items:
        key = (item.brand.lower(), item.item.lower())
        groups.setdefault(key, []).append(item)

    combined = [_merge_group(group) for group in groups.values()]
    if len(combined) != len(items):
        logger.info(
            "duplicate_items_combined",
            item_count=len(items),
            combined_count=len(combined),
        )
    return combined


def normalize_parsed_receipt(raw: dict) -> ParsedReceipt:
    """Turn a raw parser dict into a ParsedReceipt."""
    store = raw.get("store") or {}
    transaction = raw.get("transaction") or {}
    items = [_normalize_item(item) for item in raw.get("items") or [] if isinstance(item, dict)]

    return ParsedReceipt(
        store=ParsedStore(
            name=_text(store.get("name")),
            address=_text(store.get("address")),
            city=_text(store.get("city")),
            state=_text(store.get("state")),
            store_code=_text(store.get("store_code")),
            phone=_text(store.get("phone")),
        ),
        transaction=TransactionInput(
            date=_text(transaction.get("date")),
            time=_text(transaction.get("time")),
            subtotal=_text(transaction.get("subtotal")),
            tax=_text(transaction.get("tax")),
            total=_text(transaction.get("total")),
            payment_method=_text(transaction.get("payment_method")),
        ),
        items=combine_duplicate_items(items),
    )
