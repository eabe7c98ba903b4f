"""
Input Coercion

Receipt numbers arrive as JSON numbers or strings depending on the client
and the parser. Everything is funnelled through `canonical_decimal` before
it reaches a model, so a float never turns into a binary rounding artifact
in the ledger.

Dates and times are lenient: an unreadable value falls back to a default
and produces a warning instead of rejecting the whole receipt.
"""

import re
from datetime import date, time
from decimal import Decimal, InvalidOperation
from typing import Optional, Union


_TIME_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")

DEFAULT_RECEIPT_TIME = time(12, 0, 0)


class InvalidAmountError(ValueError):
    """A numeric receipt field could not be read as a decimal."""
    pass


def canonical_decimal(value: Optional[Union[int, float, str, Decimal]]) -> Optional[str]:
    """
    Convert a receipt number to its canonical decimal string.

    None and blank strings mean "not given" and return None.

    Examples:
        canonical_decimal(12.5)    -> "12.5"
        canonical_decimal("3.00")  -> "3"
        canonical_decimal(" 7 ")   -> "7"

    Raises:
        InvalidAmountError: For booleans, unparseable strings, NaN and infinity
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidAmountError(f"Not a number: {value!r}")
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None

    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise InvalidAmountError(f"Not a number: {value!r}") from e

    if not amount.is_finite():
        raise InvalidAmountError(f"Not a finite number: {value!r}")

    return format(amount.normalize(), "f")


def parse_receipt_time(text: Optional[str]) -> tuple[time, Optional[str]]:
    """
    Parse a receipt time of the form H:MM, HH:MM or HH:MM:SS.

    Returns:
        (parsed time, None), or (noon, warning) when the value is missing
        or unreadable
    """
    if text is None or not str(text).strip():
        return DEFAULT_RECEIPT_TIME, None

    match = _TIME_PATTERN.match(str(text).strip())
    if match:
        hour, minute = int(match.group(1)), int(match.group(2))
        second = int(match.group(3) or 0)
        if hour < 24 and minute < 60 and second < 60:
            return time(hour, minute, second), None

    return DEFAULT_RECEIPT_TIME, f"Unreadable receipt time {text!r}; using 12:00"


def read_receipt_date(text: Optional[str]) -> Optional[date]:
    """The ISO date printed on a receipt, or None when missing or unreadable."""
    if text is None or not str(text).strip():
        return None
    try:
        return date.fromisoformat(str(text).strip())
    except ValueError:
        return None


def parse_receipt_date(text: Optional[str], today: Optional[date] = None) -> tuple[date, Optional[str]]:
    """
    Parse an ISO receipt date.

    Returns:
        (parsed date, None), or (today, warning) when the value is missing
        or unreadable
    """
    today = today or date.today()
    printed = read_receipt_date(text)
    if printed is not None:
        return printed, None
    if text is None or not str(text).strip():
        return today, None
    return today, f"Unreadable receipt date {text!r}; using {today.isoformat()}"
