"""
Correction Learner

When a user confirms a line item with values that differ from what the
receipt text says, the difference is remembered against the raw text.
The next scan of the same line starts from the corrected values.

DESIGN DECISION: Learning is fire-and-forget. A failure to record a
correction is logged and swallowed; it must never cost the user the
purchase they are confirming.
"""

import re
from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog

from household_ledger.models.ledger import FormatCorrection, MatchType
from household_ledger.models.receipt import ReceiptItemInput
from household_ledger.reconciliation.coercion import canonical_decimal
from household_ledger.services.storage import LedgerStorageInterface


logger = structlog.get_logger(__name__)

_WHITESPACE = re.compile(r"\s+")


def normalize_raw_text(raw_text: Optional[str]) -> Optional[str]:
    """Lowercase and collapse whitespace; None for blank text."""
    if raw_text is None:
        return None
    normalized = _WHITESPACE.sub(" ", raw_text).strip().lower()
    return normalized or None


def is_similar(value: str, raw_text: str) -> bool:
    """
    Loose match between a confirmed value and the raw receipt text.

    Case-insensitive containment in either direction:
        is_similar("GV", "GV WHL MLK")          -> True
        is_similar("Great Value", "GV WHL MLK") -> False
    """
    a = value.strip().casefold()
    b = raw_text.strip().casefold()
    if not a or not b:
        return False
    return a in b or b in a


class CorrectionLearner:
    """Records and looks up learned receipt corrections."""

    def __init__(self, storage: LedgerStorageInterface):
        self._storage = storage

    @staticmethod
    def edited_fields(item: ReceiptItemInput) -> dict:
        """
        The fields of a confirmed item that count as user edits.

        Brand and item must differ from the raw text to count. A unit, an
        explicit quantity other than 1 and a unit quantity always count.
        Raises InvalidAmountError for unreadable quantities.
        """
        raw_text = item.raw_text or ""
        fields = {}

        brand = (item.brand or "").strip()
        if brand and not is_similar(brand, raw_text):
            fields["corrected_brand"] = brand

        name = (item.item or "").strip()
        if name and not is_similar(name, raw_text):
            fields["corrected_item"] = name

        unit = (item.unit or "").strip()
        if unit:
            fields["corrected_unit"] = unit

        quantity = canonical_decimal(item.quantity)
        if quantity is not None and Decimal(quantity) != 1:
            fields["corrected_quantity"] = quantity

        unit_quantity = canonical_decimal(item.unit_quantity)
        if unit_quantity is not None:
            fields["corrected_unit_quantity"] = unit_quantity

        return fields

    def record_if_edited(
        self,
        item: ReceiptItemInput,
        household_id: UUID,
    ) -> Optional[FormatCorrection]:
        """
        Learn from a confirmed item.

        Returns the stored correction, or None when there was nothing to
        learn or recording failed. Never raises.
        """
        raw_text = normalize_raw_text(item.raw_text)
        if raw_text is None:
            return None

        try:
            fields = self.edited_fields(item)
            if not fields:
                return None

            with self._storage.savepoint():
                correction = self._storage.upsert_format_correction(FormatCorrection(
                    household_id=household_id,
                    raw_text=raw_text,
                    match_type=MatchType.EXACT,
                    **fields,
                ))
        except Exception as e:
            logger.warning(
                "correction_not_recorded",
                raw_text=raw_text,
                error=str(e),
            )
            return None

        logger.info(
            "correction_learned",
            raw_text=raw_text,
            fields=sorted(fields),
        )
        return correction

    def find_correction(
        self,
        raw_text: Optional[str],
        household_id: UUID,
    ) -> Optional[FormatCorrection]:
        """The correction learned for a raw receipt line, if any."""
        normalized = normalize_raw_text(raw_text)
        if normalized is None:
            return None
        return self._storage.find_format_correction(household_id, normalized)
