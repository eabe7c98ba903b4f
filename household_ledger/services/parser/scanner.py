"""
Receipt Scanner

Runs the parser once and prepares its output for review:
1. Normalize (title case, defaults, merged duplicate lines)
2. Match the store, brands and units the household already has
3. Apply corrections learned from earlier confirmations

Nothing is written here. A scan that fails never opens a transaction.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog

from household_ledger.config import get_settings
from household_ledger.models.receipt import ParsedItem, ParsedReceipt, ParsedStore
from household_ledger.reconciliation.correction_learner import CorrectionLearner
from household_ledger.services.parser.interface import (
    ReceiptParseError,
    ReceiptParser,
    clean_image_data,
    decoded_size,
)
from household_ledger.services.parser.normalize import normalize_parsed_receipt
from household_ledger.services.storage import LedgerStorageInterface


logger = structlog.get_logger(__name__)


class ReceiptScanner:
    """Parses a receipt image and enriches it with household matches."""

    def __init__(
        self,
        parser: ReceiptParser,
        storage: LedgerStorageInterface,
        learner: Optional[CorrectionLearner] = None,
    ):
        self._parser = parser
        self._storage = storage
        self._learner = learner or CorrectionLearner(storage)
        self._max_image_bytes = get_settings().receipt_parser.max_image_size_bytes

    def scan(self, image: str, household_id: UUID) -> ParsedReceipt:
        """
        Parse and enrich one receipt image.

        Args:
            image: Base64 image, optionally as a data URL
            household_id: Household whose stores and corrections are matched

        Raises:
            ReceiptParseError: If the image is empty, too large or unreadable
        """
        image_base64 = clean_image_data(image)
        if not image_base64:
            raise ReceiptParseError("Receipt image is empty")
        if decoded_size(image_base64) > self._max_image_bytes:
            raise ReceiptParseError(
                f"Receipt image is larger than {self._max_image_bytes // (1024 * 1024)} MB"
            )

        raw = self._parser.parse(image_base64)
        if not isinstance(raw, dict):
            raise ReceiptParseError("Receipt parser returned an unexpected structure")

        receipt = normalize_parsed_receipt(raw)
        receipt = receipt.model_copy(update={
            "store": self._match_store(receipt.store, household_id),
            "items": [self._enrich_item(item, household_id) for item in receipt.items],
        })

        logger.info(
            "receipt_scanned",
            household_id=str(household_id),
            item_count=len(receipt.items),
            store_matched=not receipt.store.is_new,
        )
        return receipt

    def _match_store(self, store: ParsedStore, household_id: UUID) -> ParsedStore:
        match = None
        if store.name:
            match = self._storage.find_store(household_id, name=store.name)
        if match is None and store.store_code:
            match = self._storage.find_store(household_id, store_code=store.store_code)
        return store.model_copy(update={
            "id": match.id if match else None,
            "is_new": match is None,
        })

    def _enrich_item(self, item: ParsedItem, household_id: UUID) -> ParsedItem:
        item = self._apply_correction(item, household_id)

        brand = self._storage.find_brand(household_id, item.brand) if item.brand else None
        unit = self._storage.find_unit(household_id, item.unit) if item.unit else None

        return item.model_copy(update={
            "brand_id": brand.id if brand else None,
            "brand_is_new": brand is None,
            "unit_id": unit.id if unit else None,
            "unit_is_new": unit is None,
        })

    def _apply_correction(self, item: ParsedItem, household_id: UUID) -> ParsedItem:
        correction = self._learner.find_correction(item.raw_text, household_id)
        if correction is None or not correction.has_corrections:
            return item

        update = {"correction_applied": True}
        if correction.corrected_brand:
            update["brand"] = correction.corrected_brand
        if correction.corrected_item:
            update["item"] = correction.corrected_item
        if correction.corrected_unit:
            update["unit"] = correction.corrected_unit
        if correction.corrected_quantity is not None:
            update["quantity"] = Decimal(correction.corrected_quantity)
        if correction.corrected_unit_quantity is not None:
            update["unit_quantity"] = Decimal(correction.corrected_unit_quantity)
        return item.model_copy(update=update)
