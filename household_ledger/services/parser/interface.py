"""
Receipt Parser Interface

DESIGN DECISION: The image-to-JSON step is a black box behind one method.
The hosted vision model, its prompt and its retries live outside this
package; the ledger only relies on the shape of the dict it returns:

    {
        "store": {"name", "address", "city", "state", "store_code", "phone"},
        "transaction": {"date", "time", "subtotal", "tax", "total", "payment_method"},
        "items": [{"raw_text", "brand", "item", "quantity", "unit",
                   "unit_quantity", "unit_price", "total_price", "taxable",
                   "tax_amount", "store_code"}, ...]
    }
"""

import re
from abc import ABC, abstractmethod

from household_ledger.config import get_settings


_DATA_URL_PREFIX = re.compile(r"^data:image/[^;]+;base64,")


class ReceiptParseError(Exception):
    """The receipt image could not be turned into structured data."""
    pass


class ReceiptParser(ABC):
    """Turns a base64 receipt image into a raw receipt dict."""

    @abstractmethod
    def parse(self, image_base64: str) -> dict:
        """
        Parse a receipt image.

        Args:
            image_base64: Base64 image data without a data URL prefix

        Returns:
            Raw receipt dict (see module docstring)

        Raises:
            ReceiptParseError: If the image cannot be read
        """
        pass


class UnconfiguredReceiptParser(ReceiptParser):
    """Placeholder used when no parser backend has been wired in."""

    def parse(self, image_base64: str) -> dict:
        if not get_settings().receipt_parser.api_key:
            raise ReceiptParseError(
                "Receipt parser is not configured (RECEIPT_PARSER_API_KEY is not set)"
            )
        raise ReceiptParseError("Receipt parser is not configured")


def clean_image_data(image: str) -> str:
    """Strip a data URL prefix and surrounding whitespace."""
    return _DATA_URL_PREFIX.sub("", image.strip()).strip()


def decoded_size(image_base64: str) -> int:
    """Approximate decoded byte size of base64 data."""
    padding = len(image_base64) - len(image_base64.rstrip("="))
    return len(image_base64) * 3 // 4 - padding
