"""
Receipt Models for Household Ledger

Request and response shapes for the receipt flow:
1. What the parser hands back (ParsedReceipt, enriched for review)
2. What the user confirms (ConfirmReceiptRequest)
3. What the ledger reports back (ReceiptConfirmation)
4. Validation issues raised along the way

DESIGN DECISION: Item numeric fields are accepted loosely (JSON number or
numeric string) and coerced one item at a time inside the ledger. A bad
number on one line must only drop that line, never the whole receipt.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional, Union
from uuid import UUID

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
)

from household_ledger.models.ledger import Purchase, Store


NumericInput = Optional[Union[int, float, str]]


# =============================================================================
# CONFIRMATION REQUEST
# =============================================================================

class ReceiptStoreInput(BaseModel):
    """
    Store block of a confirmation request.

    Either an existing store id, or the natural key (store code / name)
    plus address and contact fields for get-or-create.
    """
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    id: Optional[UUID] = None
    name: Optional[str] = Field(default=None, max_length=200)
    store_code: Optional[str] = Field(
        default=None,
        max_length=100,
        validation_alias=AliasChoices("store_code", "store_id"),
    )
    address: Optional[str] = Field(default=None, max_length=500)
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = Field(default=None, max_length=50)
    zip_code: Optional[str] = Field(default=None, max_length=20)
    phone: Optional[str] = Field(default=None, max_length=50)
    tax_rate: NumericInput = None

    @property
    def is_empty(self) -> bool:
        """True when no field that could identify a store was supplied."""
        return self.id is None and not self.name and not self.store_code


class TransactionInput(BaseModel):
    """Transaction metadata printed on the receipt."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    date: Optional[str] = Field(default=None, description="ISO date, YYYY-MM-DD")
    time: Optional[str] = Field(default=None, description="H:MM, HH:MM or HH:MM:SS")
    subtotal: NumericInput = None
    tax: NumericInput = None
    total: NumericInput = None
    payment_method: Optional[str] = None


class ReceiptItemInput(BaseModel):
    """One confirmed line item, as edited by the user."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    raw_text: Optional[str] = None
    brand: Optional[str] = None
    item: Optional[str] = None
    unit: Optional[str] = None
    quantity: NumericInput = None
    unit_quantity: NumericInput = None
    unit_price: NumericInput = None
    total_price: NumericInput = None
    taxable: bool = False
    tax_rate: NumericInput = None
    tax_amount: NumericInput = None
    store_code: Optional[str] = None
    tag_ids: list[UUID] = Field(default_factory=list)


class ConfirmReceiptRequest(BaseModel):
    """Body of POST /receipts/confirm."""
    model_config = ConfigDict(extra="ignore")

    store: Optional[ReceiptStoreInput] = None
    trip_id: Optional[UUID] = None
    transaction: TransactionInput = Field(default_factory=TransactionInput)
    items: list[ReceiptItemInput] = Field(default_factory=list)


class InventoryItemUpdate(BaseModel):
    """Body of PUT /stores/{store_id}/inventory/{item_id}."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    brand: Optional[str] = Field(default=None, max_length=200)
    unit: Optional[str] = Field(default=None, max_length=50)
    price_per_unit: Optional[Decimal] = Field(default=None, ge=0)
    propagate: bool = False

    @property
    def changed_fields(self) -> dict:
        return {
            name: value
            for name, value in (
                ("brand", self.brand),
                ("unit", self.unit),
                ("price_per_unit", self.price_per_unit),
            )
            if value is not None and value != ""
        }


# =============================================================================
# PARSED RECEIPT (scan result, shown for review)
# =============================================================================

class ParsedStore(BaseModel):
    """Store block as read off the receipt, with its household match."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    name: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    store_code: Optional[str] = None
    phone: Optional[str] = None
    id: Optional[UUID] = Field(default=None, description="Matched store id")
    is_new: bool = True


class ParsedItem(BaseModel):
    """One parsed line item, with brand/unit matches and learned corrections."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    raw_text: Optional[str] = None
    brand: str = ""
    item: str = ""
    quantity: Decimal = Decimal("1")
    unit: Optional[str] = None
    unit_quantity: Optional[Decimal] = None
    unit_price: Optional[Decimal] = None
    total_price: Optional[Decimal] = None
    taxable: bool = False
    tax_amount: Optional[Decimal] = None
    store_code: Optional[str] = None

    brand_id: Optional[UUID] = None
    brand_is_new: bool = True
    unit_id: Optional[UUID] = None
    unit_is_new: bool = True
    correction_applied: bool = False


class ParsedReceipt(BaseModel):
    """Normalized parser output, ready for user review."""
    store: ParsedStore = Field(default_factory=ParsedStore)
    transaction: TransactionInput = Field(default_factory=TransactionInput)
    items: list[ParsedItem] = Field(default_factory=list)


# =============================================================================
# CONFIRMATION RESULT
# =============================================================================

class ConfirmedPurchase(BaseModel):
    """Summary of one purchase created by a confirmation."""
    id: UUID
    brand: str
    item: str
    total_price: Decimal
    budget_entry_id: UUID

    @classmethod
    def from_purchase(cls, purchase: Purchase) -> 'ConfirmedPurchase':
        return cls(
            id=purchase.id,
            brand=purchase.brand,
            item=purchase.item,
            total_price=purchase.total_price,
            budget_entry_id=purchase.budget_entry_id,
        )


class SkippedItem(BaseModel):
    """A line item dropped from a confirmation, and why."""
    index: int
    raw_text: Optional[str] = None
    reason: str


class ReceiptConfirmation(BaseModel):
    """Outcome of confirming one receipt."""
    store: Store
    stop_id: Optional[UUID] = None
    purchases: list[ConfirmedPurchase] = Field(default_factory=list)
    skipped: list[SkippedItem] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    # Set when the receipt date moved its trip; reported to the audit log only
    trip_id: Optional[UUID] = None
    previous_trip_start: Optional[datetime] = None
    new_trip_start: Optional[datetime] = None

    @property
    def created_count(self) -> int:
        return len(self.purchases)

    @property
    def trip_rescheduled(self) -> bool:
        return self.new_trip_start is not None

    def to_response(self) -> dict:
        """JSON body for the confirm endpoint."""
        store = self.store
        return {
            "store": {
                "id": str(store.id),
                "name": store.name,
                "address": store.address,
                "state": store.state,
                "store_code": store.store_code,
            },
            "stop_id": str(self.stop_id) if self.stop_id else None,
            "purchases": [p.model_dump(mode="json") for p in self.purchases],
            "created_count": self.created_count,
            "skipped": [s.model_dump(mode="json") for s in self.skipped],
            "warnings": self.warnings,
        }


# =============================================================================
# VALIDATION
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found in a confirmation request."""
    field: str = Field(..., description="Field with the issue")
    issue_type: str = Field(..., description="Type of issue")
    message: str = Field(..., description="Human-readable description")
    severity: str = Field(
        default="error",
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = None


class ValidationResult(BaseModel):
    """Result of validating a confirmation request."""
    schema_valid: bool
    semantic_valid: bool
    is_valid: bool
    issues: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    request: Optional[ConfirmReceiptRequest] = Field(
        default=None,
        description="The parsed request, when the schema stage passed"
    )

    @property
    def has_errors(self) -> bool:
        return any(i.severity == "error" for i in self.issues)

    @property
    def error_count(self) -> int:
        return sum(1 for i in self.issues if i.severity == "error")

    def to_error_map(self) -> dict[str, list[str]]:
        """Field → messages map for the 422 response body."""
        errors: dict[str, list[str]] = {}
        for issue in self.issues:
            if issue.severity == "error":
                errors.setdefault(issue.field, []).append(issue.message)
        return errors


def issues_from_validation_error(exc: ValidationError) -> list[ValidationIssue]:
    """Flatten a pydantic ValidationError into validation issues."""
    issues = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())) or "body"
        issues.append(ValidationIssue(
            field=location,
            issue_type=error.get("type", "invalid"),
            message=error.get("msg", "Invalid value"),
        ))
    return issues
