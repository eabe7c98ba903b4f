"""
Core Ledger Models for Household Ledger

These models define the schemas for every record the reconciliation
subsystem reads or writes:
1. Household-scoped reference data (Store, Brand, Unit, Tag, BudgetSource)
2. Shopping structure (Trip → Stop → Purchase)
3. Ledger rows (BudgetEntry) and their read-time aggregates
4. Learned receipt corrections (FormatCorrection)

DESIGN DECISION: Money, quantities and tax rates are Decimal everywhere.
Floats never reach the ledger; storage keeps canonical decimal strings.
"""

from datetime import date, datetime, time, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


GENERIC_BRAND = "Generic"
UNKNOWN_STORE = "Unknown Store"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class EntryType(str, Enum):
    """
    Budget entry direction.

    Trips are always expenses; only regular entries can be income.
    """
    INCOME = "income"
    EXPENSE = "expense"


class MatchType(str, Enum):
    """How a learned correction is matched against future raw receipt text."""
    EXACT = "exact"


# =============================================================================
# HOUSEHOLD REFERENCE DATA
# =============================================================================

class Tag(BaseModel):
    """A household label attached to purchases and budget entries."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    household_id: UUID
    name: str = Field(..., min_length=1, max_length=100)
    color: Optional[str] = Field(default=None, max_length=20)


class Store(BaseModel):
    """
    A store the household shops at.

    Unique per household by external store code when present, else by name.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    household_id: UUID
    name: str = Field(..., min_length=1, max_length=200)
    address: Optional[str] = Field(default=None, max_length=500)
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = Field(default=None, max_length=50)
    zip_code: Optional[str] = Field(default=None, max_length=20)
    phone: Optional[str] = Field(default=None, max_length=50)
    store_code: Optional[str] = Field(
        default=None,
        max_length=100,
        description="External store code printed on receipts"
    )
    tax_rate: Optional[Decimal] = Field(
        default=None,
        ge=0,
        description="Sales tax rate as a fraction (0.0825 = 8.25%)"
    )
    created_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode='after')
    def compose_address(self) -> 'Store':
        """Build the one-line address from its parts when it was not given."""
        if not self.address:
            locality = " ".join(p for p in (self.state, self.zip_code) if p)
            parts = [p for p in (self.street, self.city, locality) if p]
            if parts:
                self.address = ", ".join(parts)
        return self


class Brand(BaseModel):
    """A product brand, with optional defaults used to pre-fill purchases."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    household_id: UUID
    name: str = Field(..., min_length=1, max_length=200)
    default_item: Optional[str] = Field(default=None, max_length=500)
    default_unit: Optional[str] = Field(default=None, max_length=50)
    default_tags: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)


class Unit(BaseModel):
    """A unit of measurement such as "oz" or "gal"."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    household_id: UUID
    name: str = Field(..., min_length=1, max_length=50)


class BudgetSource(BaseModel):
    """
    A recurring budget source.

    Receipt purchases are booked against an expense source named after
    the store they were bought at.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    household_id: UUID
    user_id: Optional[UUID] = None
    name: str = Field(..., min_length=1, max_length=200)
    type: EntryType = EntryType.EXPENSE
    amount: Optional[Decimal] = Field(default=None, ge=0)


# =============================================================================
# SHOPPING STRUCTURE
# =============================================================================

class Trip(BaseModel):
    """A shopping outing made of ordered stops."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    household_id: UUID
    user_id: Optional[UUID] = None
    driver: Optional[str] = Field(default=None, max_length=200)
    trip_start: Optional[datetime] = None
    trip_end: Optional[datetime] = None
    notes: Optional[str] = None


class Stop(BaseModel):
    """One store visit within a trip."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    trip_id: UUID
    store_id: Optional[UUID] = None
    store_name: Optional[str] = None
    store_address: Optional[str] = None
    notes: Optional[str] = None
    position: int = Field(..., ge=1)
    time_arrived: Optional[time] = None
    time_left: Optional[time] = None


class CalendarTask(BaseModel):
    """The slice of a calendar task that follows its linked trip's date."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    household_id: UUID
    title: str = Field(..., min_length=1, max_length=200)
    due_date: Optional[date] = None
    trip_id: Optional[UUID] = None


class Purchase(BaseModel):
    """
    One receipt line item.

    A purchase is priced either per count (count × price_per_count) or per
    unit (units × price_per_unit), never both. total_price is the pre-tax
    line amount as printed on the receipt.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    household_id: UUID
    budget_entry_id: UUID
    stop_id: Optional[UUID] = None

    brand: str = Field(default=GENERIC_BRAND, min_length=1, max_length=200)
    item: str = Field(default="", max_length=500)
    unit: Optional[str] = Field(default=None, max_length=50)

    count: Optional[Decimal] = Field(default=None, ge=0)
    price_per_count: Optional[Decimal] = Field(default=None, ge=0)
    units: Optional[Decimal] = Field(default=None, ge=0)
    price_per_unit: Optional[Decimal] = Field(default=None, ge=0)

    taxable: bool = False
    tax_rate: Optional[Decimal] = Field(
        default=None,
        ge=0,
        description="Tax rate snapshot as a fraction; falls back to the store's rate"
    )
    total_price: Decimal = Field(default=Decimal("0"), ge=0)

    store_code: Optional[str] = Field(default=None, max_length=100)
    item_name: Optional[str] = Field(
        default=None,
        description="Raw receipt text the purchase was confirmed from"
    )
    tags: list[Tag] = Field(default_factory=list)

    # Read-only: the date of the paired budget entry
    entry_date: Optional[date] = None
    created_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode='after')
    def validate_pricing_mode(self) -> 'Purchase':
        if self.price_per_count is not None and self.price_per_unit is not None:
            raise ValueError(
                "A purchase is priced per count or per unit, not both"
            )
        return self


# =============================================================================
# LEDGER ROWS
# =============================================================================

class BudgetEntry(BaseModel):
    """
    A ledger row.

    Every purchase owns exactly one entry; plain manual entries own none.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    household_id: UUID
    user_id: Optional[UUID] = None
    date: date
    amount: Decimal = Field(..., ge=0)
    type: EntryType
    notes: Optional[str] = None
    source_id: Optional[UUID] = None
    tags: list[Tag] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)


class FormatCorrection(BaseModel):
    """
    A learned mapping from raw receipt text to corrected item fields.

    Only fields the user actually edited are set; the rest stay None so
    that later learning layers on top instead of erasing.
    """
    id: UUID = Field(default_factory=uuid4)
    household_id: UUID
    raw_text: str = Field(..., min_length=1, description="Normalized raw receipt text")
    corrected_brand: Optional[str] = None
    corrected_item: Optional[str] = None
    corrected_unit: Optional[str] = None
    corrected_quantity: Optional[Decimal] = None
    corrected_unit_quantity: Optional[Decimal] = None
    match_type: MatchType = MatchType.EXACT
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def has_corrections(self) -> bool:
        return any(
            value is not None
            for value in (
                self.corrected_brand,
                self.corrected_item,
                self.corrected_unit,
                self.corrected_quantity,
                self.corrected_unit_quantity,
            )
        )


# =============================================================================
# READ MODELS - Ledger listing and summary
# =============================================================================

class LedgerStop(BaseModel):
    """A stop embedded in a synthetic trip entry."""
    id: UUID
    trip_id: UUID
    store_id: Optional[UUID] = None
    store_name: Optional[str] = None
    store_address: Optional[str] = None
    position: int
    time_arrived: Optional[time] = None
    notes: Optional[str] = None
    purchases: list[Purchase] = Field(default_factory=list)


class LedgerEntry(BaseModel):
    """
    One row of the unified ledger.

    Either a standalone budget entry (is_trip False) or a stop folded
    into a single synthetic entry (is_trip True, stop populated).
    """
    id: UUID
    date: date
    amount: Decimal
    type: EntryType
    notes: Optional[str] = None
    source_id: Optional[UUID] = None
    tags: list[Tag] = Field(default_factory=list)
    is_trip: bool = False
    stop: Optional[LedgerStop] = None


class LedgerFilters(BaseModel):
    """
    Optional filters for the ledger listing.

    Malformed values are dropped rather than rejected: a bad filter
    falls back to an unfiltered listing.
    """
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    type: Optional[EntryType] = None
    tag_ids: list[UUID] = Field(default_factory=list)

    @field_validator('start_date', 'end_date', mode='before')
    @classmethod
    def lenient_date(cls, v):
        if v is None or isinstance(v, date):
            return v
        try:
            return date.fromisoformat(str(v).strip())
        except ValueError:
            return None

    @field_validator('type', mode='before')
    @classmethod
    def lenient_type(cls, v):
        if v is None or isinstance(v, EntryType):
            return v
        try:
            return EntryType(str(v).strip().lower())
        except ValueError:
            return None

    @field_validator('tag_ids', mode='before')
    @classmethod
    def lenient_tag_ids(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            v = v.split(",")
        tag_ids = []
        for raw in v:
            if isinstance(raw, UUID):
                tag_ids.append(raw)
                continue
            try:
                tag_ids.append(UUID(str(raw).strip()))
            except ValueError:
                continue
        return tag_ids


class MonthlySummary(BaseModel):
    """Income, expense and savings for one calendar month."""
    year: int
    month: int = Field(..., ge=1, le=12)
    income: Decimal
    expense: Decimal
    net: Decimal
    savings_rate: Decimal
    entry_count: int = Field(..., ge=0)
