"""
Tests for Household Ledger models

Test strategy:
1. Unit tests for the pydantic models (construction, validators)
2. Lenient parsing where the API promises it (filters, loose numbers)
3. Audit events and their serialized forms
"""

import json
import pytest
from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

from pydantic import ValidationError

from household_ledger.models.ledger import (
    GENERIC_BRAND,
    BudgetEntry,
    EntryType,
    FormatCorrection,
    LedgerFilters,
    MonthlySummary,
    Purchase,
    Store,
)
from household_ledger.models.receipt import (
    ConfirmReceiptRequest,
    ConfirmedPurchase,
    InventoryItemUpdate,
    ReceiptConfirmation,
    ReceiptStoreInput,
    SkippedItem,
    ValidationIssue,
    ValidationResult,
)
from household_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)


class TestLedgerModels:
    """Tests for the ledger's stored records."""

    def test_store_composes_address(self):
        """Test that a store builds its one-line address from parts."""
        store = Store(
            household_id=uuid4(),
            name="Kroger",
            street="12 Main St",
            city="Lafayette",
            state="IN",
            zip_code="47901",
        )
        assert store.address == "12 Main St, Lafayette, IN 47901"

    def test_store_keeps_explicit_address(self):
        """Test that an explicit address wins over its parts."""
        store = Store(household_id=uuid4(), name="Kroger", address="Somewhere", city="Lafayette")
        assert store.address == "Somewhere"

    def test_store_strips_whitespace(self):
        """Test that whitespace is stripped from the store name."""
        store = Store(household_id=uuid4(), name="  Walmart  ")
        assert store.name == "Walmart"

    def test_store_rejects_negative_tax_rate(self):
        """Test that a negative tax rate is rejected."""
        with pytest.raises(ValidationError):
            Store(household_id=uuid4(), name="Walmart", tax_rate=Decimal("-0.01"))

    def test_purchase_defaults_to_generic_brand(self):
        """Test the purchase brand default."""
        purchase = Purchase(household_id=uuid4(), budget_entry_id=uuid4())
        assert purchase.brand == GENERIC_BRAND
        assert purchase.total_price == Decimal("0")

    def test_purchase_rejects_both_pricing_modes(self):
        """Test that a purchase cannot be priced per count and per unit."""
        with pytest.raises(ValidationError, match="per count or per unit"):
            Purchase(
                household_id=uuid4(),
                budget_entry_id=uuid4(),
                price_per_count=Decimal("1.50"),
                price_per_unit=Decimal("0.25"),
            )

    def test_purchase_rejects_negative_total(self):
        """Test that a negative line total is rejected."""
        with pytest.raises(ValidationError):
            Purchase(household_id=uuid4(), budget_entry_id=uuid4(), total_price=Decimal("-1"))

    def test_budget_entry_parses_stored_text(self):
        """Test that TEXT columns parse back into typed fields."""
        entry = BudgetEntry.model_validate({
            "id": str(uuid4()),
            "household_id": str(uuid4()),
            "date": "2026-03-14",
            "amount": "12.5",
            "type": "expense",
        })
        assert entry.date == date(2026, 3, 14)
        assert entry.amount == Decimal("12.5")
        assert entry.type == EntryType.EXPENSE

    def test_format_correction_has_corrections(self):
        """Test has_corrections on empty and populated corrections."""
        empty = FormatCorrection(household_id=uuid4(), raw_text="gv whl mlk")
        assert empty.has_corrections is False

        learned = FormatCorrection(
            household_id=uuid4(),
            raw_text="gv whl mlk",
            corrected_quantity=Decimal("2"),
        )
        assert learned.has_corrections is True

    def test_monthly_summary_month_range(self):
        """Test that the summary month is bounded."""
        with pytest.raises(ValidationError):
            MonthlySummary(
                year=2026, month=13,
                income=Decimal("0"), expense=Decimal("0"), net=Decimal("0"),
                savings_rate=Decimal("0"), entry_count=0,
            )


class TestLedgerFilters:
    """Tests for the lenient ledger filters."""

    def test_valid_filters(self):
        """Test that well-formed filters are parsed."""
        tag_a, tag_b = uuid4(), uuid4()
        filters = LedgerFilters.model_validate({
            "start_date": "2026-03-01",
            "end_date": "2026-03-31",
            "type": "Expense",
            "tag_ids": f"{tag_a}, {tag_b}",
        })
        assert filters.start_date == date(2026, 3, 1)
        assert filters.end_date == date(2026, 3, 31)
        assert filters.type == EntryType.EXPENSE
        assert filters.tag_ids == [tag_a, tag_b]

    def test_malformed_values_are_dropped(self):
        """Test that malformed filter values fall back to no filter."""
        tag = uuid4()
        filters = LedgerFilters.model_validate({
            "start_date": "03/01/2026",
            "end_date": "not-a-date",
            "type": "refund",
            "tag_ids": f"nope,{tag},",
        })
        assert filters.start_date is None
        assert filters.end_date is None
        assert filters.type is None
        assert filters.tag_ids == [tag]

    def test_missing_values(self):
        """Test that absent filters are empty."""
        filters = LedgerFilters.model_validate({"tag_ids": None})
        assert filters.tag_ids == []
        assert filters.type is None


class TestReceiptModels:
    """Tests for confirmation request and response models."""

    def test_store_input_accepts_store_id_alias(self):
        """Test that the parser's store_id key fills store_code."""
        store = ReceiptStoreInput.model_validate({"name": "Walmart", "store_id": "#1234"})
        assert store.store_code == "#1234"

    def test_store_input_is_empty(self):
        """Test is_empty on a store block with only an address."""
        assert ReceiptStoreInput(address="12 Main St").is_empty is True
        assert ReceiptStoreInput(name="Walmart").is_empty is False

    def test_items_accept_loose_numbers(self):
        """Test that item numbers may be JSON numbers or strings."""
        request = ConfirmReceiptRequest.model_validate({
            "items": [
                {"raw_text": "MILK", "total_price": 3.5, "quantity": "2"},
                {"raw_text": "EGGS", "total_price": "abc"},
            ],
        })
        assert request.items[0].total_price == 3.5
        assert request.items[0].quantity == "2"
        assert request.items[1].total_price == "abc"

    def test_request_rejects_bad_trip_id(self):
        """Test that a malformed trip id fails the schema."""
        with pytest.raises(ValidationError):
            ConfirmReceiptRequest.model_validate({"trip_id": "not-a-uuid", "items": []})

    def test_inventory_update_changed_fields(self):
        """Test that only supplied fields count as changes."""
        update = InventoryItemUpdate(brand="Great Value", unit="", propagate=True)
        assert update.changed_fields == {"brand": "Great Value"}

    def test_confirmation_response(self):
        """Test the confirm endpoint response body."""
        household_id = uuid4()
        store = Store(household_id=household_id, name="Walmart", store_code="#1234", state="IN")
        purchase = Purchase(
            household_id=household_id,
            budget_entry_id=uuid4(),
            brand="Great Value",
            item="Whole Milk",
            total_price=Decimal("3.48"),
        )
        confirmation = ReceiptConfirmation(
            store=store,
            purchases=[ConfirmedPurchase.from_purchase(purchase)],
            skipped=[SkippedItem(index=1, raw_text="EGGS", reason="Not a number: 'abc'")],
        )

        body = confirmation.to_response()
        assert body["created_count"] == 1
        assert body["stop_id"] is None
        assert body["store"]["store_code"] == "#1234"
        assert body["purchases"][0]["total_price"] == "3.48"
        assert body["skipped"][0]["index"] == 1
        assert confirmation.trip_rescheduled is False


class TestValidationModels:
    """Tests for validation-related models."""

    def test_validation_issue_creation(self):
        """Test ValidationIssue model creation."""
        issue = ValidationIssue(
            field="items",
            issue_type="required",
            message="At least one item is required",
            severity="error",
        )
        assert issue.field == "items"
        assert issue.severity == "error"

    def test_validation_issue_invalid_severity(self):
        """Test that invalid severity is rejected."""
        with pytest.raises(ValueError):
            ValidationIssue(
                field="test",
                issue_type="test",
                message="test",
                severity="fatal",
            )

    def test_validation_result_error_map(self):
        """Test the field to messages map used for 422 responses."""
        result = ValidationResult(
            schema_valid=True,
            semantic_valid=False,
            is_valid=False,
            issues=[
                ValidationIssue(field="items", issue_type="required", message="At least one item is required"),
                ValidationIssue(field="transaction.time", issue_type="unreadable_time",
                                message="Unreadable receipt time", severity="warning"),
            ],
        )
        assert result.has_errors is True
        assert result.error_count == 1
        assert result.to_error_map() == {"items": ["At least one item is required"]}


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.RECEIPT_SCANNED,
            description="Receipt scanned",
        )
        assert event.event_type == AuditEventType.RECEIPT_SCANNED
        assert event.severity == AuditSeverity.INFO
        assert event.event_id is not None
        assert event.timestamp.tzinfo == timezone.utc

    def test_audit_event_to_log_dict(self):
        """Test converting audit event to log dictionary."""
        household_id = uuid4()
        event = AuditEvent(
            event_type=AuditEventType.RECEIPT_CONFIRMED,
            household_id=household_id,
            description="Receipt confirmed",
            details={"created_count": 3},
        )
        log_dict = event.to_log_dict()
        assert log_dict["event_type"] == "receipt_confirmed"
        assert log_dict["household_id"] == str(household_id)
        assert log_dict["details"] == {"created_count": 3}

    def test_audit_event_to_storage_row(self):
        """Test the audit_events row tuple."""
        event = AuditEvent(
            event_type=AuditEventType.PURCHASE_DELETED,
            description="Purchase deleted",
            details={"budget_entry_id": "x"},
            is_user_action=True,
        )
        row = event.to_storage_row()
        assert len(row) == 12
        assert row[2] == "purchase_deleted"
        assert json.loads(row[9]) == {"budget_entry_id": "x"}
        assert row[11] == 1

    def test_audit_builder_purchase_skipped(self):
        """Test AuditEventBuilder for a dropped line item."""
        household_id = uuid4()
        correlation_id = uuid4()
        event = AuditEventBuilder.purchase_skipped(
            household_id=household_id,
            index=1,
            raw_text="EGGS",
            reason="Not a number: 'abc'",
            correlation_id=correlation_id,
        )
        assert event.event_type == AuditEventType.PURCHASE_SKIPPED
        assert event.severity == AuditSeverity.WARNING
        assert event.description == "Line item 2 was not saved"
        assert event.correlation_id == correlation_id

    def test_audit_builder_trip_rescheduled(self):
        """Test AuditEventBuilder for a moved trip."""
        event = AuditEventBuilder.trip_rescheduled(
            household_id=uuid4(),
            trip_id=uuid4(),
            old_start=datetime(2026, 3, 10, 9, 30),
            new_start=datetime(2026, 3, 14, 9, 30),
            correlation_id=uuid4(),
        )
        assert event.details == {
            "old_start": "2026-03-10T09:30:00",
            "new_start": "2026-03-14T09:30:00",
        }

    def test_audit_builder_system_error(self):
        """Test AuditEventBuilder for system errors."""
        event = AuditEventBuilder.system_error(
            error_type="RuntimeError",
            error_message="boom",
        )
        assert event.severity == AuditSeverity.ERROR
        assert event.household_id is None
        assert event.error_message == "boom"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
