"""
Tests for the orchestrator flows and the audit trail they leave

Test strategy:
1. Components are wired through create_app_components on a temp database
2. Audit events are read back from the audit_events table
"""

import pytest
from uuid import uuid4

from household_ledger import orchestrator
from household_ledger.audit import AuditLogger
from household_ledger.models.audit import AuditEvent, AuditEventType
from household_ledger.models.receipt import InventoryItemUpdate
from household_ledger.orchestrator import ConfirmationRejected, create_app_components
from household_ledger.services.parser import ReceiptParseError
from household_ledger.services.storage import AuditStorageInterface, SQLiteAuditStorage, SQLiteClient

from conftest import FakeParser, at, receipt_payload


PARSED = {
    "store": {"name": "Walmart"},
    "transaction": {"date": "2026-03-14"},
    "items": [{"raw_text": "GV WHL MLK", "brand": "GV", "item": "WHL MLK", "total_price": 3.48}],
}


@pytest.fixture
def components(db_path):
    return create_app_components(db_path=db_path, parser=FakeParser(PARSED))


@pytest.fixture
def events(db_path):
    audit_storage = SQLiteAuditStorage(SQLiteClient(db_path))

    def _events():
        return [e.event_type for e in reversed(audit_storage.get_recent_events())]
    return _events


class TestReceiptFlow:
    """Tests for scan and confirm."""

    def test_scan_is_audited(self, components, events, household_id):
        """Test that a scan records a receipt_scanned event."""
        receipt_flow = components[0]
        receipt = receipt_flow.scan("aGVsbG8=", household_id)
        assert receipt.items[0].brand == "Gv"
        assert events() == [AuditEventType.RECEIPT_SCANNED]

    def test_failed_scan_is_audited(self, db_path, events, household_id):
        """Test that a failed scan is audited and re-raised."""
        receipt_flow = create_app_components(
            db_path=db_path,
            parser=FakeParser(ReceiptParseError("Image is too blurry")),
        )[0]
        with pytest.raises(ReceiptParseError):
            receipt_flow.scan("aGVsbG8=", household_id)
        assert events() == [AuditEventType.RECEIPT_SCAN_FAILED]

    def test_confirm_with_skipped_line(self, components, events, household_id, user_id):
        """Test that skipped lines and the confirmation are audited."""
        receipt_flow = components[0]
        confirmation = receipt_flow.confirm(
            receipt_payload([
                {"raw_text": "MILK", "total_price": "3.48"},
                {"raw_text": "EGGS", "total_price": "abc"},
            ]),
            user_id,
            household_id,
        )
        assert confirmation.created_count == 1
        assert events() == [AuditEventType.PURCHASE_SKIPPED, AuditEventType.RECEIPT_CONFIRMED]

    def test_rejected_confirmation(self, components, events, household_id, user_id):
        """Test that an invalid payload raises and writes nothing but an audit event."""
        receipt_flow, budget_flow = components[0], components[1]
        with pytest.raises(ConfirmationRejected) as exc_info:
            receipt_flow.confirm(receipt_payload([]), user_id, household_id)

        assert exc_info.value.result.to_error_map() == {"items": ["At least one item is required"]}
        assert events() == [AuditEventType.VALIDATION_FAILED]
        assert budget_flow.list_entries(household_id, {}) == []

    def test_rejection_audit_describes_the_issues(self, db_path, components, household_id, user_id):
        """Test that a rejected confirmation is audited with a readable summary."""
        receipt_flow = components[0]
        with pytest.raises(ConfirmationRejected):
            receipt_flow.confirm(receipt_payload([]), user_id, household_id)

        event = SQLiteAuditStorage(SQLiteClient(db_path)).get_recent_events()[0]
        assert event.event_type == AuditEventType.VALIDATION_FAILED
        assert "could not be saved" in event.description
        assert "items: At least one item is required" in event.description

    def test_trip_reschedule_is_audited(self, components, events, make_trip, household_id, user_id):
        """Test that moving a trip to its receipt date is audited."""
        receipt_flow = components[0]
        trip = make_trip(trip_start=at(10))
        receipt_flow.confirm(receipt_payload([{"raw_text": "MILK", "total_price": 1}], trip_id=trip.id),
                             user_id, household_id)
        assert events() == [AuditEventType.TRIP_RESCHEDULED, AuditEventType.RECEIPT_CONFIRMED]

    def test_validation_warnings_reach_the_confirmation(self, components, household_id, user_id):
        """Test that validator warnings are reported once."""
        receipt_flow = components[0]
        confirmation = receipt_flow.confirm(
            receipt_payload([{"raw_text": "MILK", "total_price": 1}], receipt_time="14:5"),
            user_id,
            household_id,
        )
        assert len(confirmation.warnings) == 1

    def test_delete_purchase_is_audited(self, components, events, household_id, user_id):
        """Test purchase deletion through the flow."""
        receipt_flow = components[0]
        confirmation = receipt_flow.confirm(
            receipt_payload([{"raw_text": "MILK", "total_price": 1}]), user_id, household_id,
        )
        receipt_flow.delete_purchase(confirmation.purchases[0].id, household_id)
        assert events()[-1] == AuditEventType.PURCHASE_DELETED


class TestBudgetAndCatalogFlows:
    """Tests for reads and store item corrections."""

    def test_list_entries_with_raw_params(self, components, household_id, user_id):
        """Test that query parameters are parsed leniently."""
        receipt_flow, budget_flow = components[0], components[1]
        receipt_flow.confirm(receipt_payload([{"raw_text": "MILK", "total_price": 1}]), user_id, household_id)

        entries = budget_flow.list_entries(household_id, {"start_date": "garbage", "type": "expense"})
        assert len(entries) == 1

    def test_ignored_filters_are_logged(self, components, household_id, monkeypatch):
        """Test that dropped filter values are named in a log event."""
        logged = []

        class RecordingLogger:
            def info(self, event, **kw):
                logged.append((event, kw))

        monkeypatch.setattr(orchestrator, "logger", RecordingLogger())
        budget_flow = components[1]

        budget_flow.list_entries(household_id, {"start_date": "garbage", "type": "refund", "tag_ids": "x"})
        budget_flow.list_entries(household_id, {"start_date": "2026-03-01"})

        assert len(logged) == 1
        event, kw = logged[0]
        assert event == "ledger_filter_ignored"
        assert kw["fields"] == ["start_date", "type", "tag_ids"]

    def test_inventory_update_is_audited(self, components, events, make_trip, household_id, user_id):
        """Test that a store item correction is audited only when something changed."""
        receipt_flow, catalog_flow = components[0], components[2]
        trip = make_trip(trip_start=at(14))
        confirmation = receipt_flow.confirm(
            receipt_payload([{"raw_text": "MILK", "unit": "gal", "total_price": 1}], trip_id=trip.id),
            user_id,
            household_id,
        )
        store_id = confirmation.store.id
        purchase_id = confirmation.purchases[0].id

        catalog_flow.update_store_item(household_id, store_id, purchase_id, InventoryItemUpdate(unit="gal"))
        assert AuditEventType.INVENTORY_UPDATED not in events()

        result = catalog_flow.update_store_item(household_id, store_id, purchase_id,
                                                InventoryItemUpdate(unit="Gallon"))
        assert result.changed_fields == ["unit"]
        assert events()[-1] == AuditEventType.INVENTORY_UPDATED


class TestAuditLogger:
    """Tests for audit logger resilience."""

    def test_storage_failure_does_not_raise(self):
        """Test that a failing audit store is reported, not raised."""
        class BrokenAuditStorage(AuditStorageInterface):
            def append_event(self, event):
                raise RuntimeError("disk full")

            def get_events_by_correlation_id(self, correlation_id):
                return []

            def get_recent_events(self, limit=100):
                return []

        logger = AuditLogger(BrokenAuditStorage())
        event = AuditEvent(event_type=AuditEventType.SYSTEM_ERROR, description="x")
        assert logger.log(event) is False

    def test_without_storage(self):
        """Test that logging without storage succeeds."""
        logger = AuditLogger()
        assert logger.log(AuditEvent(event_type=AuditEventType.RECEIPT_SCANNED, description="x")) is True

    def test_correlation_ids(self, audit_storage, household_id):
        """Test that related events share a correlation id."""
        logger = AuditLogger(audit_storage)
        correlation_id = uuid4()
        logger.log_receipt_scanned(household_id, 3, "Walmart", correlation_id)
        logger.log_purchase_skipped(household_id, 1, "EGGS", "bad total", correlation_id)

        related = audit_storage.get_events_by_correlation_id(correlation_id)
        assert [e.event_type for e in related] == [
            AuditEventType.RECEIPT_SCANNED,
            AuditEventType.PURCHASE_SKIPPED,
        ]
        assert related[1].details["raw_text"] == "EGGS"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
