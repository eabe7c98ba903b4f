"""
Tests for the two-stage confirmation validator
"""

import pytest
from datetime import date, timedelta

from household_ledger.validation import ConfirmationValidator


def payload(**overrides):
    body = {
        "store": {"name": "Walmart", "tax_rate": "7"},
        "transaction": {"date": "2026-03-14", "time": "14:30"},
        "items": [{"raw_text": "GV WHL MLK", "total_price": 3.48}],
    }
    body.update(overrides)
    return body


@pytest.fixture
def validator():
    return ConfirmationValidator()


class TestSchemaStage:
    """Tests for stage 1."""

    def test_valid_payload(self, validator):
        """Test that a well-formed receipt passes both stages."""
        result = validator.validate(payload())
        assert result.is_valid is True
        assert result.issues == []
        assert result.request.items[0].raw_text == "GV WHL MLK"

    def test_not_an_object(self, validator):
        """Test that a non-object body fails the schema stage."""
        result = validator.validate(["items"])
        assert result.schema_valid is False
        assert result.semantic_valid is False
        assert result.to_error_map().keys() == {"body"}

    def test_bad_trip_id(self, validator):
        """Test that a malformed trip id is reported by field."""
        result = validator.validate(payload(trip_id="trip-1"))
        assert result.is_valid is False
        assert "trip_id" in result.to_error_map()

    def test_bad_tag_id(self, validator):
        """Test that a malformed tag id is reported with its item index."""
        result = validator.validate(payload(items=[{"raw_text": "X", "tag_ids": ["nope"]}]))
        assert result.schema_valid is False
        assert any(field.startswith("items.0.tag_ids") for field in result.to_error_map())

    def test_bad_line_number_is_not_an_error(self, validator):
        """Test that an unreadable line total is left for the ledger to skip."""
        result = validator.validate(payload(items=[{"raw_text": "X", "total_price": "abc"}]))
        assert result.is_valid is True


class TestSemanticStage:
    """Tests for stage 2."""

    def test_items_required(self, validator):
        """Test that a receipt needs at least one item."""
        result = validator.validate(payload(items=[]))
        assert result.schema_valid is True
        assert result.is_valid is False
        assert result.to_error_map() == {"items": ["At least one item is required"]}

    def test_too_many_items(self, validator):
        """Test the item count limit."""
        items = [{"raw_text": f"ITEM {i}"} for i in range(201)]
        result = validator.validate(payload(items=items))
        assert result.is_valid is False
        assert "items" in result.to_error_map()

    def test_bad_store_tax_rate(self, validator):
        """Test that an unreadable store rate is an error."""
        result = validator.validate(payload(store={"name": "Walmart", "tax_rate": "seven"}))
        assert result.is_valid is False
        assert "store.tax_rate" in result.to_error_map()

    def test_negative_store_tax_rate(self, validator):
        """Test that a negative store rate is an error."""
        result = validator.validate(payload(store={"name": "Walmart", "tax_rate": -1}))
        assert "store.tax_rate" in result.to_error_map()

    def test_future_date_warns(self, validator):
        """Test that a far-future date is a warning, not an error."""
        future = (date.today() + timedelta(days=30)).isoformat()
        result = validator.validate(payload(transaction={"date": future}))
        assert result.is_valid is True
        assert any("future" in w for w in result.warnings)

    def test_unreadable_date_and_time_warn(self, validator):
        """Test that unreadable dates and times are warnings."""
        result = validator.validate(payload(transaction={"date": "14/03/2026", "time": "14:5"}))
        assert result.is_valid is True
        assert len(result.warnings) == 2


class TestSummary:
    """Tests for the human-readable summary."""

    def test_all_passed(self, validator):
        """Test the summary of a clean receipt."""
        assert validator.get_user_friendly_summary(validator.validate(payload())) == "All checks passed."

    def test_errors_and_warnings(self, validator):
        """Test that errors and warnings are both listed."""
        result = validator.validate(payload(items=[], transaction={"time": "noon"}))
        summary = validator.get_user_friendly_summary(result)
        assert "could not be saved" in summary
        assert "items: At least one item is required" in summary
        assert "Please verify" in summary


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
