"""
Tests for the HTTP API

Runs the Starlette app in-process with TestClient against a temp
database and a fake receipt parser.
"""

import asyncio
import pytest
from uuid import uuid4

from starlette.testclient import TestClient

from household_ledger.api import create_app
from household_ledger.reconciliation import BudgetAggregator, PurchaseLedger
from household_ledger.services.parser import ReceiptParseError

from conftest import FakeParser, at, receipt_payload


PARSED = {
    "store": {"name": "WALMART", "store_code": "#1234"},
    "transaction": {"date": "2026-03-14", "time": "14:30"},
    "items": [{"raw_text": "GV WHL MLK", "brand": "GV", "item": "WHL MLK", "total_price": 3.48}],
}

MILK = {"raw_text": "GV WHL MLK", "brand": "Great Value", "item": "Whole Milk",
        "unit": "gal", "total_price": "3.48"}


@pytest.fixture
def client(db_path):
    return TestClient(create_app(db_path, parser=FakeParser(PARSED)))


@pytest.fixture
def headers(household_id, user_id):
    return {"X-Household-Id": str(household_id), "X-User-Id": str(user_id)}


class TestHouseholdContext:
    """Tests for the forwarded household headers."""

    def test_health(self, client):
        """Test the health check needs no context."""
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_missing_household(self, client):
        """Test that requests without a household are rejected."""
        response = client.get("/budget/entries")
        assert response.status_code == 401
        assert response.json() == {"error": "Missing household context"}

    def test_invalid_household(self, client):
        """Test that a malformed household id is rejected."""
        response = client.get("/budget/entries", headers={"X-Household-Id": "house-1"})
        assert response.status_code == 401
        assert response.json() == {"error": "Invalid household context"}


class TestReceiptEndpoints:
    """Tests for scan and confirm."""

    def test_scan(self, client, headers):
        """Test a successful scan."""
        response = client.post("/receipts/scan", json={"image": "aGVsbG8="}, headers=headers)
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["store"]["name"] == "WALMART"
        assert data["items"][0]["item"] == "Whl Mlk"

    def test_scan_missing_image(self, client, headers):
        """Test the scan endpoint without an image."""
        response = client.post("/receipts/scan", json={}, headers=headers)
        assert response.status_code == 400
        assert response.json() == {"error": "Missing 'image' parameter"}

    def test_scan_invalid_json(self, client, headers):
        """Test a body that is not JSON."""
        response = client.post("/receipts/scan", content=b"not json", headers=headers)
        assert response.status_code == 400

    def test_scan_parse_error(self, db_path, headers):
        """Test that parser errors are 422s."""
        client = TestClient(create_app(db_path, parser=FakeParser(ReceiptParseError("Image is too blurry"))))
        response = client.post("/receipts/scan", json={"image": "aGVsbG8="}, headers=headers)
        assert response.status_code == 422
        assert response.json() == {"error": "Image is too blurry"}

    def test_confirm(self, client, headers):
        """Test confirming a receipt."""
        response = client.post(
            "/receipts/confirm",
            json=receipt_payload([MILK, dict(MILK, raw_text="EGGS", total_price="abc")]),
            headers=headers,
        )
        assert response.status_code == 201
        data = response.json()["data"]
        assert data["created_count"] == 1
        assert data["store"]["name"] == "Walmart"
        assert data["skipped"][0]["index"] == 1
        assert data["purchases"][0]["total_price"] == "3.48"

    def test_confirm_validation_errors(self, client, headers):
        """Test that an invalid receipt returns the field error map."""
        response = client.post("/receipts/confirm", json=receipt_payload([]), headers=headers)
        assert response.status_code == 422
        assert response.json() == {"errors": {"items": ["At least one item is required"]}}

    def test_confirm_unknown_trip(self, client, headers):
        """Test confirming against an unknown trip."""
        response = client.post(
            "/receipts/confirm",
            json=receipt_payload([MILK], trip_id=uuid4()),
            headers=headers,
        )
        assert response.status_code == 404
        assert response.json() == {"error": "Trip not found"}

    def test_confirm_runs_off_the_event_loop(self, db_path, headers, monkeypatch):
        """Test that the blocking ledger write runs in a worker thread."""
        seen = []
        confirm_receipt = PurchaseLedger.confirm_receipt

        def recording_confirm(self, *args, **kwargs):
            try:
                asyncio.get_running_loop()
                seen.append("event loop")
            except RuntimeError:
                seen.append("worker thread")
            return confirm_receipt(self, *args, **kwargs)

        monkeypatch.setattr(PurchaseLedger, "confirm_receipt", recording_confirm)
        client = TestClient(create_app(db_path, parser=FakeParser(PARSED)))

        response = client.post("/receipts/confirm", json=receipt_payload([MILK]), headers=headers)

        assert response.status_code == 201
        assert seen == ["worker thread"]

    def test_confirm_non_object(self, client, headers):
        """Test a JSON body that is not an object."""
        response = client.post("/receipts/confirm", json=[MILK], headers=headers)
        assert response.status_code == 400


class TestBudgetEndpoints:
    """Tests for the ledger reads."""

    def test_entries(self, client, headers):
        """Test listing entries after a confirmation."""
        client.post("/receipts/confirm", json=receipt_payload([MILK]), headers=headers)

        response = client.get("/budget/entries", headers=headers)
        assert response.status_code == 200
        data = response.json()["data"]
        assert len(data) == 1
        assert data[0]["amount"] == "3.48"
        assert data[0]["is_trip"] is False

    def test_entries_malformed_filters(self, client, headers):
        """Test that malformed filters are ignored."""
        client.post("/receipts/confirm", json=receipt_payload([MILK]), headers=headers)
        response = client.get(
            "/budget/entries",
            params={"start_date": "yesterday", "type": "other", "tag_ids": "x"},
            headers=headers,
        )
        assert response.status_code == 200
        assert len(response.json()["data"]) == 1

    def test_trip_entry(self, client, headers, make_trip):
        """Test that stop purchases are listed as one trip entry."""
        trip = make_trip(trip_start=at(14))
        client.post(
            "/receipts/confirm",
            json=receipt_payload([MILK, dict(MILK, raw_text="MILK 2", total_price="1.52")], trip_id=trip.id),
            headers=headers,
        )
        data = client.get("/budget/entries", headers=headers).json()["data"]
        assert len(data) == 1
        assert data[0]["is_trip"] is True
        assert data[0]["amount"] == "5.00"
        assert data[0]["notes"] == "Trip to Walmart"

    def test_summary(self, client, headers):
        """Test the monthly summary."""
        client.post("/receipts/confirm", json=receipt_payload([MILK]), headers=headers)
        response = client.get("/budget/summary", params={"year": 2026, "month": 3}, headers=headers)
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["expense"] == "3.48"
        assert data["entry_count"] == 1

    def test_summary_clamps_month(self, client, headers):
        """Test that out-of-range months are clamped."""
        response = client.get("/budget/summary", params={"year": 2026, "month": 14}, headers=headers)
        assert response.json()["data"]["month"] == 12

    def test_internal_error(self, db_path, headers, monkeypatch):
        """Test that unexpected failures become 500s."""
        def boom(self, household_id, year, month):
            raise RuntimeError("boom")

        monkeypatch.setattr(BudgetAggregator, "monthly_summary", boom)
        client = TestClient(create_app(db_path, parser=FakeParser(PARSED)))
        response = client.get("/budget/summary", headers=headers)
        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error: boom"}


class TestCatalogEndpoints:
    """Tests for brand suggestions and store item corrections."""

    @pytest.fixture
    def store_purchase(self, client, headers, make_trip):
        trip = make_trip(trip_start=at(14))
        data = client.post(
            "/receipts/confirm",
            json=receipt_payload(
                [MILK, dict(MILK, raw_text="GV 2% MLK", item="2% Milk", total_price="3.28")],
                trip_id=trip.id,
            ),
            headers=headers,
        ).json()["data"]
        return data["store"]["id"], data["purchases"][0]["id"]

    def test_suggest_by_brand(self, client, headers, store_purchase):
        """Test brand suggestions by query string and JSON body."""
        response = client.get("/purchases/suggest-by-brand", params={"brand": "great"}, headers=headers)
        assert response.status_code == 200
        assert len(response.json()["data"]["recent_purchases"]) == 2

        response = client.post("/purchases/suggest-by-brand", json={"brand": "Great Value"}, headers=headers)
        assert response.json()["data"]["brand"]["name"] == "Great Value"

    def test_suggest_missing_brand(self, client, headers):
        """Test the suggestion endpoint without a brand."""
        response = client.get("/purchases/suggest-by-brand", headers=headers)
        assert response.status_code == 422
        assert response.json() == {"errors": {"brand": ["Missing 'brand' parameter"]}}

    def test_update_inventory_with_propagate(self, client, headers, store_purchase):
        """Test a store-wide unit correction."""
        store_id, purchase_id = store_purchase
        response = client.put(
            f"/stores/{store_id}/inventory/{purchase_id}",
            json={"unit": "gallon", "propagate": True},
            headers=headers,
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["changed_fields"] == ["unit"]
        assert data["propagated_count"] == 1
        assert data["purchase"]["unit"] == "gallon"

    def test_update_inventory_wrong_store(self, client, headers, store_purchase):
        """Test that an item is addressed through its own store."""
        _, purchase_id = store_purchase
        response = client.put(f"/stores/{uuid4()}/inventory/{purchase_id}", json={"unit": "x"}, headers=headers)
        assert response.status_code == 404

    def test_update_inventory_bad_ids(self, client, headers):
        """Test malformed path ids."""
        response = client.put("/stores/abc/inventory/def", json={"unit": "x"}, headers=headers)
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid store_id"}

    def test_update_inventory_bad_body(self, client, headers, store_purchase):
        """Test that a negative unit price is a field error."""
        store_id, purchase_id = store_purchase
        response = client.put(
            f"/stores/{store_id}/inventory/{purchase_id}",
            json={"price_per_unit": -1},
            headers=headers,
        )
        assert response.status_code == 422
        assert "price_per_unit" in response.json()["errors"]

    def test_delete_purchase(self, client, headers, store_purchase):
        """Test deleting a purchase twice."""
        _, purchase_id = store_purchase
        assert client.delete(f"/purchases/{purchase_id}", headers=headers).status_code == 204
        response = client.delete(f"/purchases/{purchase_id}", headers=headers)
        assert response.status_code == 404
        assert response.json() == {"error": "Purchase not found"}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
