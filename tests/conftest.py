"""
Shared fixtures for Household Ledger tests.

Every test gets its own SQLite file under pytest's tmp_path; nothing
touches the configured database.
"""

from datetime import datetime
from uuid import uuid4

import pytest

from household_ledger.models.ledger import CalendarTask, Tag, Trip
from household_ledger.models.receipt import ConfirmReceiptRequest
from household_ledger.services.parser import ReceiptParser
from household_ledger.reconciliation import (
    BudgetAggregator,
    CorrectionLearner,
    EntityResolver,
    PurchaseCatalog,
    PurchaseLedger,
)
from household_ledger.services.storage import (
    SQLiteAuditStorage,
    SQLiteClient,
    SQLiteLedgerStorage,
)


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "ledger.sqlite3")


@pytest.fixture
def sqlite_client(db_path):
    return SQLiteClient(db_path)


@pytest.fixture
def storage(sqlite_client):
    return SQLiteLedgerStorage(sqlite_client)


@pytest.fixture
def audit_storage(sqlite_client):
    return SQLiteAuditStorage(sqlite_client)


@pytest.fixture
def household_id():
    return uuid4()


@pytest.fixture
def other_household_id():
    return uuid4()


@pytest.fixture
def user_id():
    return uuid4()


@pytest.fixture
def resolver(storage):
    return EntityResolver(storage)


@pytest.fixture
def learner(storage):
    return CorrectionLearner(storage)


@pytest.fixture
def ledger(storage, resolver, learner):
    return PurchaseLedger(storage, resolver, learner)


@pytest.fixture
def aggregator(storage):
    return BudgetAggregator(storage)


@pytest.fixture
def catalog(storage, resolver):
    return PurchaseCatalog(storage, resolver)


@pytest.fixture
def make_tag(storage, household_id):
    def _make(name, color=None):
        return storage.insert_tag(Tag(household_id=household_id, name=name, color=color))
    return _make


@pytest.fixture
def make_trip(storage, household_id, user_id):
    def _make(trip_start=None, task_title=None, task_due=None):
        trip = storage.insert_trip(Trip(
            household_id=household_id,
            user_id=user_id,
            driver="Sam",
            trip_start=trip_start,
        ))
        if task_title:
            storage.insert_task(CalendarTask(
                household_id=household_id,
                title=task_title,
                due_date=task_due or (trip_start.date() if trip_start else None),
                trip_id=trip.id,
            ))
        return trip
    return _make


@pytest.fixture
def confirm(ledger, household_id, user_id):
    """Confirm a receipt from a plain dict payload."""
    def _confirm(payload):
        request = ConfirmReceiptRequest.model_validate(payload)
        return ledger.confirm_receipt(request, user_id, household_id)
    return _confirm


class FakeParser(ReceiptParser):
    """Returns a canned result and remembers what it was given."""

    def __init__(self, result):
        self.result = result
        self.images = []

    def parse(self, image_base64):
        self.images.append(image_base64)
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


def receipt_payload(items, store=None, trip_id=None, receipt_date="2026-03-14", receipt_time="14:30"):
    """Build a confirmation payload the way the review screen sends it."""
    payload = {
        "store": store if store is not None else {"name": "Walmart", "store_code": "#1234", "state": "IN"},
        "transaction": {"date": receipt_date, "time": receipt_time},
        "items": items,
    }
    if trip_id is not None:
        payload["trip_id"] = str(trip_id)
    return payload


def at(day, hour=9, minute=30):
    """A naive March 2026 timestamp."""
    return datetime(2026, 3, day, hour, minute)
