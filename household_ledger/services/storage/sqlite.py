"""
SQLite Storage Implementation

DESIGN DECISION: SQLite is the storage backend because:
1. Receipt confirmation needs real transactions (one receipt, one unit of work)
2. Uniqueness constraints let concurrent requests race safely on get-or-create
3. No server to run for a single household

TRADEOFFS:
- One writer at a time (BEGIN IMMEDIATE serializes confirmations)
- Decimal columns are TEXT; sums are done in Python with Decimal

Each call opens its own connection unless a transaction is active on the
calling thread, in which case it joins that transaction's connection.
"""

import json
import os
import sqlite3
import threading
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional, Sequence
from uuid import UUID

import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from household_ledger.config import DatabaseSettings, get_settings
from household_ledger.models.audit import AuditEvent
from household_ledger.models.ledger import (
    Brand,
    BudgetEntry,
    BudgetSource,
    CalendarTask,
    EntryType,
    FormatCorrection,
    Purchase,
    Stop,
    Store,
    Tag,
    Trip,
    Unit,
)
from household_ledger.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    LedgerStorageInterface,
    NotFoundError,
    StorageBusyError,
    StorageError,
    TripPurchase,
)
from household_ledger.services.storage.schema import SCHEMA_SQL


logger = structlog.get_logger(__name__)

# SQLite's bound-parameter limit is 999 on older builds
_IN_CHUNK = 500

_PURCHASE_SELECT = """
    SELECT p.*, e.date AS entry_date
    FROM purchases p
    JOIN budget_entries e ON e.id = p.budget_entry_id
"""

_UPDATABLE_PURCHASE_FIELDS = ("brand", "unit", "price_per_unit")


def _is_busy(exc: sqlite3.OperationalError) -> bool:
    message = str(exc).lower()
    return "locked" in message or "busy" in message


@contextmanager
def _sqlite_errors(action: str) -> Iterator[None]:
    """Translate sqlite3 exceptions into the storage exception taxonomy."""
    try:
        yield
    except sqlite3.IntegrityError as e:
        if "UNIQUE" in str(e):
            raise DuplicateError(f"{action}: {e}") from e
        raise StorageError(f"{action}: {e}") from e
    except sqlite3.OperationalError as e:
        if _is_busy(e):
            raise StorageBusyError(f"{action}: {e}") from e
        raise StorageError(f"{action}: {e}") from e
    except sqlite3.Error as e:
        raise StorageError(f"{action}: {e}") from e


def _text(value: Any) -> Optional[str]:
    """Convert a Python value to its stored TEXT form."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return format(value.normalize(), "f")
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


def _placeholders(count: int) -> str:
    return ", ".join("?" for _ in range(count))


def _chunks(values: Sequence[Any]) -> Iterator[Sequence[Any]]:
    for start in range(0, len(values), _IN_CHUNK):
        yield values[start:start + _IN_CHUNK]


def _like_pattern(text: str) -> str:
    escaped = text.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class SQLiteClient:
    """
    Low-level SQLite wrapper.

    Owns the database path, schema creation and the per-thread
    transaction state shared by the storage classes.
    """

    def __init__(
        self,
        db_path: Optional[str] = None,
        settings: Optional[DatabaseSettings] = None,
    ):
        self._settings = settings or get_settings().database
        self.db_path = str(db_path or self._settings.resolved_path)
        if self.db_path == ":memory:":
            raise ConnectionError("An in-memory database cannot be shared between connections")
        self._local = threading.local()
        self._ensure_schema()

    def _open(self) -> sqlite3.Connection:
        parent = Path(self.db_path).parent
        try:
            os.makedirs(parent, exist_ok=True)
            conn = sqlite3.connect(
                self.db_path,
                timeout=self._settings.busy_timeout_seconds,
                isolation_level=None,
            )
        except (OSError, sqlite3.Error) as e:
            raise ConnectionError(f"Failed to open ledger database at {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _ensure_schema(self) -> None:
        conn = self._open()
        try:
            with _sqlite_errors("ensure schema"):
                conn.execute(f"PRAGMA journal_mode={self._settings.journal_mode}")
                conn.executescript(SCHEMA_SQL)
        finally:
            conn.close()
        logger.info("ledger_schema_ensured", db_path=self.db_path)

    @property
    def in_transaction(self) -> bool:
        return getattr(self._local, "conn", None) is not None

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        """Yield the active transaction's connection, or a short-lived one."""
        active = getattr(self._local, "conn", None)
        if active is not None:
            yield active
            return
        conn = self._open()
        try:
            yield conn
        finally:
            conn.close()

    @retry(
        retry=retry_if_exception_type(StorageBusyError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        reraise=True,
    )
    def _begin(self, conn: sqlite3.Connection) -> None:
        with _sqlite_errors("begin transaction"):
            conn.execute("BEGIN IMMEDIATE")

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if self.in_transaction:
            with self.savepoint():
                yield
            return

        conn = self._open()
        try:
            self._begin(conn)
            self._local.conn = conn
            self._local.depth = 0
            try:
                yield
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            with _sqlite_errors("commit"):
                try:
                    conn.execute("COMMIT")
                except sqlite3.Error:
                    if conn.in_transaction:
                        conn.execute("ROLLBACK")
                    raise
        finally:
            self._local.conn = None
            conn.close()

    @contextmanager
    def savepoint(self) -> Iterator[None]:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            with self.transaction():
                yield
            return

        self._local.depth += 1
        name = f"sp_{self._local.depth}"
        conn.execute(f"SAVEPOINT {name}")
        try:
            yield
        except BaseException:
            conn.execute(f"ROLLBACK TO SAVEPOINT {name}")
            conn.execute(f"RELEASE SAVEPOINT {name}")
            raise
        else:
            conn.execute(f"RELEASE SAVEPOINT {name}")
        finally:
            self._local.depth -= 1

    def fetch_all(self, sql: str, params: Sequence[Any] = (), action: str = "query") -> list[sqlite3.Row]:
        with _sqlite_errors(action), self.connect() as conn:
            return conn.execute(sql, params).fetchall()

    def fetch_one(self, sql: str, params: Sequence[Any] = (), action: str = "query") -> Optional[sqlite3.Row]:
        with _sqlite_errors(action), self.connect() as conn:
            return conn.execute(sql, params).fetchone()

    def execute(self, sql: str, params: Sequence[Any] = (), action: str = "write") -> int:
        """Run one statement and return the number of affected rows."""
        with _sqlite_errors(action), self.connect() as conn:
            return conn.execute(sql, params).rowcount

    def execute_many(self, sql: str, rows: Iterable[Sequence[Any]], action: str = "write") -> None:
        with _sqlite_errors(action), self.connect() as conn:
            conn.executemany(sql, list(rows))


class SQLiteLedgerStorage(LedgerStorageInterface):
    """
    SQLite implementation of ledger storage.

    Rows are converted to the pydantic models on the way out; the models
    parse UUID, Decimal, date and time TEXT columns themselves.
    """

    def __init__(self, client: Optional[SQLiteClient] = None):
        self._client = client or SQLiteClient()

    # -------------------------------------------------------------------------
    # Units of work
    # -------------------------------------------------------------------------

    def transaction(self):
        return self._client.transaction()

    def savepoint(self):
        return self._client.savepoint()

    # -------------------------------------------------------------------------
    # Row helpers
    # -------------------------------------------------------------------------

    def _load_tags(self, table: str, key: str, owner_ids: list[str]) -> dict[str, list[Tag]]:
        tags: dict[str, list[Tag]] = {}
        for chunk in _chunks(owner_ids):
            rows = self._client.fetch_all(
                f"""
                SELECT j.{key} AS owner_id, t.*
                FROM {table} j
                JOIN tags t ON t.id = j.tag_id
                WHERE j.{key} IN ({_placeholders(len(chunk))})
                ORDER BY t.name
                """,
                list(chunk),
                action="load tags",
            )
            for row in rows:
                tags.setdefault(row["owner_id"], []).append(Tag.model_validate(dict(row)))
        return tags

    def _link_tags(self, table: str, key: str, owner_id: UUID, tags: list[Tag]) -> None:
        tag_ids = list(dict.fromkeys(str(t.id) for t in tags))
        if tag_ids:
            self._client.execute_many(
                f"INSERT INTO {table} ({key}, tag_id) VALUES (?, ?)",
                [(str(owner_id), tag_id) for tag_id in tag_ids],
                action="link tags",
            )

    def _purchases_from_rows(self, rows: list[sqlite3.Row]) -> list[Purchase]:
        tags = self._load_tags("purchase_tags", "purchase_id", [row["id"] for row in rows])
        purchases = []
        for row in rows:
            data = dict(row)
            data["tags"] = tags.get(row["id"], [])
            purchases.append(Purchase.model_validate(data))
        return purchases

    def _entries_from_rows(self, rows: list[sqlite3.Row]) -> list[BudgetEntry]:
        tags = self._load_tags("budget_entry_tags", "entry_id", [row["id"] for row in rows])
        entries = []
        for row in rows:
            data = dict(row)
            data["tags"] = tags.get(row["id"], [])
            entries.append(BudgetEntry.model_validate(data))
        return entries

    @staticmethod
    def _row_to_brand(row: sqlite3.Row) -> Brand:
        data = dict(row)
        data["default_tags"] = json.loads(data["default_tags"]) if data.get("default_tags") else []
        return Brand.model_validate(data)

    # -------------------------------------------------------------------------
    # Stores
    # -------------------------------------------------------------------------

    def get_store(self, store_id: UUID, household_id: UUID) -> Optional[Store]:
        row = self._client.fetch_one(
            "SELECT * FROM stores WHERE id = ? AND household_id = ?",
            (str(store_id), str(household_id)),
        )
        return Store.model_validate(dict(row)) if row else None

    def find_store(
        self,
        household_id: UUID,
        *,
        store_code: Optional[str] = None,
        name: Optional[str] = None,
    ) -> Optional[Store]:
        if store_code:
            row = self._client.fetch_one(
                """
                SELECT * FROM stores
                WHERE household_id = ? AND LOWER(store_code) = LOWER(?)
                LIMIT 1
                """,
                (str(household_id), store_code),
            )
        elif name:
            # Prefer the store keyed by name over one that merely shares it
            row = self._client.fetch_one(
                """
                SELECT * FROM stores
                WHERE household_id = ? AND LOWER(name) = LOWER(?)
                ORDER BY store_code IS NOT NULL, created_at
                LIMIT 1
                """,
                (str(household_id), name),
            )
        else:
            return None
        return Store.model_validate(dict(row)) if row else None

    def insert_store(self, store: Store) -> Store:
        self._client.execute(
            """
            INSERT INTO stores (
              id, household_id, name, address, street, city, state,
              zip_code, phone, store_code, tax_rate, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                str(store.id), str(store.household_id), store.name, store.address,
                store.street, store.city, store.state, store.zip_code, store.phone,
                store.store_code, _text(store.tax_rate), _text(store.created_at),
            ),
            action="insert store",
        )
        return store

    # -------------------------------------------------------------------------
    # Brands, units, tags, budget sources
    # -------------------------------------------------------------------------

    def find_brand(self, household_id: UUID, name: str) -> Optional[Brand]:
        row = self._client.fetch_one(
            "SELECT * FROM brands WHERE household_id = ? AND LOWER(name) = LOWER(?)",
            (str(household_id), name),
        )
        return self._row_to_brand(row) if row else None

    def insert_brand(self, brand: Brand) -> Brand:
        self._client.execute(
            """
            INSERT INTO brands (id, household_id, name, default_item, default_unit, default_tags, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                str(brand.id), str(brand.household_id), brand.name, brand.default_item,
                brand.default_unit, json.dumps(brand.default_tags), _text(brand.created_at),
            ),
            action="insert brand",
        )
        return brand

    def update_brand_defaults(self, brand: Brand) -> Brand:
        updated = self._client.execute(
            """
            UPDATE brands SET default_item = ?, default_unit = ?, default_tags = ?
            WHERE id = ? AND household_id = ?
            """,
            (
                brand.default_item, brand.default_unit, json.dumps(brand.default_tags),
                str(brand.id), str(brand.household_id),
            ),
            action="update brand defaults",
        )
        if not updated:
            raise NotFoundError(f"Brand {brand.id} not found")
        return brand

    def find_unit(self, household_id: UUID, name: str) -> Optional[Unit]:
        row = self._client.fetch_one(
            "SELECT * FROM units WHERE household_id = ? AND LOWER(name) = LOWER(?)",
            (str(household_id), name),
        )
        return Unit.model_validate(dict(row)) if row else None

    def insert_unit(self, unit: Unit) -> Unit:
        self._client.execute(
            "INSERT INTO units (id, household_id, name) VALUES (?, ?, ?)",
            (str(unit.id), str(unit.household_id), unit.name),
            action="insert unit",
        )
        return unit

    def insert_tag(self, tag: Tag) -> Tag:
        self._client.execute(
            "INSERT INTO tags (id, household_id, name, color) VALUES (?, ?, ?, ?)",
            (str(tag.id), str(tag.household_id), tag.name, tag.color),
            action="insert tag",
        )
        return tag

    def get_tags(self, household_id: UUID, tag_ids: list[UUID]) -> list[Tag]:
        wanted = list(dict.fromkeys(str(t) for t in tag_ids))
        if not wanted:
            return []
        found: dict[str, Tag] = {}
        for chunk in _chunks(wanted):
            rows = self._client.fetch_all(
                f"SELECT * FROM tags WHERE household_id = ? AND id IN ({_placeholders(len(chunk))})",
                [str(household_id), *chunk],
            )
            found.update({row["id"]: Tag.model_validate(dict(row)) for row in rows})
        missing = [t for t in wanted if t not in found]
        if missing:
            raise NotFoundError(f"Unknown tag ids: {', '.join(missing)}")
        return [found[t] for t in wanted]

    def find_budget_source(
        self,
        household_id: UUID,
        name: str,
        entry_type: EntryType,
    ) -> Optional[BudgetSource]:
        row = self._client.fetch_one(
            "SELECT * FROM budget_sources WHERE household_id = ? AND name = ? AND type = ?",
            (str(household_id), name, entry_type.value),
        )
        return BudgetSource.model_validate(dict(row)) if row else None

    def insert_budget_source(self, source: BudgetSource) -> BudgetSource:
        self._client.execute(
            """
            INSERT INTO budget_sources (id, household_id, user_id, name, type, amount)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                str(source.id), str(source.household_id), _text(source.user_id),
                source.name, source.type.value, _text(source.amount),
            ),
            action="insert budget source",
        )
        return source

    # -------------------------------------------------------------------------
    # Trips, stops, calendar tasks
    # -------------------------------------------------------------------------

    def insert_trip(self, trip: Trip) -> Trip:
        self._client.execute(
            """
            INSERT INTO trips (id, household_id, user_id, driver, trip_start, trip_end, notes)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                str(trip.id), str(trip.household_id), _text(trip.user_id), trip.driver,
                _text(trip.trip_start), _text(trip.trip_end), trip.notes,
            ),
            action="insert trip",
        )
        return trip

    def get_trip(self, trip_id: UUID, household_id: UUID) -> Optional[Trip]:
        row = self._client.fetch_one(
            "SELECT * FROM trips WHERE id = ? AND household_id = ?",
            (str(trip_id), str(household_id)),
        )
        return Trip.model_validate(dict(row)) if row else None

    def update_trip_start(self, trip_id: UUID, trip_start: datetime) -> None:
        self._client.execute(
            "UPDATE trips SET trip_start = ? WHERE id = ?",
            (_text(trip_start), str(trip_id)),
            action="update trip start",
        )

    def next_stop_position(self, trip_id: UUID) -> int:
        row = self._client.fetch_one(
            "SELECT COALESCE(MAX(position), 0) + 1 AS next_position FROM stops WHERE trip_id = ?",
            (str(trip_id),),
        )
        return int(row["next_position"])

    def insert_stop(self, stop: Stop) -> Stop:
        self._client.execute(
            """
            INSERT INTO stops (
              id, trip_id, store_id, store_name, store_address, notes,
              position, time_arrived, time_left
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                str(stop.id), str(stop.trip_id), _text(stop.store_id), stop.store_name,
                stop.store_address, stop.notes, stop.position,
                _text(stop.time_arrived), _text(stop.time_left),
            ),
            action="insert stop",
        )
        return stop

    def get_stops(self, stop_ids: list[UUID]) -> dict[UUID, Stop]:
        wanted = list(dict.fromkeys(str(s) for s in stop_ids))
        stops: dict[UUID, Stop] = {}
        for chunk in _chunks(wanted):
            rows = self._client.fetch_all(
                f"SELECT * FROM stops WHERE id IN ({_placeholders(len(chunk))})",
                list(chunk),
            )
            for row in rows:
                stop = Stop.model_validate(dict(row))
                stops[stop.id] = stop
        return stops

    def insert_task(self, task: CalendarTask) -> CalendarTask:
        self._client.execute(
            "INSERT INTO calendar_tasks (id, household_id, title, due_date, trip_id) VALUES (?, ?, ?, ?, ?)",
            (
                str(task.id), str(task.household_id), task.title,
                _text(task.due_date), _text(task.trip_id),
            ),
            action="insert task",
        )
        return task

    def list_trip_tasks(self, trip_id: UUID) -> list[CalendarTask]:
        rows = self._client.fetch_all(
            "SELECT * FROM calendar_tasks WHERE trip_id = ? ORDER BY title",
            (str(trip_id),),
        )
        return [CalendarTask.model_validate(dict(row)) for row in rows]

    def redate_trip_tasks(self, trip_id: UUID, new_date: date) -> int:
        return self._client.execute(
            "UPDATE calendar_tasks SET due_date = ? WHERE trip_id = ?",
            (_text(new_date), str(trip_id)),
            action="redate trip tasks",
        )

    # -------------------------------------------------------------------------
    # Budget entries
    # -------------------------------------------------------------------------

    def insert_budget_entry(self, entry: BudgetEntry) -> BudgetEntry:
        with self._client.transaction():
            self._client.execute(
                """
                INSERT INTO budget_entries (
                  id, household_id, user_id, date, amount, type, notes, source_id, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(entry.id), str(entry.household_id), _text(entry.user_id),
                    _text(entry.date), _text(entry.amount), entry.type.value,
                    entry.notes, _text(entry.source_id), _text(entry.created_at),
                ),
                action="insert budget entry",
            )
            self._link_tags("budget_entry_tags", "entry_id", entry.id, entry.tags)
        return entry

    def get_budget_entry(self, entry_id: UUID, household_id: UUID) -> Optional[BudgetEntry]:
        rows = self._client.fetch_all(
            "SELECT * FROM budget_entries WHERE id = ? AND household_id = ?",
            (str(entry_id), str(household_id)),
        )
        entries = self._entries_from_rows(rows)
        return entries[0] if entries else None

    def delete_budget_entry(self, entry_id: UUID, household_id: UUID) -> bool:
        deleted = self._client.execute(
            "DELETE FROM budget_entries WHERE id = ? AND household_id = ?",
            (str(entry_id), str(household_id)),
            action="delete budget entry",
        )
        return deleted > 0

    def redate_trip_entries(self, trip_id: UUID, new_date: date) -> int:
        return self._client.execute(
            """
            UPDATE budget_entries SET date = ?
            WHERE id IN (
              SELECT p.budget_entry_id
              FROM purchases p
              JOIN stops s ON s.id = p.stop_id
              WHERE s.trip_id = ?
            )
            """,
            (_text(new_date), str(trip_id)),
            action="redate trip entries",
        )

    def list_budget_entries(
        self,
        household_id: UUID,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        entry_type: Optional[EntryType] = None,
        tag_ids: Optional[list[UUID]] = None,
        exclude_stop_purchases: bool = True,
    ) -> list[BudgetEntry]:
        where = ["e.household_id = ?"]
        params: list[Any] = [str(household_id)]

        if date_from:
            where.append("e.date >= ?")
            params.append(_text(date_from))
        if date_to:
            where.append("e.date <= ?")
            params.append(_text(date_to))
        if entry_type:
            where.append("e.type = ?")
            params.append(entry_type.value)
        if tag_ids:
            where.append(
                "EXISTS (SELECT 1 FROM budget_entry_tags t "
                f"WHERE t.entry_id = e.id AND t.tag_id IN ({_placeholders(len(tag_ids))}))"
            )
            params.extend(str(t) for t in tag_ids)
        if exclude_stop_purchases:
            where.append(
                "NOT EXISTS (SELECT 1 FROM purchases p "
                "WHERE p.budget_entry_id = e.id AND p.stop_id IS NOT NULL)"
            )

        rows = self._client.fetch_all(
            f"""
            SELECT e.* FROM budget_entries e
            WHERE {' AND '.join(where)}
            ORDER BY e.date, e.created_at
            """,
            params,
            action="list budget entries",
        )
        return self._entries_from_rows(rows)

    # -------------------------------------------------------------------------
    # Purchases
    # -------------------------------------------------------------------------

    def insert_purchase(self, purchase: Purchase) -> Purchase:
        with self._client.transaction():
            self._client.execute(
                """
                INSERT INTO purchases (
                  id, household_id, stop_id, budget_entry_id, brand, item, unit,
                  count, price_per_count, units, price_per_unit, taxable, tax_rate,
                  total_price, store_code, item_name, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(purchase.id), str(purchase.household_id), _text(purchase.stop_id),
                    str(purchase.budget_entry_id), purchase.brand, purchase.item, purchase.unit,
                    _text(purchase.count), _text(purchase.price_per_count),
                    _text(purchase.units), _text(purchase.price_per_unit),
                    int(purchase.taxable), _text(purchase.tax_rate), _text(purchase.total_price),
                    purchase.store_code, purchase.item_name, _text(purchase.created_at),
                ),
                action="insert purchase",
            )
            self._link_tags("purchase_tags", "purchase_id", purchase.id, purchase.tags)
        return purchase

    def get_purchase(self, purchase_id: UUID, household_id: UUID) -> Optional[Purchase]:
        rows = self._client.fetch_all(
            _PURCHASE_SELECT + " WHERE p.id = ? AND p.household_id = ?",
            (str(purchase_id), str(household_id)),
        )
        purchases = self._purchases_from_rows(rows)
        return purchases[0] if purchases else None

    def get_purchase_for_entry(self, entry_id: UUID) -> Optional[Purchase]:
        rows = self._client.fetch_all(
            _PURCHASE_SELECT + " WHERE p.budget_entry_id = ?",
            (str(entry_id),),
        )
        purchases = self._purchases_from_rows(rows)
        return purchases[0] if purchases else None

    def delete_purchase(self, purchase_id: UUID, household_id: UUID) -> bool:
        deleted = self._client.execute(
            "DELETE FROM purchases WHERE id = ? AND household_id = ?",
            (str(purchase_id), str(household_id)),
            action="delete purchase",
        )
        return deleted > 0

    def list_stop_purchases(
        self,
        household_id: UUID,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[Purchase]:
        where = ["p.household_id = ?", "p.stop_id IS NOT NULL"]
        params: list[Any] = [str(household_id)]
        if date_from:
            where.append("e.date >= ?")
            params.append(_text(date_from))
        if date_to:
            where.append("e.date <= ?")
            params.append(_text(date_to))

        rows = self._client.fetch_all(
            _PURCHASE_SELECT + f" WHERE {' AND '.join(where)} ORDER BY e.date, p.created_at, p.rowid",
            params,
            action="list stop purchases",
        )
        return self._purchases_from_rows(rows)

    def list_trip_purchases(
        self,
        household_id: UUID,
        period_start: date,
        period_end: date,
    ) -> list[TripPurchase]:
        rows = self._client.fetch_all(
            """
            SELECT p.*, e.date AS entry_date, s.trip_id AS trip_id, st.tax_rate AS store_tax_rate
            FROM purchases p
            JOIN budget_entries e ON e.id = p.budget_entry_id
            JOIN stops s ON s.id = p.stop_id
            JOIN trips t ON t.id = s.trip_id
            LEFT JOIN stores st ON st.id = s.store_id
            WHERE p.household_id = ?
              AND t.household_id = ?
              AND substr(t.trip_start, 1, 10) BETWEEN ? AND ?
            ORDER BY t.trip_start, s.position, p.rowid
            """,
            (str(household_id), str(household_id), _text(period_start), _text(period_end)),
            action="list trip purchases",
        )
        purchases = self._purchases_from_rows(rows)
        return [
            TripPurchase(
                trip_id=row["trip_id"],
                purchase=purchase,
                store_tax_rate=row["store_tax_rate"],
            )
            for row, purchase in zip(rows, purchases)
        ]

    def find_recent_purchases(
        self,
        household_id: UUID,
        brand: str,
        store_id: Optional[UUID] = None,
        limit: int = 5,
    ) -> list[Purchase]:
        sql = _PURCHASE_SELECT + " LEFT JOIN stops s ON s.id = p.stop_id"
        where = ["p.household_id = ?", "LOWER(p.brand) LIKE ? ESCAPE '\\'"]
        params: list[Any] = [str(household_id), _like_pattern(brand)]
        if store_id:
            where.append("s.store_id = ?")
            params.append(str(store_id))
        params.append(limit)

        rows = self._client.fetch_all(
            sql + f" WHERE {' AND '.join(where)} ORDER BY e.date DESC, p.created_at DESC, p.rowid DESC LIMIT ?",
            params,
            action="find recent purchases",
        )
        return self._purchases_from_rows(rows)

    def get_store_purchase(
        self,
        household_id: UUID,
        store_id: UUID,
        purchase_id: UUID,
    ) -> Optional[Purchase]:
        rows = self._client.fetch_all(
            _PURCHASE_SELECT
            + " JOIN stops s ON s.id = p.stop_id WHERE p.id = ? AND p.household_id = ? AND s.store_id = ?",
            (str(purchase_id), str(household_id), str(store_id)),
        )
        purchases = self._purchases_from_rows(rows)
        return purchases[0] if purchases else None

    def update_purchase_fields(self, purchase_id: UUID, fields: dict[str, Any]) -> None:
        unknown = set(fields) - set(_UPDATABLE_PURCHASE_FIELDS)
        if unknown:
            raise StorageError(f"Cannot update purchase fields: {sorted(unknown)}")
        if not fields:
            return
        assignments = ", ".join(f"{name} = ?" for name in fields)
        self._client.execute(
            f"UPDATE purchases SET {assignments} WHERE id = ?",
            [_text(value) for value in fields.values()] + [str(purchase_id)],
            action="update purchase",
        )

    def propagate_store_purchase_field(
        self,
        household_id: UUID,
        store_id: UUID,
        brand: str,
        field: str,
        old_value: Any,
        new_value: Any,
        exclude_purchase_id: UUID,
    ) -> int:
        if field not in _UPDATABLE_PURCHASE_FIELDS:
            raise StorageError(f"Cannot propagate purchase field: {field}")
        return self._client.execute(
            f"""
            UPDATE purchases SET {field} = ?
            WHERE household_id = ?
              AND id != ?
              AND brand = ?
              AND {field} IS ?
              AND stop_id IN (SELECT id FROM stops WHERE store_id = ?)
            """,
            (
                _text(new_value), str(household_id), str(exclude_purchase_id),
                brand, _text(old_value), str(store_id),
            ),
            action="propagate purchase field",
        )

    # -------------------------------------------------------------------------
    # Format corrections
    # -------------------------------------------------------------------------

    def find_format_correction(
        self,
        household_id: UUID,
        raw_text: str,
    ) -> Optional[FormatCorrection]:
        row = self._client.fetch_one(
            "SELECT * FROM format_corrections WHERE household_id = ? AND raw_text = ?",
            (str(household_id), raw_text),
        )
        return FormatCorrection.model_validate(dict(row)) if row else None

    def upsert_format_correction(self, correction: FormatCorrection) -> FormatCorrection:
        rows = self._client.fetch_all(
            """
            INSERT INTO format_corrections (
              id, household_id, raw_text, corrected_brand, corrected_item, corrected_unit,
              corrected_quantity, corrected_unit_quantity, match_type, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(household_id, raw_text) DO UPDATE SET
              corrected_brand = COALESCE(excluded.corrected_brand, format_corrections.corrected_brand),
              corrected_item = COALESCE(excluded.corrected_item, format_corrections.corrected_item),
              corrected_unit = COALESCE(excluded.corrected_unit, format_corrections.corrected_unit),
              corrected_quantity = COALESCE(excluded.corrected_quantity, format_corrections.corrected_quantity),
              corrected_unit_quantity = COALESCE(excluded.corrected_unit_quantity, format_corrections.corrected_unit_quantity),
              updated_at = excluded.updated_at
            RETURNING *
            """,
            (
                str(correction.id), str(correction.household_id), correction.raw_text,
                correction.corrected_brand, correction.corrected_item, correction.corrected_unit,
                _text(correction.corrected_quantity), _text(correction.corrected_unit_quantity),
                correction.match_type.value, _text(correction.created_at), _text(correction.updated_at),
            ),
            action="upsert format correction",
        )
        # RETURNING rows are drained so the statement completes before commit
        return FormatCorrection.model_validate(dict(rows[0]))


class SQLiteAuditStorage(AuditStorageInterface):
    """
    SQLite implementation of audit storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[SQLiteClient] = None):
        self._client = client or SQLiteClient()

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> AuditEvent:
        data = dict(row)
        details_json = data.pop("details_json", None)
        data["details"] = json.loads(details_json) if details_json else {}
        data["is_user_action"] = bool(data.get("is_user_action"))
        return AuditEvent.model_validate(data)

    def append_event(self, event: AuditEvent) -> bool:
        self._client.execute(
            """
            INSERT INTO audit_events (
              event_id, timestamp, event_type, severity, household_id, entity_type,
              entity_id, correlation_id, description, details_json, error_message,
              is_user_action
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            event.to_storage_row(),
            action="append audit event",
        )
        return True

    def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        rows = self._client.fetch_all(
            "SELECT * FROM audit_events WHERE correlation_id = ? ORDER BY timestamp, rowid",
            (str(correlation_id),),
        )
        return [self._row_to_event(row) for row in rows]

    def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        rows = self._client.fetch_all(
            "SELECT * FROM audit_events ORDER BY timestamp DESC, rowid DESC LIMIT ?",
            (limit,),
        )
        return [self._row_to_event(row) for row in rows]
