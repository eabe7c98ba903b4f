"""
SQLite schema for the household ledger.

Money, quantities and tax rates are stored as canonical decimal TEXT;
ids are UUID TEXT; dates and times are ISO-8601 TEXT.
"""

SCHEMA_SQL = """
PRAGMA foreign_keys = ON;

-- 1) Household reference data
CREATE TABLE IF NOT EXISTS stores (
  id            TEXT PRIMARY KEY,
  household_id  TEXT NOT NULL,
  name          TEXT NOT NULL,
  address       TEXT,
  street        TEXT,
  city          TEXT,
  state         TEXT,
  zip_code      TEXT,
  phone         TEXT,
  store_code    TEXT,
  tax_rate      TEXT CHECK (tax_rate IS NULL OR CAST(tax_rate AS REAL) >= 0),
  created_at    TEXT NOT NULL
);
-- Natural key: external store code when present, else name
CREATE UNIQUE INDEX IF NOT EXISTS idx_stores_code
  ON stores(household_id, LOWER(store_code)) WHERE store_code IS NOT NULL;
CREATE UNIQUE INDEX IF NOT EXISTS idx_stores_name
  ON stores(household_id, LOWER(name)) WHERE store_code IS NULL;

CREATE TABLE IF NOT EXISTS brands (
  id            TEXT PRIMARY KEY,
  household_id  TEXT NOT NULL,
  name          TEXT NOT NULL,
  default_item  TEXT,
  default_unit  TEXT,
  default_tags  TEXT,             -- JSON array
  created_at    TEXT NOT NULL
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_brands_name ON brands(household_id, LOWER(name));

CREATE TABLE IF NOT EXISTS units (
  id            TEXT PRIMARY KEY,
  household_id  TEXT NOT NULL,
  name          TEXT NOT NULL CHECK (length(name) BETWEEN 1 AND 50)
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_units_name ON units(household_id, LOWER(name));

CREATE TABLE IF NOT EXISTS tags (
  id            TEXT PRIMARY KEY,
  household_id  TEXT NOT NULL,
  name          TEXT NOT NULL,
  color         TEXT
);

CREATE TABLE IF NOT EXISTS budget_sources (
  id            TEXT PRIMARY KEY,
  household_id  TEXT NOT NULL,
  user_id       TEXT,
  name          TEXT NOT NULL,
  type          TEXT NOT NULL CHECK (type IN ('income', 'expense')),
  amount        TEXT,
  UNIQUE(household_id, name, type)
);

-- 2) Shopping structure
CREATE TABLE IF NOT EXISTS trips (
  id            TEXT PRIMARY KEY,
  household_id  TEXT NOT NULL,
  user_id       TEXT,
  driver        TEXT,
  trip_start    TEXT,
  trip_end      TEXT,
  notes         TEXT
);

CREATE TABLE IF NOT EXISTS stops (
  id            TEXT PRIMARY KEY,
  trip_id       TEXT NOT NULL REFERENCES trips(id) ON DELETE CASCADE,
  store_id      TEXT REFERENCES stores(id) ON DELETE SET NULL,
  store_name    TEXT,
  store_address TEXT,
  notes         TEXT,
  position      INTEGER NOT NULL CHECK (position >= 1),
  time_arrived  TEXT,
  time_left     TEXT,
  UNIQUE(trip_id, position)
);

CREATE TABLE IF NOT EXISTS calendar_tasks (
  id            TEXT PRIMARY KEY,
  household_id  TEXT NOT NULL,
  title         TEXT NOT NULL,
  due_date      TEXT,
  trip_id       TEXT REFERENCES trips(id) ON DELETE SET NULL
);

-- 3) Ledger
CREATE TABLE IF NOT EXISTS budget_entries (
  id            TEXT PRIMARY KEY,
  household_id  TEXT NOT NULL,
  user_id       TEXT,
  date          TEXT NOT NULL,
  amount        TEXT NOT NULL CHECK (CAST(amount AS REAL) >= 0),
  type          TEXT NOT NULL CHECK (type IN ('income', 'expense')),
  notes         TEXT,
  source_id     TEXT REFERENCES budget_sources(id) ON DELETE SET NULL,
  created_at    TEXT NOT NULL
);

-- A purchase cannot outlive its entry; deleting the purchase keeps the entry
CREATE TABLE IF NOT EXISTS purchases (
  id              TEXT PRIMARY KEY,
  household_id    TEXT NOT NULL,
  stop_id         TEXT REFERENCES stops(id) ON DELETE SET NULL,
  budget_entry_id TEXT NOT NULL UNIQUE REFERENCES budget_entries(id) ON DELETE RESTRICT,
  brand           TEXT NOT NULL,
  item            TEXT NOT NULL DEFAULT '',
  unit            TEXT,
  count           TEXT CHECK (count IS NULL OR CAST(count AS REAL) >= 0),
  price_per_count TEXT CHECK (price_per_count IS NULL OR CAST(price_per_count AS REAL) >= 0),
  units           TEXT CHECK (units IS NULL OR CAST(units AS REAL) >= 0),
  price_per_unit  TEXT CHECK (price_per_unit IS NULL OR CAST(price_per_unit AS REAL) >= 0),
  taxable         INTEGER NOT NULL DEFAULT 0,
  tax_rate        TEXT CHECK (tax_rate IS NULL OR CAST(tax_rate AS REAL) >= 0),
  total_price     TEXT NOT NULL CHECK (CAST(total_price AS REAL) >= 0),
  store_code      TEXT,
  item_name       TEXT,
  created_at      TEXT NOT NULL,
  CHECK (price_per_count IS NULL OR price_per_unit IS NULL)
);

CREATE TABLE IF NOT EXISTS purchase_tags (
  purchase_id   TEXT NOT NULL REFERENCES purchases(id) ON DELETE CASCADE,
  tag_id        TEXT NOT NULL REFERENCES tags(id) ON DELETE CASCADE,
  PRIMARY KEY (purchase_id, tag_id)
);

CREATE TABLE IF NOT EXISTS budget_entry_tags (
  entry_id      TEXT NOT NULL REFERENCES budget_entries(id) ON DELETE CASCADE,
  tag_id        TEXT NOT NULL REFERENCES tags(id) ON DELETE CASCADE,
  PRIMARY KEY (entry_id, tag_id)
);

-- 4) Learning
CREATE TABLE IF NOT EXISTS format_corrections (
  id                      TEXT PRIMARY KEY,
  household_id            TEXT NOT NULL,
  raw_text                TEXT NOT NULL,   -- normalized: lowercase, single spaces
  corrected_brand         TEXT,
  corrected_item          TEXT,
  corrected_unit          TEXT,
  corrected_quantity      TEXT,
  corrected_unit_quantity TEXT,
  match_type              TEXT NOT NULL DEFAULT 'exact' CHECK (match_type IN ('exact')),
  created_at              TEXT NOT NULL,
  updated_at              TEXT NOT NULL,
  UNIQUE(household_id, raw_text)
);

-- 5) Audit trail (append-only)
CREATE TABLE IF NOT EXISTS audit_events (
  event_id        TEXT PRIMARY KEY,
  timestamp       TEXT NOT NULL,
  event_type      TEXT NOT NULL,
  severity        TEXT NOT NULL,
  household_id    TEXT,
  entity_type     TEXT,
  entity_id       TEXT,
  correlation_id  TEXT,
  description     TEXT NOT NULL,
  details_json    TEXT,
  error_message   TEXT,
  is_user_action  INTEGER NOT NULL DEFAULT 0
);

-- Helpful indexes
CREATE INDEX IF NOT EXISTS idx_entries_household_date ON budget_entries(household_id, date);
CREATE INDEX IF NOT EXISTS idx_purchases_stop         ON purchases(stop_id);
CREATE INDEX IF NOT EXISTS idx_purchases_brand        ON purchases(household_id, brand);
CREATE INDEX IF NOT EXISTS idx_stops_trip             ON stops(trip_id);
CREATE INDEX IF NOT EXISTS idx_stops_store            ON stops(store_id);
CREATE INDEX IF NOT EXISTS idx_tasks_trip             ON calendar_tasks(trip_id);
CREATE INDEX IF NOT EXISTS idx_audit_correlation      ON audit_events(correlation_id);
"""
