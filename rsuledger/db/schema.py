"""SQLite database schema definition."""

import sqlite3
import threading
from pathlib import Path

SCHEMA_VERSION = 1

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS grants (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    symbol TEXT NOT NULL,
    company TEXT,
    name TEXT,
    grant_date TEXT NOT NULL,
    total_shares INTEGER NOT NULL CHECK (total_shares > 0),
    total_value TEXT NOT NULL,
    plan_id TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'active',
    notes TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_grants_user ON grants(user_id, status);

CREATE TABLE IF NOT EXISTS tranches (
    grant_id TEXT NOT NULL REFERENCES grants(id) ON DELETE CASCADE,
    seq INTEGER NOT NULL,
    vest_date TEXT NOT NULL,
    shares INTEGER NOT NULL CHECK (shares >= 0),
    vested INTEGER NOT NULL DEFAULT 0,
    vested_price TEXT,
    PRIMARY KEY (grant_id, seq)
);

CREATE TABLE IF NOT EXISTS sales (
    id TEXT PRIMARY KEY,
    grant_id TEXT NOT NULL REFERENCES grants(id) ON DELETE CASCADE,
    user_id TEXT NOT NULL,
    sale_date TEXT NOT NULL,
    shares INTEGER NOT NULL CHECK (shares > 0),
    price_per_share TEXT NOT NULL,
    original_value TEXT NOT NULL,
    sale_value TEXT NOT NULL,
    profit TEXT NOT NULL,
    is_long_term INTEGER NOT NULL,
    holding_period_days INTEGER NOT NULL,
    wage_income_tax TEXT NOT NULL,
    capital_gains_tax TEXT NOT NULL,
    total_tax TEXT NOT NULL,
    net_value TEXT NOT NULL,
    effective_tax_rate TEXT NOT NULL,
    notes TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_sales_grant ON sales(grant_id, sale_date);
CREATE INDEX IF NOT EXISTS idx_sales_user ON sales(user_id, sale_date);

CREATE TABLE IF NOT EXISTS price_records (
    symbol TEXT NOT NULL,
    date TEXT NOT NULL,
    price TEXT NOT NULL,
    source TEXT NOT NULL DEFAULT 'manual',
    open TEXT,
    high TEXT,
    low TEXT,
    close TEXT,
    volume INTEGER,
    metadata TEXT,
    updated_at TEXT NOT NULL DEFAULT (datetime('now')),
    PRIMARY KEY (symbol, date)
);
"""


class LedgerConnection(sqlite3.Connection):
    """SQLite connection carrying one lock shared by every component using it."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.lock = threading.RLock()


def connection_lock(conn: sqlite3.Connection) -> threading.RLock:
    """The lock to hold around any statement or transaction on conn."""
    if isinstance(conn, LedgerConnection):
        return conn.lock
    return threading.RLock()


def create_schema(db_path: Path | str) -> LedgerConnection:
    """Create the database schema. Returns the connection."""
    conn = sqlite3.connect(str(db_path), check_same_thread=False, factory=LedgerConnection)
    if str(db_path) != ":memory:":
        conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    conn.executescript(SCHEMA_SQL)
    conn.execute(
        "INSERT OR IGNORE INTO schema_version (version) VALUES (?)",
        (SCHEMA_VERSION,),
    )
    conn.commit()
    return conn
