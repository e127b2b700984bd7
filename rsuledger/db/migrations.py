"""Database schema migrations."""

import logging
import sqlite3

from rsuledger.db.schema import SCHEMA_VERSION

logger = logging.getLogger(__name__)

# version -> statements that bring a database from version - 1 up to it
MIGRATIONS: dict[int, list[str]] = {}


def get_current_version(conn: sqlite3.Connection) -> int:
    """Get the current schema version from the database."""
    try:
        cursor = conn.execute("SELECT MAX(version) FROM schema_version")
        row = cursor.fetchone()
        return row[0] if row and row[0] else 0
    except sqlite3.OperationalError:
        return 0


def migrate(conn: sqlite3.Connection) -> int:
    """Run any pending migrations. Returns the resulting schema version."""
    current = get_current_version(conn)
    for version in range(current + 1, SCHEMA_VERSION + 1):
        statements = MIGRATIONS.get(version, [])
        with conn:
            for statement in statements:
                conn.execute(statement)
            conn.execute("INSERT OR IGNORE INTO schema_version (version) VALUES (?)", (version,))
        logger.info("Applied schema migration %d", version)
        current = version
    return current
