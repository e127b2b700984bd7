"""Database layer for rsuledger."""

from rsuledger.db.migrations import migrate
from rsuledger.db.price_store import PriceStore
from rsuledger.db.repository import LedgerRepository
from rsuledger.db.schema import LedgerConnection, connection_lock, create_schema

__all__ = [
    "LedgerConnection",
    "LedgerRepository",
    "PriceStore",
    "connection_lock",
    "create_schema",
    "migrate",
]
