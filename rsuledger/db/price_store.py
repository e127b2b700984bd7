"""Per-(symbol, date) price storage backed by SQLite."""

import csv
import json
import logging
import sqlite3
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path

from rsuledger.db.base import PriceLookup
from rsuledger.db.schema import connection_lock
from rsuledger.exceptions import DataUnavailableError, ValidationError
from rsuledger.models.enums import PriceSource
from rsuledger.models.price import PriceRecord

logger = logging.getLogger(__name__)

_UPSERT_SQL = """
INSERT INTO price_records
    (symbol, date, price, source, open, high, low, close, volume, metadata)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(symbol, date) DO UPDATE SET
    price = excluded.price,
    source = excluded.source,
    open = excluded.open,
    high = excluded.high,
    low = excluded.low,
    close = excluded.close,
    volume = excluded.volume,
    metadata = excluded.metadata,
    updated_at = datetime('now')
"""

_COLUMNS = "symbol, date, price, source, open, high, low, close, volume, metadata"


def _opt(value: Decimal | None) -> str | None:
    return str(value) if value is not None else None


def _parse_decimal(raw: str | None, field: str) -> Decimal | None:
    if raw is None or not raw.strip():
        return None
    try:
        return Decimal(raw.strip().replace(",", "").lstrip("$"))
    except InvalidOperation:
        raise ValidationError(field, f"not a number: {raw!r}") from None


class PriceStore(PriceLookup):
    """One price per (symbol, date); later writes for the same key win.

    Every write is a single upsert statement, so concurrent writers for the
    same key never produce duplicate rows.
    """

    def __init__(self, conn: sqlite3.Connection, lock=None):
        self.conn = conn
        self._lock = lock or connection_lock(conn)

    def upsert(
        self,
        symbol: str,
        on_date: date,
        price: Decimal,
        source: PriceSource = PriceSource.MANUAL,
        metadata: dict | None = None,
        open: Decimal | None = None,
        high: Decimal | None = None,
        low: Decimal | None = None,
        close: Decimal | None = None,
        volume: int | None = None,
    ) -> PriceRecord:
        if price < 0:
            raise ValidationError("price", "must not be negative")
        record = PriceRecord(
            symbol=symbol,
            date=on_date,
            price=price,
            source=source,
            open=open,
            high=high,
            low=low,
            close=close,
            volume=volume,
            metadata=metadata or {},
        )
        with self._lock, self.conn:
            self.conn.execute(_UPSERT_SQL, self._params(record))
        logger.debug("Stored %s price %s on %s", record.symbol, record.price, record.date)
        return record

    def upsert_many(self, records: list[PriceRecord]) -> int:
        """Upsert a batch of records in one transaction. Returns the number written."""
        with self._lock, self.conn:
            self.conn.executemany(_UPSERT_SQL, [self._params(r) for r in records])
        return len(records)

    @staticmethod
    def _params(record: PriceRecord) -> tuple:
        return (
            record.symbol,
            record.date.isoformat(),
            str(record.price),
            record.source.value,
            _opt(record.open),
            _opt(record.high),
            _opt(record.low),
            _opt(record.close),
            record.volume,
            json.dumps(record.metadata) if record.metadata else None,
        )

    # --- Lookups ---

    def get_record_on_date(self, symbol: str, on_date: date) -> PriceRecord:
        """Exact record for the date, else the latest record strictly before it."""
        symbol = symbol.strip().upper()
        with self._lock:
            row = self.conn.execute(
                f"""SELECT {_COLUMNS} FROM price_records
                    WHERE symbol = ? AND date <= ?
                    ORDER BY date DESC LIMIT 1""",
                (symbol, on_date.isoformat()),
            ).fetchone()
        if row is None:
            raise DataUnavailableError(symbol, on_date)
        return self._build(row)

    def get_price_on_date(self, symbol: str, on_date: date) -> Decimal:
        return self.get_record_on_date(symbol, on_date).price

    def get_latest_record(self, symbol: str) -> PriceRecord:
        symbol = symbol.strip().upper()
        with self._lock:
            row = self.conn.execute(
                f"SELECT {_COLUMNS} FROM price_records WHERE symbol = ? ORDER BY date DESC LIMIT 1",
                (symbol,),
            ).fetchone()
        if row is None:
            raise DataUnavailableError(symbol)
        return self._build(row)

    def get_latest_price(self, symbol: str) -> Decimal:
        return self.get_latest_record(symbol).price

    def get_price_history(
        self,
        symbol: str,
        start: date | None = None,
        end: date | None = None,
    ) -> list[PriceRecord]:
        """Records for a symbol in [start, end], oldest first."""
        query = f"SELECT {_COLUMNS} FROM price_records WHERE symbol = ?"
        params: list[str] = [symbol.strip().upper()]
        if start:
            query += " AND date >= ?"
            params.append(start.isoformat())
        if end:
            query += " AND date <= ?"
            params.append(end.isoformat())
        query += " ORDER BY date"
        with self._lock:
            rows = self.conn.execute(query, params).fetchall()
        return [self._build(row) for row in rows]

    def list_symbols(self) -> list[str]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT DISTINCT symbol FROM price_records ORDER BY symbol"
            ).fetchall()
        return [row[0] for row in rows]

    def delete(self, symbol: str, on_date: date) -> bool:
        with self._lock, self.conn:
            cursor = self.conn.execute(
                "DELETE FROM price_records WHERE symbol = ? AND date = ?",
                (symbol.strip().upper(), on_date.isoformat()),
            )
            return cursor.rowcount > 0

    @staticmethod
    def _build(row: tuple) -> PriceRecord:
        symbol, day, price, source, open_, high, low, close, volume, metadata = row
        return PriceRecord(
            symbol=symbol,
            date=date.fromisoformat(day),
            price=Decimal(price),
            source=PriceSource(source),
            open=Decimal(open_) if open_ is not None else None,
            high=Decimal(high) if high is not None else None,
            low=Decimal(low) if low is not None else None,
            close=Decimal(close) if close is not None else None,
            volume=volume,
            metadata=json.loads(metadata) if metadata else {},
        )

    # --- Bulk import ---

    def import_csv(self, path: Path, symbol: str, source: PriceSource = PriceSource.CSV) -> int:
        """Upsert every row of a price CSV. Returns the number of rows written.

        Expected header: date,price and optionally open,high,low,close,volume.
        When price is absent, close is used.
        """
        records: list[PriceRecord] = []
        with open(path, newline="") as f:
            reader = csv.DictReader(f)
            if reader.fieldnames is None:
                raise ValidationError("csv", f"{path} is empty")
            fields = {name.strip().lower() for name in reader.fieldnames}
            if "date" not in fields or not fields & {"price", "close"}:
                raise ValidationError("csv", f"{path} needs a date column and a price or close column")

            for line_no, raw in enumerate(reader, start=2):
                row = {(k or "").strip().lower(): v for k, v in raw.items()}
                if not (row.get("date") or "").strip():
                    continue
                try:
                    day = date.fromisoformat(row["date"].strip())
                except ValueError:
                    raise ValidationError("date", f"line {line_no}: bad date {row['date']!r}") from None
                close = _parse_decimal(row.get("close"), "close")
                price = _parse_decimal(row.get("price"), "price")
                if price is None:
                    price = close
                if price is None:
                    logger.warning("Skipping %s line %d: no price", path.name, line_no)
                    continue
                if price < 0:
                    raise ValidationError("price", f"line {line_no}: must not be negative")
                volume = (row.get("volume") or "").strip().replace(",", "")
                records.append(
                    PriceRecord(
                        symbol=symbol,
                        date=day,
                        price=price,
                        source=source,
                        open=_parse_decimal(row.get("open"), "open"),
                        high=_parse_decimal(row.get("high"), "high"),
                        low=_parse_decimal(row.get("low"), "low"),
                        close=close,
                        volume=int(volume) if volume else None,
                    )
                )

        count = self.upsert_many(records)
        logger.info("Imported %d %s prices from %s", count, symbol.upper(), path.name)
        return count
