"""Data access layer for grants, tranches and sales."""

import sqlite3
from datetime import date
from decimal import Decimal

from rsuledger.db.schema import connection_lock
from rsuledger.models.enums import GrantStatus
from rsuledger.models.grant import Grant, Sale, TaxResult, Tranche


def _rows(cursor: sqlite3.Cursor) -> list[dict]:
    columns = [desc[0] for desc in cursor.description]
    return [dict(zip(columns, row)) for row in cursor.fetchall()]


def _dec(value: str | None) -> Decimal | None:
    return Decimal(value) if value is not None else None


class LedgerRepository:
    """CRUD operations for grants and sales.

    A grant and its tranche list are always written in one transaction, so a
    reader never sees a partially replaced schedule.
    """

    def __init__(self, conn: sqlite3.Connection, lock=None):
        self.conn = conn
        self._lock = lock or connection_lock(conn)

    # --- Grants ---

    def save_grant(self, grant: Grant) -> None:
        """Insert or update a grant together with its full tranche list."""
        with self._lock, self.conn:
            self.conn.execute(
                """INSERT INTO grants
                   (id, user_id, symbol, company, name, grant_date, total_shares,
                    total_value, plan_id, status, notes)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(id) DO UPDATE SET
                    symbol = excluded.symbol,
                    company = excluded.company,
                    name = excluded.name,
                    grant_date = excluded.grant_date,
                    total_shares = excluded.total_shares,
                    total_value = excluded.total_value,
                    plan_id = excluded.plan_id,
                    status = excluded.status,
                    notes = excluded.notes,
                    updated_at = datetime('now')""",
                (
                    grant.id,
                    grant.user_id,
                    grant.symbol,
                    grant.company,
                    grant.name,
                    grant.grant_date.isoformat(),
                    grant.total_shares,
                    str(grant.total_value),
                    grant.plan_id,
                    grant.status.value,
                    grant.notes,
                ),
            )
            self.conn.execute("DELETE FROM tranches WHERE grant_id = ?", (grant.id,))
            self.conn.executemany(
                """INSERT INTO tranches (grant_id, seq, vest_date, shares, vested, vested_price)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                [
                    (
                        grant.id,
                        seq,
                        t.vest_date.isoformat(),
                        t.shares,
                        int(t.vested),
                        str(t.vested_price) if t.vested_price is not None else None,
                    )
                    for seq, t in enumerate(grant.tranches)
                ],
            )

    def get_grant(self, grant_id: str) -> Grant | None:
        with self._lock:
            cursor = self.conn.execute("SELECT * FROM grants WHERE id = ?", (grant_id,))
            rows = _rows(cursor)
            if not rows:
                return None
            return self._build_grant(rows[0])

    def list_grants(
        self,
        user_id: str | None = None,
        status: GrantStatus | None = None,
        symbol: str | None = None,
    ) -> list[Grant]:
        """Retrieve grants with optional filters, ordered by grant date then id."""
        query = "SELECT * FROM grants"
        params: list[str] = []
        conditions = []
        if user_id:
            conditions.append("user_id = ?")
            params.append(user_id)
        if status:
            conditions.append("status = ?")
            params.append(status.value)
        if symbol:
            conditions.append("symbol = ?")
            params.append(symbol.upper())
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY grant_date, id"
        with self._lock:
            return [self._build_grant(row) for row in _rows(self.conn.execute(query, params))]

    def delete_grant(self, grant_id: str) -> bool:
        """Delete a grant, its tranches and its sales. Returns False if nothing matched."""
        with self._lock, self.conn:
            self.conn.execute("DELETE FROM sales WHERE grant_id = ?", (grant_id,))
            self.conn.execute("DELETE FROM tranches WHERE grant_id = ?", (grant_id,))
            cursor = self.conn.execute("DELETE FROM grants WHERE id = ?", (grant_id,))
            return cursor.rowcount > 0

    def _build_grant(self, row: dict) -> Grant:
        cursor = self.conn.execute(
            "SELECT * FROM tranches WHERE grant_id = ? ORDER BY seq", (row["id"],)
        )
        tranches = [
            Tranche(
                vest_date=date.fromisoformat(t["vest_date"]),
                shares=t["shares"],
                vested=bool(t["vested"]),
                vested_price=_dec(t["vested_price"]),
            )
            for t in _rows(cursor)
        ]
        return Grant(
            id=row["id"],
            user_id=row["user_id"],
            symbol=row["symbol"],
            company=row["company"],
            name=row["name"],
            grant_date=date.fromisoformat(row["grant_date"]),
            total_shares=row["total_shares"],
            total_value=Decimal(row["total_value"]),
            plan_id=row["plan_id"],
            status=GrantStatus(row["status"]),
            notes=row["notes"],
            tranches=tranches,
        )

    # --- Sales ---

    def save_sale(self, sale: Sale) -> None:
        """Insert a sale with its tax result. Sales are immutable once written."""
        tax = sale.tax
        with self._lock, self.conn:
            self.conn.execute(
                """INSERT INTO sales
                   (id, grant_id, user_id, sale_date, shares, price_per_share,
                    original_value, sale_value, profit, is_long_term,
                    holding_period_days, wage_income_tax, capital_gains_tax,
                    total_tax, net_value, effective_tax_rate, notes)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    sale.id,
                    sale.grant_id,
                    sale.user_id,
                    sale.sale_date.isoformat(),
                    sale.shares,
                    str(sale.price_per_share),
                    str(tax.original_value),
                    str(tax.sale_value),
                    str(tax.profit),
                    int(tax.is_long_term),
                    tax.holding_period_days,
                    str(tax.wage_income_tax),
                    str(tax.capital_gains_tax),
                    str(tax.total_tax),
                    str(tax.net_value),
                    str(tax.effective_tax_rate),
                    sale.notes,
                ),
            )

    def get_sale(self, sale_id: str) -> Sale | None:
        with self._lock:
            rows = _rows(self.conn.execute("SELECT * FROM sales WHERE id = ?", (sale_id,)))
        return self._build_sale(rows[0]) if rows else None

    def list_sales(
        self,
        user_id: str | None = None,
        grant_id: str | None = None,
        year: int | None = None,
    ) -> list[Sale]:
        """Retrieve sales with optional filters, ordered by sale date then creation."""
        query = "SELECT * FROM sales"
        params: list[str] = []
        conditions = []
        if user_id:
            conditions.append("user_id = ?")
            params.append(user_id)
        if grant_id:
            conditions.append("grant_id = ?")
            params.append(grant_id)
        if year:
            conditions.append("sale_date LIKE ?")
            params.append(f"{year}-%")
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY sale_date, created_at, id"
        with self._lock:
            return [self._build_sale(row) for row in _rows(self.conn.execute(query, params))]

    def delete_sale(self, sale_id: str) -> bool:
        with self._lock, self.conn:
            cursor = self.conn.execute("DELETE FROM sales WHERE id = ?", (sale_id,))
            return cursor.rowcount > 0

    @staticmethod
    def _build_sale(row: dict) -> Sale:
        return Sale(
            id=row["id"],
            grant_id=row["grant_id"],
            user_id=row["user_id"],
            sale_date=date.fromisoformat(row["sale_date"]),
            shares=row["shares"],
            price_per_share=Decimal(row["price_per_share"]),
            notes=row["notes"],
            tax=TaxResult(
                original_value=Decimal(row["original_value"]),
                sale_value=Decimal(row["sale_value"]),
                profit=Decimal(row["profit"]),
                is_long_term=bool(row["is_long_term"]),
                holding_period_days=row["holding_period_days"],
                wage_income_tax=Decimal(row["wage_income_tax"]),
                capital_gains_tax=Decimal(row["capital_gains_tax"]),
                total_tax=Decimal(row["total_tax"]),
                net_value=Decimal(row["net_value"]),
                effective_tax_rate=Decimal(row["effective_tax_rate"]),
            ),
        )
