"""
DuckDB-backed record store.

Keeps one table per ticket stream and serves the fetcher's read contract.
Every query is capped at `page_size` rows, mirroring the hosted store, so an
unbounded read walks the matching rows page by page with a keyset cursor on
the insertion sequence. The cursor makes each page read idempotent, so a
retried page never skips or repeats rows.
"""

from __future__ import annotations

import logging
import re
import threading
from pathlib import Path

import duckdb
import pandas as pd

from ..core.exceptions import RetrievalError, RowCapExceeded
from ..core.models import DateRange
from ..core.parsers import DateParser

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

TICKET_TABLE_DDL = """
CREATE TABLE IF NOT EXISTS {table} (
    row_id BIGINT PRIMARY KEY,
    tenant_id VARCHAR NOT NULL,
    ticket_number VARCHAR,
    sale_date TIMESTAMP,
    store_id VARCHAR,
    sales_rep VARCHAR,
    transaction_total DOUBLE,
    gross_profit VARCHAR,
    qty_sold DOUBLE,
    giftcard_amount DOUBLE
)
"""

TICKET_COLUMNS = [
    "tenant_id",
    "ticket_number",
    "sale_date",
    "store_id",
    "sales_rep",
    "transaction_total",
    "gross_profit",
    "qty_sold",
    "giftcard_amount",
]


def _check_identifier(table: str) -> str:
    if not _IDENTIFIER.match(table):
        raise RetrievalError("invalid table name", table=table)
    return table


class DuckDBRecordStore:
    """
    Ticket tables in a DuckDB database.

    Args:
        database: Path to the database file, or ":memory:"
        page_size: Maximum rows a single query may return
        max_pages: Pages an unbounded read may walk before giving up
    """

    def __init__(
        self,
        database: str | Path = ":memory:",
        page_size: int = 8192,
        max_pages: int = 100,
    ):
        self.conn = duckdb.connect(str(database))
        self.page_size = page_size
        self.max_pages = max_pages
        self._write_lock = threading.Lock()
        self._date_parser = DateParser()

    def close(self) -> None:
        self.conn.close()

    def create_tables(self, *tables: str) -> None:
        for table in tables:
            self.conn.execute(TICKET_TABLE_DDL.format(table=_check_identifier(table)))

    def load_records(self, table: str, rows: list[dict]) -> int:
        """Append ticket rows to a table, creating it if needed."""
        table = _check_identifier(table)
        self.create_tables(table)
        if not rows:
            return 0

        df = pd.DataFrame.from_records(rows)
        for col in TICKET_COLUMNS:
            if col not in df.columns:
                df[col] = None
        df = df[TICKET_COLUMNS].copy()
        df["sale_date"] = self._date_parser.parse_series(df["sale_date"])
        df["gross_profit"] = df["gross_profit"].apply(
            lambda v: None if v is None or (not isinstance(v, str) and pd.isna(v)) else str(v)
        )
        for col in ("ticket_number", "store_id", "sales_rep"):
            df[col] = df[col].apply(
                lambda v: None if v is None or (not isinstance(v, str) and pd.isna(v)) else str(v)
            )
        for col in ("transaction_total", "qty_sold", "giftcard_amount"):
            df[col] = pd.to_numeric(df[col], errors="coerce")

        with self._write_lock:
            start = self.conn.execute(
                f"SELECT COALESCE(MAX(row_id), 0) FROM {table}"
            ).fetchone()[0]
            df.insert(0, "row_id", range(start + 1, start + 1 + len(df)))
            self.conn.register("_ticket_rows", df)
            try:
                cols = ", ".join(df.columns)
                self.conn.execute(
                    f"INSERT INTO {table} ({cols}) SELECT {cols} FROM _ticket_rows"
                )
            finally:
                self.conn.unregister("_ticket_rows")

        logger.info(f"Loaded {len(df):,} rows into {table}")
        return len(df)

    def collect(
        self, table: str, tenant_id: str, date_range: DateRange | None
    ) -> list[dict]:
        """Read every matching row, one capped page at a time."""
        table = _check_identifier(table)
        where, params = self._predicate(tenant_id, date_range)

        pages: list[pd.DataFrame] = []
        last_row_id = 0
        for page_number in range(1, self.max_pages + 1):
            page = self._query(
                f"SELECT * FROM {table} WHERE {where} AND row_id > ? "
                f"ORDER BY row_id LIMIT {int(self.page_size)}",
                [*params, last_row_id],
                table,
            )
            if len(page) > 0:
                pages.append(page)
                last_row_id = int(page["row_id"].iloc[-1])
            if len(page) < self.page_size:
                logger.debug(f"{table}: read {page_number} pages")
                return self._to_records(pages)

        raise RowCapExceeded(table, self.page_size * self.max_pages)

    def take(
        self, table: str, tenant_id: str, date_range: DateRange | None, limit: int
    ) -> list[dict]:
        """Single bounded read of the first `limit` matching rows."""
        table = _check_identifier(table)
        where, params = self._predicate(tenant_id, date_range)
        page = self._query(
            f"SELECT * FROM {table} WHERE {where} ORDER BY row_id LIMIT {int(limit)}",
            params,
            table,
        )
        return self._to_records([page])

    def _predicate(
        self, tenant_id: str, date_range: DateRange | None
    ) -> tuple[str, list]:
        clauses = ["tenant_id = ?"]
        params: list = [tenant_id]
        if date_range is not None:
            clauses.append("sale_date >= ? AND sale_date <= ?")
            params.extend([date_range.start, date_range.end])
        return " AND ".join(clauses), params

    def _query(self, sql: str, params: list, table: str) -> pd.DataFrame:
        cursor = self.conn.cursor()
        try:
            return cursor.execute(sql, params).fetchdf()
        except duckdb.Error as e:
            raise RetrievalError("query failed", table=table, original_error=e) from e
        finally:
            cursor.close()

    @staticmethod
    def _to_records(pages: list[pd.DataFrame]) -> list[dict]:
        pages = [p for p in pages if len(p) > 0]
        if not pages:
            return []
        df = pd.concat(pages, ignore_index=True).drop(columns=["row_id"])
        df = df.astype(object).where(df.notna(), None)
        return df.to_dict("records")
