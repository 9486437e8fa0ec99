"""
In-memory record store.

Behaves like the hosted ticket store for the purposes of the fetcher: an
unbounded read fails once more rows match than the per-query cap allows,
while a bounded read returns the first `limit` matches in storage order.
Used for local runs and tests.
"""

import logging
from collections import defaultdict

from ..core.exceptions import RetrievalError, RowCapExceeded
from ..core.models import DateRange
from ..core.parsers import DateParser

logger = logging.getLogger(__name__)


class InMemoryRecordStore:
    """Rows per table, filtered by tenant and sale date on read."""

    def __init__(
        self,
        tables: dict[str, list[dict]] | None = None,
        row_cap: int | None = None,
        tenant_field: str = "tenant_id",
        date_field: str = "sale_date",
    ):
        self._tables: dict[str, list[dict]] = defaultdict(list)
        for table, rows in (tables or {}).items():
            self._tables[table].extend(dict(r) for r in rows)
        self.row_cap = row_cap
        self.tenant_field = tenant_field
        self.date_field = date_field
        self._date_parser = DateParser()

    def add_records(self, table: str, rows: list[dict]) -> int:
        self._tables[table].extend(dict(r) for r in rows)
        return len(rows)

    def collect(
        self, table: str, tenant_id: str, date_range: DateRange | None
    ) -> list[dict]:
        matches = self._matching(table, tenant_id, date_range)
        if self.row_cap is not None and len(matches) > self.row_cap:
            raise RowCapExceeded(table, self.row_cap, matched=len(matches))
        return matches

    def take(
        self, table: str, tenant_id: str, date_range: DateRange | None, limit: int
    ) -> list[dict]:
        return self._matching(table, tenant_id, date_range)[:limit]

    def _matching(
        self, table: str, tenant_id: str, date_range: DateRange | None
    ) -> list[dict]:
        if table not in self._tables:
            raise RetrievalError("no such table", table=table)

        matches = []
        for row in self._tables[table]:
            if row.get(self.tenant_field) != tenant_id:
                continue
            if date_range is not None:
                sold_at = self._date_parser.parse(row.get(self.date_field))
                if sold_at is None or not date_range.contains(sold_at):
                    continue
            matches.append(dict(row))

        logger.debug(f"{table}: {len(matches)} rows match tenant {tenant_id}")
        return matches
