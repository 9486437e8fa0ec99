"""
Bulk retrieval of the three ticket streams.

The ticket tables sit behind a store that caps how many rows a single query
may return, so a naive read can silently truncate. The fetcher reads
exhaustively when it can, falls back to one large bounded read when it
can't, and reports which of the two happened instead of raising.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from .config import EngineSettings
from .models import AnalyticsRequest, DateRange

logger = logging.getLogger(__name__)


class StreamKind(str, Enum):
    """The three independently recorded ticket streams."""

    SALE = "sale"
    RETURN = "return"
    GIFT_CARD = "gift_card"


class RetrievalStatus(str, Enum):
    OK = "ok"
    DEGRADED = "degraded"  # bounded fallback read, may be partial
    FAILED = "failed"  # nothing could be read
    SKIPPED = "skipped"  # stream excluded by the request


class RecordStore(Protocol):
    """Read contract of the external ticket store."""

    def collect(
        self, table: str, tenant_id: str, date_range: DateRange | None
    ) -> list[dict]:
        """Return every matching row, or raise if that is not possible."""
        ...

    def take(
        self, table: str, tenant_id: str, date_range: DateRange | None, limit: int
    ) -> list[dict]:
        """Return at most `limit` matching rows."""
        ...


@dataclass
class FetchResult:
    """Outcome of reading one table for one tenant."""

    table: str
    records: list[dict] = field(default_factory=list)
    status: RetrievalStatus = RetrievalStatus.OK
    strategy: str = "collect"  # "collect", "take" or "none"
    truncated: bool = False
    error: str | None = None

    @property
    def retrievable(self) -> bool:
        return self.status != RetrievalStatus.FAILED

    @classmethod
    def skipped(cls, table: str) -> "FetchResult":
        return cls(table=table, status=RetrievalStatus.SKIPPED, strategy="none")

    @classmethod
    def failed(cls, table: str, error: str) -> "FetchResult":
        return cls(
            table=table, status=RetrievalStatus.FAILED, strategy="none", error=error
        )


class BulkFetcher:
    """
    Reads complete record sets from a RecordStore.

    Strategy per table:
    1. Unbounded `collect` filtered by tenant and date range
    2. If that raises, or returns more than `safety_row_limit` rows, a single
       `take(fallback_row_limit)`; the result is flagged as degraded
    3. If both fail, an empty result flagged as failed

    The fetcher performs no writes and never raises to its caller.
    """

    def __init__(self, store: RecordStore, settings: EngineSettings | None = None):
        self.store = store
        self.settings = settings or EngineSettings()

    def fetch(
        self, tenant_id: str, table: str, date_range: DateRange | None = None
    ) -> FetchResult:
        safety_limit = self.settings.safety_row_limit
        fallback_limit = self.settings.fallback_row_limit

        try:
            records = self.store.collect(table, tenant_id, date_range)
        except Exception as e:
            logger.warning(f"Unbounded read of {table} failed, falling back: {e}")
            primary_error = str(e)
        else:
            if len(records) <= safety_limit:
                logger.info(f"Read {len(records):,} rows from {table}")
                return FetchResult(table=table, records=records)
            logger.warning(
                f"Unbounded read of {table} returned {len(records):,} rows, "
                f"above the safety limit of {safety_limit:,}; falling back"
            )
            primary_error = f"{len(records):,} rows exceed safety limit {safety_limit:,}"

        try:
            records = self.store.take(table, tenant_id, date_range, fallback_limit)
        except Exception as e:
            logger.error(f"Bounded read of {table} also failed: {e}")
            return FetchResult.failed(table, f"{primary_error}; fallback: {e}")

        truncated = len(records) >= fallback_limit
        logger.warning(
            f"Read {len(records):,} rows from {table} with bounded fallback"
            + (" (result hit the limit and may be truncated)" if truncated else "")
        )
        return FetchResult(
            table=table,
            records=records[:fallback_limit],
            status=RetrievalStatus.DEGRADED,
            strategy="take",
            truncated=truncated,
            error=primary_error,
        )

    def fetch_streams(self, request: AnalyticsRequest) -> dict[StreamKind, FetchResult]:
        """
        Fetch the sale, return and gift-card streams for one request.

        The reads are independent and run concurrently; all of them are joined
        before this returns. Streams still running when the shared deadline
        passes are reported as failed (their worker threads finish on their own).
        """
        tables = self.settings.tables
        wanted = {
            StreamKind.SALE: (tables.sales, True),
            StreamKind.RETURN: (tables.returns, request.include_returns),
            StreamKind.GIFT_CARD: (tables.gift_cards, request.include_gift_cards),
        }

        results: dict[StreamKind, FetchResult] = {}
        timeout = self.settings.fetch_timeout_seconds
        executor = ThreadPoolExecutor(
            max_workers=self.settings.fetch_workers, thread_name_prefix="ticket-fetch"
        )
        try:
            futures = {
                kind: executor.submit(self.fetch, request.tenant_id, table, request.date_range)
                for kind, (table, enabled) in wanted.items()
                if enabled
            }
            deadline = time.monotonic() + timeout
            for kind, (table, enabled) in wanted.items():
                if not enabled:
                    results[kind] = FetchResult.skipped(table)
                    continue
                try:
                    results[kind] = futures[kind].result(
                        timeout=max(0.0, deadline - time.monotonic())
                    )
                except FutureTimeout:
                    logger.error(f"Read of {table} timed out after {timeout:g}s")
                    results[kind] = FetchResult.failed(table, "timed out")
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        return results
