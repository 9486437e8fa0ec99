"""
Stream loader for the tenant ticket tables.

THIS FILE CONTAINS THE TICKET-TABLE SPECIFIC MAPPING:
- Column names used by the ticket upload tables (snake_case) and by the
  older camelCase exports
- Which raw fields are parsed with which parser
- Which quality checks run on each stream

To adapt for a different ticket source:
1. Update FIELD_ALIASES so each engine field finds its source column
2. Adjust the per-stream checks in _check_quality
3. The core parsers, reconciler and rollups can be reused as-is
"""

import logging
from dataclasses import dataclass, field

import pandas as pd

from ..core.fetcher import FetchResult, StreamKind
from ..core.parsers import (
    AmountParser,
    DateParser,
    PercentParser,
    TicketNumberNormalizer,
    normalize_label,
)
from ..core.quality import DataQualityChecker, DataQualityReport

logger = logging.getLogger(__name__)

# Columns every normalized stream frame carries, in this order
STREAM_COLUMNS = [
    "ticket_number",
    "sale_date",
    "sale_day",
    "store_id",
    "sales_rep",
    "transaction_total",
    "gross_profit_pct",
    "qty_sold",
    "giftcard_amount",
    "stream",
]


def empty_stream() -> pd.DataFrame:
    """A normalized frame with no rows but the full set of typed columns."""
    df = pd.DataFrame(
        {
            "ticket_number": pd.Series(dtype="object"),
            "sale_date": pd.Series(dtype="datetime64[ns]"),
            "sale_day": pd.Series(dtype="object"),
            "store_id": pd.Series(dtype="object"),
            "sales_rep": pd.Series(dtype="object"),
            "transaction_total": pd.Series(dtype="float64"),
            "gross_profit_pct": pd.Series(dtype="float64"),
            "qty_sold": pd.Series(dtype="float64"),
            "giftcard_amount": pd.Series(dtype="float64"),
            "stream": pd.Series(dtype="object"),
        }
    )
    return df[STREAM_COLUMNS]


@dataclass
class LoadedStreams:
    """Normalized ticket streams for one request, plus their quality reports."""

    sales: pd.DataFrame
    returns: pd.DataFrame
    gift_cards: pd.DataFrame
    quality_reports: dict[str, DataQualityReport] = field(default_factory=dict)

    @property
    def total_lines(self) -> int:
        return len(self.sales) + len(self.returns) + len(self.gift_cards)

    def filtered(self, store_id: str | None, sales_rep: str | None) -> "LoadedStreams":
        """Keep only the lines of one store and/or one rep."""
        return LoadedStreams(
            sales=_filter_entities(self.sales, store_id, sales_rep),
            returns=_filter_entities(self.returns, store_id, sales_rep),
            gift_cards=_filter_entities(self.gift_cards, store_id, sales_rep),
            quality_reports=self.quality_reports,
        )


def _filter_entities(
    df: pd.DataFrame, store_id: str | None, sales_rep: str | None
) -> pd.DataFrame:
    mask = pd.Series(True, index=df.index)
    if store_id is not None:
        mask &= df["store_id"] == store_id
    if sales_rep is not None:
        mask &= df["sales_rep"] == sales_rep
    return df[mask].reset_index(drop=True)


class TicketStreamLoader:
    """
    Normalizes fetched ticket rows into typed DataFrames.

    Ticket-table quirks handled:
    - Sale dates are ISO strings, some with a trailing Z, some from older
      registers in US formats
    - Gross profit comes as "38.2%", "38.2" or a number
    - Ticket numbers occasionally arrive float-coerced ("10452.0")
    - Every line of a ticket repeats the ticket's transaction total
    """

    # engine field -> accepted source column names, first match wins
    FIELD_ALIASES = {
        "ticket_number": ["ticket_number", "ticketNumber"],
        "sale_date": ["sale_date", "saleDate"],
        "store_id": ["store_id", "storeId"],
        "sales_rep": ["sales_rep", "salesRep"],
        "transaction_total": ["transaction_total", "transactionTotal"],
        "gross_profit": ["gross_profit", "grossProfitPercent", "gross_profit_percent"],
        "qty_sold": ["qty_sold", "quantitySold", "quantity_sold"],
        "giftcard_amount": ["giftcard_amount", "giftCardAmount", "gift_card_amount"],
    }

    def __init__(self):
        self.date_parser = DateParser()
        self.percent_parser = PercentParser()
        self.amount_parser = AmountParser()
        self.ticket_normalizer = TicketNumberNormalizer()

    def load(self, fetched: dict[StreamKind, FetchResult]) -> LoadedStreams:
        """Normalize all fetched streams and run their quality checks."""
        frames: dict[StreamKind, pd.DataFrame] = {}
        reports: dict[str, DataQualityReport] = {}

        for kind in StreamKind:
            result = fetched.get(kind)
            records = result.records if result is not None else []
            df, report = self.load_stream(kind, records)
            frames[kind] = df
            reports[kind.value] = report

        return LoadedStreams(
            sales=frames[StreamKind.SALE],
            returns=frames[StreamKind.RETURN],
            gift_cards=frames[StreamKind.GIFT_CARD],
            quality_reports=reports,
        )

    def load_stream(
        self, kind: StreamKind, records: list[dict]
    ) -> tuple[pd.DataFrame, DataQualityReport]:
        """
        Normalize one stream.

        Rows without a ticket number are dropped (they cannot be reconciled)
        and reported. Rows whose date or amounts can't be parsed are kept with
        missing values and reported as skipped parses.
        """
        if not records:
            return empty_stream(), DataQualityReport(kind.value, 0)

        raw = pd.DataFrame.from_records(records)
        df = pd.DataFrame(index=raw.index)
        for target, candidates in self.FIELD_ALIASES.items():
            source = next((c for c in candidates if c in raw.columns), None)
            df[f"raw_{target}"] = raw[source] if source else None

        df["ticket_number"] = self.ticket_normalizer.normalize_series(df["raw_ticket_number"])
        df["sale_date"] = self.date_parser.parse_series(df["raw_sale_date"])
        df["sale_day"] = df["sale_date"].dt.strftime("%Y-%m-%d").where(
            df["sale_date"].notna(), None
        )
        df["store_id"] = df["raw_store_id"].apply(normalize_label)
        df["sales_rep"] = df["raw_sales_rep"].apply(normalize_label)
        df["transaction_total"] = self.amount_parser.parse_series(df["raw_transaction_total"])
        df["gross_profit_pct"] = self.percent_parser.parse_series(df["raw_gross_profit"])
        df["qty_sold"] = self.amount_parser.parse_series(df["raw_qty_sold"])
        df["giftcard_amount"] = self.amount_parser.parse_series(df["raw_giftcard_amount"])
        df["stream"] = kind.value

        report = self._check_quality(kind, df)
        for issue in report.by_severity("critical") + report.by_severity("warning"):
            logger.warning(f"{kind.value}: {issue.column}: {issue.description}")

        df = df[df["ticket_number"].notna()]
        df = df[STREAM_COLUMNS].reset_index(drop=True)
        logger.info(f"Loaded {len(df):,} {kind.value} lines")
        return df, report

    def _check_quality(self, kind: StreamKind, df: pd.DataFrame) -> DataQualityReport:
        checker = DataQualityChecker(kind.value)
        checker.check_missing("ticket_number", severity="critical")
        checker.check_missing("raw_sale_date", severity="warning")
        checker.check_unparsed("raw_sale_date", "sale_date")
        checker.check_unparsed("raw_gross_profit", "gross_profit_pct")
        checker.check_unparsed("raw_transaction_total", "transaction_total")
        checker.check_unparsed("raw_qty_sold", "qty_sold")

        if kind == StreamKind.GIFT_CARD:
            checker.check_unparsed("raw_giftcard_amount", "giftcard_amount")
            # Several redemptions on one ticket are expected and summed later
            checker.check_duplicates(["ticket_number"], severity="info")

        return checker.run(df)
