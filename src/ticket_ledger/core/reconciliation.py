"""
Reconciliation of the three ticket streams into one canonical ledger.

A checkout can show up as sale lines, return lines and gift-card lines, each
recorded independently with the same ticket number. Every downstream view
reads the ledger built here, so revenue is attributed exactly once per ticket
and the numbers never disagree between views.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

import pandas as pd

logger = logging.getLogger(__name__)


class SourceKind(str, Enum):
    """Which stream a ticket's revenue was attributed from."""

    SALE = "Sale"
    RETURN_ONLY = "ReturnOnly"
    GIFT_CARD_ONLY = "GiftCardOnly"


# Columns carried from a stream into the ledger, taken from the ticket's first line
ATTRIBUTE_COLUMNS = ["store_id", "sales_rep", "sale_date", "sale_day"]

TICKET_COLUMNS = [
    "revenue",
    "gross_profit_pct",
    "store_id",
    "sales_rep",
    "sale_date",
    "sale_day",
    "source_kind",
    "items_sold",
]

RETURN_COLUMNS = ["value", "store_id", "sales_rep", "sale_day", "claimed_by_sale"]


@dataclass(frozen=True)
class CanonicalTicket:
    """One reconciled ticket."""

    ticket_number: str
    revenue: float
    gross_profit_pct: float | None
    store_id: str | None
    sales_rep: str | None
    sale_date: datetime | None
    source_kind: SourceKind
    items_sold: float = 0.0


def _empty_tickets() -> pd.DataFrame:
    df = pd.DataFrame(
        {
            "revenue": pd.Series(dtype="float64"),
            "gross_profit_pct": pd.Series(dtype="float64"),
            "store_id": pd.Series(dtype="object"),
            "sales_rep": pd.Series(dtype="object"),
            "sale_date": pd.Series(dtype="datetime64[ns]"),
            "sale_day": pd.Series(dtype="object"),
            "source_kind": pd.Series(dtype="object"),
            "items_sold": pd.Series(dtype="float64"),
        }
    )
    df.index = pd.Index([], dtype="object", name="ticket_number")
    return df[TICKET_COLUMNS]


def _empty_returns() -> pd.DataFrame:
    df = pd.DataFrame(
        {
            "value": pd.Series(dtype="float64"),
            "store_id": pd.Series(dtype="object"),
            "sales_rep": pd.Series(dtype="object"),
            "sale_day": pd.Series(dtype="object"),
            "claimed_by_sale": pd.Series(dtype="bool"),
        }
    )
    df.index = pd.Index([], dtype="object", name="ticket_number")
    return df[RETURN_COLUMNS]


@dataclass
class Ledger:
    """
    The canonical per-ticket ledger for one request.

    `tickets` has one row per ticket number (the index), sorted by ticket
    number. `returns` has one row per distinct return ticket, whether or not
    a sale claimed that ticket, and feeds the return metrics only.
    """

    tickets: pd.DataFrame = field(default_factory=_empty_tickets)
    returns: pd.DataFrame = field(default_factory=_empty_returns)
    total_lines: int = 0
    gift_card_value: float = 0.0

    def __len__(self) -> int:
        return len(self.tickets)

    @property
    def total_revenue(self) -> float:
        return float(self.tickets["revenue"].sum())

    def source_counts(self) -> dict[str, int]:
        counts = self.tickets["source_kind"].value_counts()
        return {kind.value: int(counts.get(kind.value, 0)) for kind in SourceKind}

    def ticket(self, ticket_number: str) -> CanonicalTicket | None:
        if ticket_number not in self.tickets.index:
            return None
        row = self.tickets.loc[ticket_number]
        return CanonicalTicket(
            ticket_number=ticket_number,
            revenue=float(row["revenue"]),
            gross_profit_pct=None if pd.isna(row["gross_profit_pct"]) else float(row["gross_profit_pct"]),
            store_id=None if pd.isna(row["store_id"]) else row["store_id"],
            sales_rep=None if pd.isna(row["sales_rep"]) else row["sales_rep"],
            sale_date=None if pd.isna(row["sale_date"]) else row["sale_date"].to_pydatetime(),
            source_kind=SourceKind(row["source_kind"]),
            items_sold=float(row["items_sold"]),
        )

    def ticket_index(self) -> dict[str, dict]:
        """ticket number -> {store_id, sales_rep, sale_day}, built in one pass."""
        return self.tickets[["store_id", "sales_rep", "sale_day"]].to_dict("index")


def _first_per_ticket(
    df: pd.DataFrame, columns: list[str], fill: tuple[str, ...] = ()
) -> pd.DataFrame:
    """
    The first line of each ticket number, taken whole, in line order.

    `fill` columns instead take the first non-null value across the ticket's
    lines, so a blank total on the first line doesn't zero the ticket.
    """
    first = df.drop_duplicates("ticket_number", keep="first").set_index("ticket_number")
    first = first[columns].copy()
    if fill:
        filled = df.groupby("ticket_number", sort=False)[list(fill)].first()
        for col in fill:
            first[col] = filled[col]
    return first


class TicketReconciler:
    """
    Builds the canonical ledger from normalized sale, return and gift-card lines.

    Precedence: Sale > Return > GiftCard. The first stream that has a ticket
    number claims it, and the claiming stream alone supplies revenue and the
    store/rep/date attribution:
    1. Sale lines: the ticket's transaction total is repeated on every line,
       so the first value is taken, never summed
    2. Return lines: claim only tickets no sale has; every return ticket is
       still recorded for the return metrics
    3. Gift-card lines: amounts are summed per ticket and claim only tickets
       neither a sale nor a return has

    Gross profit comes from the claiming stream, or else from the first stream
    (in precedence order) that has a parseable value for the ticket.

    Usage:
        ledger = TicketReconciler().reconcile(sales_df, returns_df, gift_cards_df)
    """

    def reconcile(
        self, sales: pd.DataFrame, returns: pd.DataFrame, gift_cards: pd.DataFrame
    ) -> Ledger:
        total_lines = len(sales) + len(returns) + len(gift_cards)
        gift_card_value = float(gift_cards["giftcard_amount"].sum()) if len(gift_cards) else 0.0

        value_columns = ["transaction_total", "gross_profit_pct"] + ATTRIBUTE_COLUMNS
        sale = _first_per_ticket(sales, value_columns, fill=("transaction_total",))
        ret = _first_per_ticket(returns, value_columns, fill=("transaction_total",))
        gift = _first_per_ticket(gift_cards, ["gross_profit_pct"] + ATTRIBUTE_COLUMNS)
        gift_amounts = gift_cards.groupby("ticket_number", sort=False)["giftcard_amount"].sum()

        frames = []

        if len(sale):
            claimed = sale.rename(columns={"transaction_total": "revenue"})
            claimed["source_kind"] = SourceKind.SALE.value
            claimed["items_sold"] = sales.groupby("ticket_number", sort=False)["qty_sold"].sum()
            frames.append(claimed)

        ret_only = ret[~ret.index.isin(sale.index)]
        if len(ret_only):
            claimed = ret_only.rename(columns={"transaction_total": "revenue"})
            claimed["source_kind"] = SourceKind.RETURN_ONLY.value
            claimed["items_sold"] = 0.0
            frames.append(claimed)

        gift_only = gift[~gift.index.isin(sale.index) & ~gift.index.isin(ret.index)]
        if len(gift_only):
            claimed = gift_only.copy()
            claimed["revenue"] = gift_amounts.reindex(claimed.index)
            claimed["source_kind"] = SourceKind.GIFT_CARD_ONLY.value
            claimed["items_sold"] = 0.0
            frames.append(claimed)

        if frames:
            tickets = pd.concat(frames)[TICKET_COLUMNS].copy()
            tickets.index.name = "ticket_number"
            tickets["revenue"] = tickets["revenue"].astype("float64").fillna(0.0)
            tickets["items_sold"] = tickets["items_sold"].astype("float64").fillna(0.0)
            tickets["sale_date"] = pd.to_datetime(tickets["sale_date"])
            for col in ("store_id", "sales_rep", "sale_day"):
                tickets[col] = tickets[col].astype(object).where(tickets[col].notna(), None)
            tickets["gross_profit_pct"] = self._fallback_gross_profit(tickets, sale, ret, gift)
            tickets = tickets.sort_index()
        else:
            tickets = _empty_tickets()

        ledger = Ledger(
            tickets=tickets,
            returns=self._return_tickets(ret, sale.index),
            total_lines=total_lines,
            gift_card_value=gift_card_value,
        )
        logger.info(
            f"Reconciled {total_lines:,} lines into {len(ledger):,} tickets "
            f"{ledger.source_counts()}"
        )
        return ledger

    @staticmethod
    def _fallback_gross_profit(
        tickets: pd.DataFrame, *sources: pd.DataFrame
    ) -> pd.Series:
        gross_profit = tickets["gross_profit_pct"].astype("float64")
        for source in sources:
            gross_profit = gross_profit.fillna(
                source["gross_profit_pct"].astype("float64").reindex(tickets.index)
            )
        return gross_profit

    @staticmethod
    def _return_tickets(ret: pd.DataFrame, sale_tickets: pd.Index) -> pd.DataFrame:
        if len(ret) == 0:
            return _empty_returns()
        returns = pd.DataFrame(
            {
                "value": ret["transaction_total"].astype("float64").fillna(0.0),
                "store_id": ret["store_id"],
                "sales_rep": ret["sales_rep"],
                "sale_day": ret["sale_day"],
                "claimed_by_sale": ret.index.isin(sale_tickets),
            },
            index=ret.index,
        )
        returns.index.name = "ticket_number"
        return returns.sort_index()
