"""
Sales metrics and dimensional rollups over the canonical ledger.

Computes:
- Aggregate KPIs (totals, average ticket, return rate, gift card usage)
- Store and rep rollups with daily-revenue consistency scores
- Leaderboards over the rollups
- The daily per-rep ticket tier report

Every function reads the ledger only. Ratios whose denominator is zero are
reported as 0 rather than NaN.
"""

from dataclasses import replace
from datetime import date

import numpy as np
import pandas as pd

from .models import (
    DailyRepEntry,
    DailyRepReport,
    DailyStoreReport,
    Leaderboard,
    LeaderboardEntry,
    Leaderboards,
    RepMetrics,
    SalesDateRange,
    SalesMetrics,
    StoreMetrics,
)
from .reconciliation import Ledger, SourceKind

ROLLUP_COLUMNS = [
    "revenue",
    "ticket_count",
    "avg_ticket_size",
    "gross_profit_percent",
    "return_rate",
    "items_sold",
    "consistency_score",
]

# Daily report ticket tiers, lower bound inclusive, upper bound exclusive
TICKET_TIERS = [(125.0, 199.0), (199.0, 299.0), (299.0, np.inf)]


def safe_ratio(numerator: float, denominator: float) -> float:
    """numerator / denominator, or 0 when the denominator is zero."""
    if denominator == 0 or pd.isna(denominator):
        return 0.0
    return float(numerator / denominator)


def consistency_score(daily_revenue: pd.Series) -> float:
    """
    Score how steady daily revenue is, 0-100.

    100 minus the coefficient of variation (population std / mean) as a
    percentage, clamped to the range. A single day is perfectly consistent;
    no days, or a non-positive mean, scores 0.
    """
    values = daily_revenue.dropna().astype("float64")
    if len(values) == 0:
        return 0.0
    if len(values) == 1:
        return 100.0
    mean = values.mean()
    if mean <= 0:
        return 0.0
    cv = values.std(ddof=0) / mean
    return float(np.clip(100 - cv * 100, 0, 100))


def compute_sales_metrics(ledger: Ledger) -> tuple[SalesMetrics, list[str]]:
    """
    Compute the aggregate KPIs.

    Returns:
        The metrics and the names of the ratios that were zeroed because
        their denominator was zero
    """
    tickets = ledger.tickets
    ticket_count = len(tickets)
    total_sales = float(tickets["revenue"].sum())
    return_count = len(ledger.returns)
    gift_card_tickets = int((tickets["source_kind"] == SourceKind.GIFT_CARD_ONLY.value).sum())

    guarded = []
    if ticket_count == 0:
        guarded.extend(["avgTicketValue", "giftCardUsage"])
    if ticket_count + return_count == 0:
        guarded.append("returnRate")

    gross_profit = tickets["gross_profit_pct"].dropna()
    dated = tickets[tickets["sale_day"].notna()]
    daily_revenue = dated.groupby("sale_day")["revenue"].sum()

    dates = tickets["sale_date"].dropna()
    date_range = SalesDateRange()
    if len(dates) > 0:
        date_range = SalesDateRange(
            earliest=dates.min().isoformat(), latest=dates.max().isoformat()
        )

    metrics = SalesMetrics(
        total_sales=total_sales,
        ticket_count=ticket_count,
        avg_ticket_value=safe_ratio(total_sales, ticket_count),
        gross_profit_percent=float(gross_profit.mean()) if len(gross_profit) else 0.0,
        items_sold=float(tickets["items_sold"].sum()),
        return_rate=safe_ratio(return_count, ticket_count + return_count),
        gift_card_usage=safe_ratio(gift_card_tickets, ticket_count),
        sales_consistency=consistency_score(daily_revenue),
        unique_tickets=ticket_count,
        return_count=return_count,
        gift_card_ticket_count=gift_card_tickets,
        total_return_value=float(ledger.returns["value"].sum()),
        total_gift_card_value=ledger.gift_card_value,
        total_lines=ledger.total_lines,
        stores=sorted(tickets["store_id"].dropna().unique().tolist()),
        sales_reps=sorted(tickets["sales_rep"].dropna().unique().tolist()),
        date_range=date_range,
    )
    return metrics, guarded


def exclude_online(ledger: Ledger, online_ids: tuple[str, ...]) -> Ledger:
    """Drop tickets and returns whose store or rep is an online channel id."""
    if not online_ids:
        return ledger

    def keep(df: pd.DataFrame) -> pd.Series:
        return ~(df["store_id"].isin(online_ids) | df["sales_rep"].isin(online_ids))

    return Ledger(
        tickets=ledger.tickets[keep(ledger.tickets)],
        returns=ledger.returns[keep(ledger.returns)],
        total_lines=ledger.total_lines,
        gift_card_value=ledger.gift_card_value,
    )


def rep_view_ledger(ledger: Ledger, online_ids: tuple[str, ...]) -> Ledger:
    """
    The tickets rep-level views judge reps on.

    On top of the online channel, drops every ticket number that appears in
    the return stream (a sale that was later returned included) and every
    ticket with zero or negative revenue. Returns are kept so rep return
    rates still see them.
    """
    in_store = exclude_online(ledger, online_ids)
    tickets = in_store.tickets
    keep = ~tickets.index.isin(ledger.returns.index) & (tickets["revenue"] > 0)
    return replace(in_store, tickets=tickets[keep])


def _rollup(ledger: Ledger, key: str) -> pd.DataFrame:
    """
    Group the ledger by one entity column in a single pass.

    Tickets with no value for the entity are left out of this rollup only.
    Sorted by revenue descending, then entity id.
    """
    tickets = ledger.tickets[ledger.tickets[key].notna()]
    if len(tickets) == 0:
        return pd.DataFrame(columns=[key] + ROLLUP_COLUMNS)

    rollup = tickets.groupby(key).agg(
        revenue=("revenue", "sum"),
        ticket_count=("revenue", "size"),
        gross_profit_percent=("gross_profit_pct", "mean"),
        items_sold=("items_sold", "sum"),
    )
    rollup["gross_profit_percent"] = rollup["gross_profit_percent"].fillna(0.0)
    rollup["avg_ticket_size"] = rollup["revenue"] / rollup["ticket_count"]

    returns = ledger.returns[ledger.returns[key].notna()]
    return_counts = returns.groupby(key).size().reindex(rollup.index, fill_value=0)
    rollup["return_rate"] = return_counts / (rollup["ticket_count"] + return_counts)

    daily = (
        tickets[tickets["sale_day"].notna()]
        .groupby([key, "sale_day"])["revenue"]
        .sum()
    )
    scores = {entity: consistency_score(days) for entity, days in daily.groupby(level=0)}
    rollup["consistency_score"] = pd.Series(scores, dtype="float64").reindex(
        rollup.index, fill_value=0.0
    )

    rollup = rollup.reset_index()
    return rollup.sort_values(["revenue", key], ascending=[False, True]).reset_index(
        drop=True
    )[[key] + ROLLUP_COLUMNS]


def rollup_by_store(ledger: Ledger) -> pd.DataFrame:
    """One row per store: revenue, ticket count, averages and consistency."""
    return _rollup(ledger, "store_id")


def rollup_by_rep(ledger: Ledger) -> pd.DataFrame:
    """
    One row per sales rep, plus the stores each rep sold at.

    Pass a ledger already restricted to rep-level tickets (see rep_view_ledger).
    """
    rollup = _rollup(ledger, "sales_rep")
    if len(rollup) == 0:
        rollup["stores_worked"] = pd.Series(dtype="object")
        rollup["store_count"] = pd.Series(dtype="int64")
        return rollup

    worked = (
        ledger.tickets.dropna(subset=["sales_rep", "store_id"])
        .groupby("sales_rep")["store_id"]
        .agg(lambda stores: sorted(set(stores)))
    )
    stores = rollup["sales_rep"].map(worked)
    stores = stores.apply(lambda s: s if isinstance(s, list) else [])
    rollup["stores_worked"] = stores.apply(", ".join)
    rollup["store_count"] = stores.apply(len)
    return rollup


def store_metrics(rollup: pd.DataFrame) -> list[StoreMetrics]:
    return [StoreMetrics(**row) for row in rollup.to_dict("records")]


def rep_metrics(rollup: pd.DataFrame) -> list[RepMetrics]:
    records = rollup.rename(columns={"sales_rep": "rep_name"}).to_dict("records")
    return [RepMetrics(**row) for row in records]


def _leaderboard(rollup: pd.DataFrame, key: str, top_n: int) -> Leaderboard:
    def top(metric: str) -> list[LeaderboardEntry]:
        ranked = rollup.sort_values([metric, key], ascending=[False, True]).head(top_n)
        return [
            LeaderboardEntry(
                entity_id=row[key],
                avg_ticket_size=row["avg_ticket_size"],
                gross_profit_percent=row["gross_profit_percent"],
                revenue=row["revenue"],
                ticket_count=row["ticket_count"],
            )
            for row in ranked.to_dict("records")
        ]

    return Leaderboard(
        avg_ticket_size=top("avg_ticket_size"),
        gross_profit=top("gross_profit_percent"),
        total_revenue=top("revenue"),
    )


def build_leaderboards(
    store_rollup: pd.DataFrame, rep_rollup: pd.DataFrame, top_n: int = 5
) -> Leaderboards:
    """Top-N stores and reps by average ticket, gross profit and revenue."""
    return Leaderboards(
        reps=_leaderboard(rep_rollup, "sales_rep", top_n),
        stores=_leaderboard(store_rollup, "store_id", top_n),
    )


def _tier_counts(revenue: pd.Series) -> list[int]:
    return [int(((revenue >= low) & (revenue < high)).sum()) for low, high in TICKET_TIERS]


def build_daily_rep_report(ledger: Ledger, day: date | str) -> DailyRepReport:
    """
    Per-store rep averages and ticket tiers for one calendar day.

    Reps with a single ticket that day are left out (usually a lone return).
    Stores are ordered by id, reps by average ticket descending.
    """
    day = day.isoformat() if isinstance(day, date) else str(day)
    tickets = ledger.tickets[ledger.tickets["sale_day"] == day].dropna(
        subset=["store_id", "sales_rep"]
    )

    stores = []
    for store_id, store_tickets in tickets.groupby("store_id", sort=True):
        reps = []
        store_revenue = 0.0
        store_ticket_count = 0
        for rep_name, rep_tickets in store_tickets.groupby("sales_rep", sort=True):
            count = len(rep_tickets)
            if count <= 1:
                continue
            revenue = float(rep_tickets["revenue"].sum())
            tier1, tier2, tier3 = _tier_counts(rep_tickets["revenue"])
            reps.append(
                DailyRepEntry(
                    rep_name=rep_name,
                    avg_ticket=revenue / count,
                    total_tickets=count,
                    tier1_count=tier1,
                    tier2_count=tier2,
                    tier3_count=tier3,
                )
            )
            store_revenue += revenue
            store_ticket_count += count

        reps.sort(key=lambda r: (-r.avg_ticket, r.rep_name))
        stores.append(
            DailyStoreReport(
                store_id=store_id,
                reps=reps,
                total_reps=len(reps),
                store_avg_ticket=safe_ratio(store_revenue, store_ticket_count),
            )
        )

    return DailyRepReport(
        date=day,
        stores=stores,
        total_stores=len(stores),
        total_reps=sum(s.total_reps for s in stores),
    )
