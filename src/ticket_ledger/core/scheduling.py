"""
Advisory staffing recommendations.

Ranks each store's reps by average ticket and projects a daily revenue from
the strongest few. The projection is illustrative, not a forecast.
"""

import math
from decimal import Decimal

import pandas as pd

from .models import OverallRep, RankedRep, SchedulingData, SchedulingRecommendation
from .reconciliation import Ledger


def rep_store_totals(ledger: Ledger) -> pd.DataFrame:
    """Revenue and ticket count per (store, rep) pair."""
    tickets = ledger.tickets.dropna(subset=["store_id", "sales_rep"])
    totals = tickets.groupby(["store_id", "sales_rep"]).agg(
        total_revenue=("revenue", "sum"), ticket_count=("revenue", "size")
    )
    totals["avg_ticket_size"] = totals["total_revenue"] / totals["ticket_count"]
    return totals.reset_index()


def relocation_cutoff(rep_count: int, percentile: float) -> int:
    """
    First 0-based position that ranks below the percentile.

    Computed in decimal so 0.8 * 5 is exactly 4, not 4.000000000000001.
    """
    return math.floor(Decimal(str(percentile)) * rep_count)


def recommend_schedule(
    ledger: Ledger,
    min_tickets: int = 5,
    shifts_per_day: int = 8,
    top_k: int = 3,
    relocation_percentile: float = 0.8,
    relocation_ratio: float = 0.8,
    top_overall: int = 10,
) -> SchedulingData:
    """
    Rank reps per store and pick relocation candidates.

    A rep is ranked at a store once they have `min_tickets` tickets there.
    A relocation candidate sits below the percentile cutoff of the store's
    ranking AND averages strictly less than `relocation_ratio` of the store's
    mean rep average; either condition alone is not enough.

    Stores are ordered by qualified rep count descending, then store id.
    """
    totals = rep_store_totals(ledger)
    qualified = totals[totals["ticket_count"] >= min_tickets]

    stores = []
    for store_id, reps in qualified.groupby("store_id", sort=True):
        reps = reps.sort_values(
            ["avg_ticket_size", "sales_rep"], ascending=[False, True]
        ).reset_index(drop=True)
        ranked = [
            RankedRep(
                rep_name=row["sales_rep"],
                rank=i + 1,
                avg_ticket_size=row["avg_ticket_size"],
                total_revenue=row["total_revenue"],
                ticket_count=row["ticket_count"],
            )
            for i, row in enumerate(reps.to_dict("records"))
        ]

        store_avg = float(reps["avg_ticket_size"].mean())
        cutoff = relocation_cutoff(len(ranked), relocation_percentile)
        candidates = [
            rep
            for i, rep in enumerate(ranked)
            if i >= cutoff and store_avg > 0 and rep.avg_ticket_size / store_avg < relocation_ratio
        ]

        stores.append(
            SchedulingRecommendation(
                store_id=store_id,
                reps=ranked,
                store_avg_ticket=store_avg,
                potential_daily_revenue=sum(r.avg_ticket_size for r in ranked[:top_k]) * shifts_per_day,
                relocation_candidates=candidates,
            )
        )

    stores.sort(key=lambda s: (-len(s.reps), s.store_id))

    overall = (
        qualified.groupby("sales_rep")
        .agg(
            total_revenue=("total_revenue", "sum"),
            ticket_count=("ticket_count", "sum"),
            store_count=("store_id", "nunique"),
        )
        .reset_index()
    )
    overall["avg_ticket_size"] = overall["total_revenue"] / overall["ticket_count"]
    overall = overall.sort_values(["avg_ticket_size", "sales_rep"], ascending=[False, True])

    return SchedulingData(
        stores=stores,
        top_overall_reps=[
            OverallRep(
                rep_name=row["sales_rep"],
                avg_ticket_size=row["avg_ticket_size"],
                total_revenue=row["total_revenue"],
                ticket_count=row["ticket_count"],
                store_count=row["store_count"],
            )
            for row in overall.head(top_overall).to_dict("records")
        ],
        total_stores=len(stores),
        total_reps=len(overall),
    )
