"""
Benchmark alerts for stores and reps.

A day is underperforming when the entity's average ticket that day is below
the benchmark. Entities with no underperforming day get no alert.
"""

from typing import Literal

import pandas as pd

from .models import AlertRecord, UnderperformingDay
from .reconciliation import Ledger

ENTITY_COLUMNS = {"Store": "store_id", "Rep": "sales_rep"}


def daily_averages(ledger: Ledger, key: str) -> pd.DataFrame:
    """Revenue, ticket count and average ticket per entity per calendar day."""
    tickets = ledger.tickets.dropna(subset=[key, "sale_day"])
    daily = tickets.groupby([key, "sale_day"]).agg(
        revenue=("revenue", "sum"), ticket_count=("revenue", "size")
    )
    daily["avg_ticket_size"] = daily["revenue"] / daily["ticket_count"]
    return daily.reset_index()


def classify_alerts(
    ledger: Ledger,
    entity_type: Literal["Store", "Rep"],
    benchmark: float = 70.0,
    coaching_ratio: float = 0.5,
    min_day_tickets: int = 1,
    max_alerts: int = 50,
) -> list[AlertRecord]:
    """
    Flag entities with days below the benchmark.

    Only days with at least `min_day_tickets` tickets count as worked. The
    alert is NeedsCoaching when the share of underperforming worked days is
    strictly above `coaching_ratio`, otherwise BeAware.

    Returns alerts ordered NeedsCoaching first, then by ratio descending,
    then by entity id, capped at `max_alerts`.
    """
    key = ENTITY_COLUMNS[entity_type]
    daily = daily_averages(ledger, key)
    worked = daily[daily["ticket_count"] >= min_day_tickets]

    alerts = []
    for entity_id, days in worked.groupby(key, sort=True):
        below = days[days["avg_ticket_size"] < benchmark].sort_values("sale_day")
        if len(below) == 0:
            continue
        ratio = len(below) / len(days)
        alerts.append(
            AlertRecord(
                entity_type=entity_type,
                entity_id=entity_id,
                underperforming_day_count=len(below),
                total_days_worked=len(days),
                performance_ratio=ratio,
                severity="NeedsCoaching" if ratio > coaching_ratio else "BeAware",
                underperforming_days=[
                    UnderperformingDay(
                        date=row["sale_day"],
                        avg_ticket_size=row["avg_ticket_size"],
                        ticket_count=row["ticket_count"],
                        revenue=row["revenue"],
                    )
                    for row in below.to_dict("records")
                ],
            )
        )

    alerts.sort(
        key=lambda a: (
            a.severity != "NeedsCoaching",
            -a.performance_ratio,
            a.entity_id,
        )
    )
    return alerts[:max_alerts]
