"""Shared fixtures: ticket line builders, ledgers and record stores."""

from datetime import datetime, timedelta

import pytest

from ticket_ledger.clients import InMemoryRecordStore, TicketStreamLoader
from ticket_ledger.core.config import EngineSettings
from ticket_ledger.core.fetcher import StreamKind
from ticket_ledger.core.reconciliation import TicketReconciler

TENANT = "tenant-1"
DAY_ONE = datetime(2024, 3, 4, 15, 0)


def make_line(
    ticket,
    total,
    store="S1",
    rep="Ann",
    sale_date="2024-03-04T15:00:00Z",
    gross_profit="40%",
    qty=1,
    tenant=TENANT,
    **extra,
):
    row = {
        "tenant_id": tenant,
        "ticket_number": ticket,
        "sale_date": sale_date,
        "store_id": store,
        "sales_rep": rep,
        "transaction_total": total,
        "gross_profit": gross_profit,
        "qty_sold": qty,
    }
    row.update(extra)
    return row


def make_gift_line(ticket, amount, **kwargs):
    kwargs.setdefault("gross_profit", None)
    kwargs.setdefault("qty", None)
    return make_line(ticket, None, giftcard_amount=amount, **kwargs)


def make_tickets(prefix, count, total, day=0, **kwargs):
    """`count` single-line sale tickets of `total` each, on DAY_ONE + `day`."""
    sale_date = (DAY_ONE + timedelta(days=day)).isoformat()
    return [
        make_line(f"{prefix}-{day}-{i}", total, sale_date=sale_date, **kwargs)
        for i in range(count)
    ]


@pytest.fixture
def line():
    return make_line


@pytest.fixture
def gift_line():
    return make_gift_line


@pytest.fixture
def tickets():
    return make_tickets


@pytest.fixture
def settings():
    return EngineSettings()


@pytest.fixture
def ledger_from():
    """Build a ledger straight from raw line dicts."""
    loader = TicketStreamLoader()
    reconciler = TicketReconciler()

    def build(sales=(), returns=(), gift_cards=()):
        sale_df, _ = loader.load_stream(StreamKind.SALE, list(sales))
        return_df, _ = loader.load_stream(StreamKind.RETURN, list(returns))
        gift_df, _ = loader.load_stream(StreamKind.GIFT_CARD, list(gift_cards))
        return reconciler.reconcile(sale_df, return_df, gift_df)

    return build


@pytest.fixture
def memory_store():
    """Build an in-memory store holding the three ticket tables."""

    def build(sales=(), returns=(), gift_cards=(), row_cap=None):
        return InMemoryRecordStore(
            {"sales": list(sales), "returns": list(returns), "giftcards": list(gift_cards)},
            row_cap=row_cap,
        )

    return build
