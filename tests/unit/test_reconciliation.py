"""
Unit tests for the ticket reconciler.

Covers stream precedence, duplicate handling within a stream and the
attribution of store, rep and gross profit.
"""

import pandas as pd
import pytest

from ticket_ledger.core.reconciliation import CanonicalTicket, Ledger, SourceKind


class TestPrecedence:
    """Tests that every ticket's revenue comes from exactly one stream."""

    def test_sale_wins_over_return(self, ledger_from, line):
        """Test a ticket in sales and returns keeps the sale total; the return is tracked separately."""
        ledger = ledger_from(sales=[line("T1", 100)], returns=[line("T1", 30)])

        ticket = ledger.ticket("T1")
        assert ticket.revenue == 100.0
        assert ticket.source_kind == SourceKind.SALE
        assert len(ledger) == 1
        assert ledger.returns.loc["T1", "value"] == 30.0
        assert bool(ledger.returns.loc["T1", "claimed_by_sale"])

    def test_gift_card_only_ticket_sums_its_lines(self, ledger_from, gift_line):
        """Test gift-card lines are summed per ticket when no other stream has it."""
        ledger = ledger_from(gift_cards=[gift_line("T2", 20), gift_line("T2", 15)])

        ticket = ledger.ticket("T2")
        assert ticket.revenue == 35.0
        assert ticket.source_kind == SourceKind.GIFT_CARD_ONLY

    def test_return_only_ticket_uses_return_total(self, ledger_from, line):
        """Test an unclaimed return ticket is attributed from the return stream."""
        ledger = ledger_from(returns=[line("R1", 45, store="S2", rep="Cy")])

        ticket = ledger.ticket("R1")
        assert ticket.revenue == 45.0
        assert ticket.source_kind == SourceKind.RETURN_ONLY
        assert (ticket.store_id, ticket.sales_rep) == ("S2", "Cy")
        assert not bool(ledger.returns.loc["R1", "claimed_by_sale"])

    def test_ticket_in_all_three_streams_is_claimed_once(self, ledger_from, line, gift_line):
        """Test the sale claims a ticket present everywhere and nothing is added."""
        ledger = ledger_from(
            sales=[line("T1", 100)],
            returns=[line("T1", 30, store="S9")],
            gift_cards=[gift_line("T1", 50)],
        )

        assert len(ledger) == 1
        assert ledger.ticket("T1").revenue == 100.0
        assert ledger.ticket("T1").store_id == "S1"
        assert ledger.gift_card_value == 50.0

    def test_return_beats_gift_card(self, ledger_from, line, gift_line):
        """Test a return claims a ticket before the gift-card stream can."""
        ledger = ledger_from(returns=[line("T5", 60)], gift_cards=[gift_line("T5", 25)])

        assert ledger.ticket("T5").revenue == 60.0
        assert ledger.ticket("T5").source_kind == SourceKind.RETURN_ONLY

    def test_no_double_counting(self, ledger_from, line, gift_line):
        """Test canonical revenue never exceeds the sum of raw totals."""
        sales = [line("T1", 100), line("T1", 100), line("T2", 40)]
        returns = [line("T1", 30), line("R1", 20)]
        gift_cards = [gift_line("T2", 40), gift_line("G1", 10)]
        ledger = ledger_from(sales=sales, returns=returns, gift_cards=gift_cards)

        raw_total = sum(r["transaction_total"] for r in sales + returns) + 10
        assert ledger.total_revenue == 100 + 40 + 20 + 10
        assert ledger.total_revenue <= raw_total
        assert ledger.source_counts() == {"Sale": 2, "ReturnOnly": 1, "GiftCardOnly": 1}


class TestDuplicatesWithinStream:
    """Tests for repeated lines of one ticket in one stream."""

    def test_first_sale_line_wins(self, ledger_from, line):
        """Test repeated sale lines set the total once and are never summed."""
        ledger = ledger_from(sales=[line("T1", 100, qty=2), line("T1", 120, qty=3)])

        ticket = ledger.ticket("T1")
        assert ticket.revenue == 100.0
        assert ticket.items_sold == 5.0

    def test_attribution_comes_from_one_line(self, ledger_from, line):
        """Test store and rep come from the ticket's first line, never mixed across lines."""
        ledger = ledger_from(sales=[line("T1", 100, store=None, rep="Ann"), line("T1", 100, store="S2", rep="Bob")])

        ticket = ledger.ticket("T1")
        assert (ticket.store_id, ticket.sales_rep) == (None, "Ann")

    def test_blank_first_total_is_filled(self, ledger_from, line):
        """Test a blank total on the first line is taken from a later line; attribution is not."""
        ledger = ledger_from(
            sales=[line("T1", None, store=None), line("T1", 90, store="S3")]
        )

        ticket = ledger.ticket("T1")
        assert ticket.revenue == 90.0
        assert ticket.store_id is None

    def test_distinct_return_tickets(self, ledger_from, line):
        """Test each return ticket is recorded once however many lines it has."""
        ledger = ledger_from(returns=[line("R1", 30), line("R1", 30), line("R2", 10)])
        assert ledger.returns["value"].sum() == 40.0
        assert list(ledger.returns.index) == ["R1", "R2"]


class TestAttribution:
    """Tests for entity and gross profit attribution."""

    def test_gross_profit_falls_back_to_other_streams(self, ledger_from, line):
        """Test a sale without gross profit takes it from the return stream."""
        ledger = ledger_from(sales=[line("T1", 100, gross_profit="")], returns=[line("T1", 30, gross_profit="35%")])
        assert ledger.ticket("T1").gross_profit_pct == 35.0

    def test_malformed_gross_profit_is_missing(self, ledger_from, line):
        """Test an unparseable gross profit is missing, not zero."""
        ledger = ledger_from(sales=[line("T1", 100, gross_profit="abc")])
        assert ledger.ticket("T1").gross_profit_pct is None

    def test_ticket_without_store_is_kept(self, ledger_from, line):
        """Test a ticket with no store or rep still counts toward the ledger."""
        ledger = ledger_from(sales=[line("T1", 100, store="", rep=None)])

        ticket = ledger.ticket("T1")
        assert ticket.store_id is None
        assert ticket.sales_rep is None
        assert ledger.total_revenue == 100.0

    def test_missing_total_counts_as_zero(self, ledger_from, line):
        """Test a claimed ticket with no total has zero revenue."""
        ledger = ledger_from(sales=[line("T1", None)])
        assert ledger.ticket("T1").revenue == 0.0

    def test_sale_date_comes_from_claiming_stream(self, ledger_from, line):
        """Test the sale date is the claiming stream's date."""
        ledger = ledger_from(
            sales=[line("T1", 100, sale_date="2024-03-04T15:00:00Z")],
            returns=[line("T1", 30, sale_date="2024-03-09T12:00:00Z")],
        )
        assert ledger.ticket("T1").sale_date == pd.Timestamp("2024-03-04 15:00").to_pydatetime()

    def test_ticket_index(self, ledger_from, line):
        """Test the ticket index maps each ticket to its store, rep and day."""
        ledger = ledger_from(sales=[line("T1", 100), line("T2", 50, store="S2", rep="Bob")])

        assert ledger.ticket_index() == {
            "T1": {"store_id": "S1", "sales_rep": "Ann", "sale_day": "2024-03-04"},
            "T2": {"store_id": "S2", "sales_rep": "Bob", "sale_day": "2024-03-04"},
        }


class TestLedger:
    """Tests for the ledger container."""

    def test_empty_streams_give_empty_ledger(self, ledger_from):
        """Test no input lines gives an empty, typed ledger."""
        ledger = ledger_from()

        assert len(ledger) == 0
        assert ledger.total_revenue == 0.0
        assert ledger.returns.empty
        assert ledger.tickets["revenue"].dtype == "float64"
        assert ledger.ticket("T1") is None

    def test_default_ledger(self):
        """Test a default-constructed ledger is empty."""
        assert len(Ledger()) == 0
        assert Ledger().source_counts() == {"Sale": 0, "ReturnOnly": 0, "GiftCardOnly": 0}

    def test_tickets_sorted_by_number(self, ledger_from, line, gift_line):
        """Test ledger order is by ticket number regardless of stream."""
        ledger = ledger_from(
            sales=[line("T3", 10), line("T1", 10)],
            returns=[line("T2", 10)],
            gift_cards=[gift_line("T0", 10)],
        )
        assert list(ledger.tickets.index) == ["T0", "T1", "T2", "T3"]

    def test_total_lines(self, ledger_from, line, gift_line):
        """Test the raw line count covers all three streams."""
        ledger = ledger_from(
            sales=[line("T1", 10), line("T1", 10)], returns=[line("T1", 5)], gift_cards=[gift_line("T1", 5)]
        )
        assert ledger.total_lines == 4

    def test_canonical_ticket_is_frozen(self, ledger_from, line):
        """Test canonical tickets cannot be modified."""
        ticket = ledger_from(sales=[line("T1", 10)]).ticket("T1")
        assert isinstance(ticket, CanonicalTicket)
        with pytest.raises(AttributeError):
            ticket.revenue = 0
