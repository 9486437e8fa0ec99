"""
Integration tests for the analytics engine.

Each test runs a full request: fetch from a record store, normalize,
reconcile once, then derive every view from the same ledger.
"""

import json

import pytest

from ticket_ledger import DuckDBRecordStore, InMemoryRecordStore, SalesAnalyticsEngine
from ticket_ledger.core.config import EngineSettings
from ticket_ledger.core.exceptions import InvalidRequestError
from ticket_ledger.core.models import AnalyticsRequest
from ticket_ledger.core.reconciliation import SourceKind

from conftest import TENANT, make_gift_line, make_line, make_tickets


def _request(**kwargs):
    return {"tenantId": TENANT, **kwargs}


def _scenario_c_sales():
    lines = []
    for i, avg in enumerate([80, 75, 50, 40]):
        lines += make_tickets(f"C{i}", 5, avg, rep=f"Rep{i}", store="S1")
    return lines


def _issue_types(response):
    return [i.issue_type for i in response.diagnostics.issues]


class UntouchableStore:
    """Fails the test if anything is read."""

    def __init__(self):
        self.calls = []

    def collect(self, table, tenant_id, date_range):
        self.calls.append(("collect", table))
        return []

    def take(self, table, tenant_id, date_range, limit):
        self.calls.append(("take", table))
        return []


class TestScenarios:
    """End-to-end checks of the reconciliation scenarios."""

    def test_sale_and_return_on_same_ticket(self, memory_store):
        """Test a sale of $100 with a $30 return on the same ticket counts $100 once."""
        engine = SalesAnalyticsEngine(
            memory_store(sales=[make_line("T1", 100)], returns=[make_line("T1", 30)])
        )
        response = engine.run(_request())

        assert response.metrics.total_sales == 100.0
        assert response.metrics.ticket_count == 1
        assert response.metrics.total_return_value == 30.0
        assert response.metrics.return_rate == pytest.approx(1 / 2)

    def test_gift_card_only_ticket(self, memory_store):
        """Test two gift-card lines on an otherwise unknown ticket sum to its revenue."""
        engine = SalesAnalyticsEngine(
            memory_store(gift_cards=[make_gift_line("T2", 20), make_gift_line("T2", 15)])
        )
        response = engine.run(_request())
        ledger = engine.build_ledger(AnalyticsRequest.parse(_request())).ledger

        assert response.metrics.total_sales == 35.0
        assert response.metrics.gift_card_usage == 1.0
        assert ledger.ticket("T2").source_kind == SourceKind.GIFT_CARD_ONLY

    def test_relocation_candidate(self, memory_store):
        """Test reps at $80, $75, $50, $40: only the $40 rep is flagged for relocation."""
        engine = SalesAnalyticsEngine(memory_store(sales=_scenario_c_sales()))
        response = engine.run(_request())

        (store,) = response.scheduling_data.stores
        assert store.store_avg_ticket == pytest.approx(61.25)
        assert [r.rep_name for r in store.relocation_candidates] == ["Rep3"]
        assert response.metrics.total_sales == pytest.approx(5 * (80 + 75 + 50 + 40))

    def test_alerts_from_the_same_ledger(self, memory_store):
        """Test alerts flag the reps and store whose day fell under $70."""
        engine = SalesAnalyticsEngine(memory_store(sales=_scenario_c_sales()))
        alerts = engine.run(_request()).performance_alerts

        assert alerts.benchmark == 70.0
        assert [a.entity_id for a in alerts.underperforming_reps] == ["Rep2", "Rep3"]
        assert all(a.severity == "NeedsCoaching" for a in alerts.underperforming_reps)
        assert [a.entity_id for a in alerts.underperforming_stores] == ["S1"]

    def test_custom_benchmark_setting(self, memory_store):
        """Test the engine applies the configured benchmark."""
        engine = SalesAnalyticsEngine(
            memory_store(sales=_scenario_c_sales()), EngineSettings(benchmark=45)
        )
        alerts = engine.run(_request()).performance_alerts

        assert alerts.benchmark == 45.0
        assert [a.entity_id for a in alerts.underperforming_reps] == ["Rep3"]
        assert alerts.underperforming_stores == []


class TestRequestHandling:
    """Tests for request validation and filters."""

    def test_missing_tenant_reads_nothing(self):
        """Test an invalid request fails before any store access."""
        store = UntouchableStore()
        with pytest.raises(InvalidRequestError):
            SalesAnalyticsEngine(store).run({"storeId": "S1"})
        assert store.calls == []

    def test_tenant_without_data(self, memory_store):
        """Test a tenant with no tickets gets zeros and a division-guard note."""
        engine = SalesAnalyticsEngine(memory_store(sales=[make_line("T1", 100)]))
        response = engine.run({"tenantId": "someone-else"})

        assert response.metrics.ticket_count == 0
        assert response.metrics.avg_ticket_value == 0.0
        assert response.store_performance.stores == []
        assert response.scheduling_data.stores == []
        assert "division_guarded" in _issue_types(response)
        assert response.diagnostics.retrievable

    def test_tenants_are_isolated(self, memory_store):
        """Test another tenant's tickets never leak into a response."""
        engine = SalesAnalyticsEngine(
            memory_store(sales=[make_line("T1", 100), make_line("T2", 900, tenant="other")])
        )
        assert engine.run(_request()).metrics.total_sales == 100.0

    def test_date_range(self, memory_store):
        """Test only tickets inside the window are counted."""
        sales = make_tickets("A", 2, 100) + make_tickets("B", 3, 50, day=6)
        engine = SalesAnalyticsEngine(memory_store(sales=sales))
        response = engine.run(_request(dateRange={"start": "2024-03-01", "end": "2024-03-04"}))

        assert response.metrics.ticket_count == 2
        assert response.metrics.date_range.latest == "2024-03-04T15:00:00"

    def test_store_and_rep_filters(self, memory_store):
        """Test store and rep filters narrow every view."""
        sales = (
            make_tickets("A", 2, 100, store="S1", rep="Ann")
            + make_tickets("B", 2, 80, store="S2", rep="Ann")
            + make_tickets("C", 2, 60, store="S2", rep="Bob")
        )
        engine = SalesAnalyticsEngine(memory_store(sales=sales))

        by_store = engine.run(_request(storeId="S2"))
        assert [s.store_id for s in by_store.store_performance.stores] == ["S2"]
        assert by_store.metrics.total_sales == 280.0

        by_rep = engine.run(_request(salesRepId="Ann"))
        assert [r.rep_name for r in by_rep.rep_performance.reps] == ["Ann"]
        assert by_rep.metrics.total_sales == 360.0

        both = engine.run(_request(storeId="S2", salesRepId="Bob"))
        assert both.metrics.total_sales == 120.0

        everything = engine.run(_request(storeId="all", salesRepId="all"))
        assert everything.metrics.total_sales == 480.0

    def test_excluded_streams_are_skipped(self, memory_store):
        """Test excluded streams are not read and contribute nothing."""
        engine = SalesAnalyticsEngine(
            memory_store(
                sales=[make_line("T1", 100)],
                returns=[make_line("R1", 40)],
                gift_cards=[make_gift_line("G1", 25)],
            )
        )
        response = engine.run(_request(includeReturns=False, includeGiftCards=False))

        assert response.metrics.total_sales == 100.0
        assert response.metrics.total_return_value == 0.0
        assert response.diagnostics.retrieval["return"].status == "skipped"
        assert response.diagnostics.retrieval["gift_card"].strategy == "none"
        assert response.diagnostics.retrieval["sale"].status == "ok"


class TestRepLevelViews:
    """Tests for the tickets rep-level views are built from."""

    def test_online_kept_in_totals_but_not_rep_views(self, memory_store):
        """Test online tickets count toward totals and stores but not reps or scheduling."""
        sales = make_tickets("W", 5, 100, store="ONLINE", rep="Web") + make_tickets("S", 5, 60)
        response = SalesAnalyticsEngine(memory_store(sales=sales)).run(_request())

        assert response.metrics.total_sales == 800.0
        assert {s.store_id for s in response.store_performance.stores} == {"ONLINE", "S1"}
        assert [r.rep_name for r in response.rep_performance.reps] == ["Ann"]
        assert [s.store_id for s in response.scheduling_data.stores] == ["S1"]
        assert [e.entity_id for e in response.leaderboards.reps.total_revenue] == ["Ann"]

    def test_return_only_ticket_kept_out_of_rep_views(self, memory_store):
        """Test a negative return-only ticket counts in totals but never against the rep."""
        engine = SalesAnalyticsEngine(
            memory_store(sales=make_tickets("A", 5, 80), returns=[make_line("R1", -300)])
        )
        response = engine.run(_request())

        assert response.metrics.total_sales == pytest.approx(100.0)
        assert response.performance_alerts.underperforming_reps == []
        (ann,) = response.rep_performance.reps
        assert (ann.ticket_count, ann.avg_ticket_size) == (5, 80.0)
        (ranked,) = response.scheduling_data.stores[0].reps
        assert ranked.avg_ticket_size == pytest.approx(80.0)


class TestRetrievalDiagnostics:
    """Tests that retrieval problems degrade the response instead of failing it."""

    def test_degraded_read(self, memory_store):
        """Test a capped store falls back to a bounded read and says so."""
        engine = SalesAnalyticsEngine(memory_store(sales=make_tickets("A", 3, 50), row_cap=2))
        response = engine.run(_request())

        retrieval = response.diagnostics.retrieval["sale"]
        assert retrieval.status == "degraded"
        assert retrieval.strategy == "take"
        assert retrieval.record_count == 3
        assert not retrieval.truncated
        assert "retrieval_degraded" in _issue_types(response)
        assert response.metrics.ticket_count == 3

    def test_truncated_fallback(self, memory_store):
        """Test a fallback read that hits its limit is flagged as truncated."""
        settings = EngineSettings(safety_row_limit=2, fallback_row_limit=2)
        engine = SalesAnalyticsEngine(memory_store(sales=make_tickets("A", 3, 50)), settings)
        response = engine.run(_request())

        assert response.diagnostics.retrieval["sale"].truncated
        assert response.metrics.ticket_count == 2

    def test_failed_stream(self):
        """Test a stream that cannot be read is empty and marks the result unretrievable."""
        store = InMemoryRecordStore({"sales": [make_line("T1", 100)], "giftcards": []})
        response = SalesAnalyticsEngine(store).run(_request())

        assert response.diagnostics.retrieval["return"].status == "failed"
        assert not response.diagnostics.retrievable
        assert "retrieval_failed" in _issue_types(response)
        assert response.metrics.total_sales == 100.0

    def test_parse_problems_reported(self, memory_store):
        """Test skipped gross profit values show up in diagnostics."""
        engine = SalesAnalyticsEngine(
            memory_store(sales=[make_line("T1", 100, gross_profit="abc"), make_line("T2", 50)])
        )
        response = engine.run(_request())

        (issue,) = [i for i in response.diagnostics.issues if i.issue_type == "parse_skipped"]
        assert issue.source == "sale"
        assert issue.sample_values == ["abc"]
        assert response.metrics.gross_profit_percent == pytest.approx(40.0)


class TestDeterminism:
    """Tests that the same snapshot always gives the same answer."""

    @pytest.fixture
    def lines(self):
        sales = _scenario_c_sales() + make_tickets("D", 3, 90, day=1, store="S2", rep="Bob")
        returns = [make_line("C0-0-0", 20, rep="Rep0"), make_line("R1", 35, store="S2", rep="Bob")]
        gift_cards = [make_gift_line("G1", 15, store="S2", rep="Bob")]
        return sales, returns, gift_cards

    def test_repeated_runs_serialize_identically(self, memory_store, lines):
        """Test two runs over the same data produce identical JSON."""
        engine = SalesAnalyticsEngine(memory_store(*lines))
        first = engine.run(_request()).to_json()

        assert engine.run(_request()).to_json() == first
        assert json.loads(first)["metrics"]["ticketCount"] == 25

    def test_stores_agree(self, memory_store, lines):
        """Test the in-memory and DuckDB stores give the same analytics."""
        sales, returns, gift_cards = lines
        duck = DuckDBRecordStore(page_size=4)
        duck.load_records("sales", sales)
        duck.load_records("returns", returns)
        duck.load_records("giftcards", gift_cards)

        try:
            from_duck = SalesAnalyticsEngine(duck).run(_request())
        finally:
            duck.close()
        from_memory = SalesAnalyticsEngine(memory_store(*lines)).run(_request())

        assert from_duck.model_dump(exclude={"diagnostics"}) == from_memory.model_dump(
            exclude={"diagnostics"}
        )


class TestDailyRepReport:
    """Tests for the engine's daily report entry point."""

    def test_report_for_one_day(self, memory_store):
        """Test the report covers only the requested day and skips online reps."""
        sales = (
            make_tickets("A", 2, 150)
            + make_tickets("B", 2, 250, rep="Bob")
            + make_tickets("C", 3, 400, day=1)
            + make_tickets("W", 2, 300, store="ONLINE", rep="Web")
        )
        engine = SalesAnalyticsEngine(memory_store(sales=sales))
        report = engine.daily_rep_report(_request(), "2024-03-04")

        (store,) = report.stores
        assert store.store_id == "S1"
        assert [r.rep_name for r in store.reps] == ["Bob", "Ann"]
        assert store.reps[0].tier2_count == 2
        assert store.reps[1].tier1_count == 2
        assert store.store_avg_ticket == pytest.approx(200.0)

    def test_report_validates_request(self):
        """Test the daily report rejects a request without a tenant."""
        with pytest.raises(InvalidRequestError):
            SalesAnalyticsEngine(UntouchableStore()).daily_rep_report({}, "2024-03-04")
