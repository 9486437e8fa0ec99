"""
Request pipeline of the sales analytics engine.

validate -> fetch (3 streams, concurrent) -> normalize and filter ->
reconcile once -> {metrics, rollups} concurrently -> alerts, scheduling.

Every view is computed from the same ledger, and every list in the response
has a deterministic order, so the same snapshot always serializes to the
same JSON.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import date

from ..clients.ticket_loader import LoadedStreams, TicketStreamLoader
from .alerts import classify_alerts
from .analysis import (
    build_daily_rep_report,
    build_leaderboards,
    compute_sales_metrics,
    rep_metrics,
    rep_view_ledger,
    rollup_by_rep,
    rollup_by_store,
    store_metrics,
)
from .config import EngineSettings
from .fetcher import BulkFetcher, FetchResult, RecordStore, RetrievalStatus, StreamKind
from .models import (
    AnalyticsRequest,
    AnalyticsResponse,
    DailyRepReport,
    Diagnostics,
    PerformanceAlerts,
    QualityIssue,
    RepPerformance,
    StorePerformance,
    StreamRetrieval,
)
from .quality import DataQualityIssue, IssueType, division_guarded_issue, retrieval_issue
from .reconciliation import Ledger, TicketReconciler
from .scheduling import recommend_schedule

logger = logging.getLogger(__name__)


@dataclass
class LedgerBuild:
    """The ledger for one request and what was learned while building it."""

    ledger: Ledger
    fetched: dict[StreamKind, FetchResult]
    streams: LoadedStreams


class SalesAnalyticsEngine:
    """
    Runs analytics requests against one record store.

    Usage:
        engine = SalesAnalyticsEngine(store, load_settings())
        response = engine.run({"tenantId": "t1", "dateRange": {...}})
        print(response.to_json())
    """

    def __init__(self, store: RecordStore, settings: EngineSettings | None = None):
        self.settings = settings or EngineSettings()
        self.fetcher = BulkFetcher(store, self.settings)
        self.loader = TicketStreamLoader()
        self.reconciler = TicketReconciler()

    def build_ledger(self, request: AnalyticsRequest) -> LedgerBuild:
        fetched = self.fetcher.fetch_streams(request)
        streams = self.loader.load(fetched).filtered(request.store_id, request.sales_rep_id)
        ledger = self.reconciler.reconcile(streams.sales, streams.returns, streams.gift_cards)
        return LedgerBuild(ledger=ledger, fetched=fetched, streams=streams)

    def run(self, payload: AnalyticsRequest | dict) -> AnalyticsResponse:
        """
        Compute every analytics view for one request.

        Raises:
            InvalidRequestError: If the request is malformed; nothing is fetched
        """
        request = AnalyticsRequest.parse(payload)
        logger.info(f"Analytics request for tenant {request.tenant_id}")
        settings = self.settings

        build = self.build_ledger(request)
        ledger = build.ledger
        rep_view = rep_view_ledger(ledger, settings.online_channel_ids)

        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="ticket-rollup") as pool:
            metrics_future = pool.submit(compute_sales_metrics, ledger)
            store_future = pool.submit(rollup_by_store, ledger)
            rep_future = pool.submit(rollup_by_rep, rep_view)
            metrics, guarded = metrics_future.result()
            store_rollup = store_future.result()
            rep_rollup = rep_future.result()

        alert_args = dict(
            benchmark=settings.benchmark,
            coaching_ratio=settings.coaching_ratio,
            min_day_tickets=settings.min_day_tickets,
            max_alerts=settings.max_alerts,
        )
        alerts = PerformanceAlerts(
            underperforming_stores=classify_alerts(ledger, "Store", **alert_args),
            underperforming_reps=classify_alerts(rep_view, "Rep", **alert_args),
            benchmark=settings.benchmark,
        )
        scheduling = recommend_schedule(
            rep_view,
            min_tickets=settings.min_tickets,
            shifts_per_day=settings.shifts_per_day,
            top_k=settings.top_reps_for_projection,
            relocation_percentile=settings.relocation_percentile,
            relocation_ratio=settings.relocation_ratio,
            top_overall=settings.top_overall_reps,
        )

        response = AnalyticsResponse(
            metrics=metrics,
            leaderboards=build_leaderboards(
                store_rollup, rep_rollup, top_n=settings.leaderboard_size
            ),
            performance_alerts=alerts,
            store_performance=StorePerformance(stores=store_metrics(store_rollup)),
            rep_performance=RepPerformance(reps=rep_metrics(rep_rollup)),
            scheduling_data=scheduling,
            diagnostics=self._diagnostics(build, guarded),
        )
        logger.info(
            f"Tenant {request.tenant_id}: {metrics.ticket_count:,} tickets, "
            f"${metrics.total_sales:,.2f} revenue"
        )
        return response

    def daily_rep_report(
        self, payload: AnalyticsRequest | dict, day: date | str
    ) -> DailyRepReport:
        """Per-store rep tiers for one day, from the same ledger path as run()."""
        request = AnalyticsRequest.parse(payload)
        build = self.build_ledger(request)
        rep_view = rep_view_ledger(build.ledger, self.settings.online_channel_ids)
        return build_daily_rep_report(rep_view, day)

    def _diagnostics(self, build: LedgerBuild, guarded: list[str]) -> Diagnostics:
        retrieval = {}
        issues: list[DataQualityIssue] = []

        for kind, result in build.fetched.items():
            retrieval[kind.value] = StreamRetrieval(
                status=result.status.value,
                strategy=result.strategy,
                record_count=len(result.records),
                truncated=result.truncated,
            )
            if result.status == RetrievalStatus.DEGRADED:
                issues.append(
                    retrieval_issue(
                        kind.value,
                        IssueType.RETRIEVAL_DEGRADED,
                        f"bounded fallback read of {result.table} used: {result.error}",
                        count=len(result.records),
                    )
                )
            elif result.status == RetrievalStatus.FAILED:
                issues.append(
                    retrieval_issue(
                        kind.value,
                        IssueType.RETRIEVAL_FAILED,
                        f"{result.table} could not be read: {result.error}",
                    )
                )

        for kind in StreamKind:
            report = build.streams.quality_reports.get(kind.value)
            if report is not None:
                issues.extend(report.issues)

        if guarded:
            issues.append(division_guarded_issue("metrics", guarded))

        return Diagnostics(
            retrieval=dict(sorted(retrieval.items())),
            issues=[QualityIssue(**issue.to_dict()) for issue in issues],
        )
