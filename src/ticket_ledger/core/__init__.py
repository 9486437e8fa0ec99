# Core reusable components of the sales reconciliation engine
# Everything here works on normalized ticket frames and the canonical ledger

from .parsers import DateParser, PercentParser, AmountParser, TicketNumberNormalizer
from .quality import DataQualityReport, DataQualityChecker, IssueType
from .exceptions import (
    TicketLedgerError,
    InvalidRequestError,
    RetrievalError,
    RowCapExceeded,
    SettingsError,
)
from .config import EngineSettings, TableNames, load_settings
from .models import AnalyticsRequest, AnalyticsResponse, DateRange
from .fetcher import BulkFetcher, FetchResult, RecordStore, RetrievalStatus, StreamKind
from .reconciliation import TicketReconciler, Ledger, CanonicalTicket, SourceKind
from .analysis import (
    compute_sales_metrics,
    consistency_score,
    rollup_by_store,
    rollup_by_rep,
    build_leaderboards,
    build_daily_rep_report,
)
from .alerts import classify_alerts
from .scheduling import recommend_schedule

__all__ = [
    "DateParser",
    "PercentParser",
    "AmountParser",
    "TicketNumberNormalizer",
    "DataQualityReport",
    "DataQualityChecker",
    "IssueType",
    "TicketLedgerError",
    "InvalidRequestError",
    "RetrievalError",
    "RowCapExceeded",
    "SettingsError",
    "EngineSettings",
    "TableNames",
    "load_settings",
    "AnalyticsRequest",
    "AnalyticsResponse",
    "DateRange",
    "BulkFetcher",
    "FetchResult",
    "RecordStore",
    "RetrievalStatus",
    "StreamKind",
    "TicketReconciler",
    "Ledger",
    "CanonicalTicket",
    "SourceKind",
    "compute_sales_metrics",
    "consistency_score",
    "rollup_by_store",
    "rollup_by_rep",
    "build_leaderboards",
    "build_daily_rep_report",
    "classify_alerts",
    "recommend_schedule",
]
