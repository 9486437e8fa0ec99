"""
Request and response contract of the analytics engine.

Pydantic models define the single query-style interface the presentation
layer consumes. Field names are snake_case in Python and camelCase on the
wire, so `AnalyticsResponse.to_json()` is what a dashboard receives.
"""

from datetime import date, datetime, time, timezone
from typing import Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from .exceptions import InvalidRequestError


class WireModel(BaseModel):
    """Base model serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------


class DateRange(WireModel):
    """Inclusive sale date window. A date-only end covers that whole day."""

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @field_validator("start", mode="before")
    @classmethod
    def _start_of_day(cls, value):
        return _coerce_bound(value, end_of_day=False)

    @field_validator("end", mode="before")
    @classmethod
    def _end_of_day(cls, value):
        return _coerce_bound(value, end_of_day=True)

    @model_validator(mode="after")
    def _ordered(self) -> "DateRange":
        if self.end < self.start:
            raise ValueError("date range end is before its start")
        return self

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end


def _coerce_bound(value, end_of_day: bool):
    if isinstance(value, str) and len(value.strip()) == 10:
        value = date.fromisoformat(value.strip())
    if isinstance(value, date) and not isinstance(value, datetime):
        return datetime.combine(value, time.max if end_of_day else time.min)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        value = datetime.fromisoformat(text)
    if isinstance(value, datetime) and value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class AnalyticsRequest(WireModel):
    """One analytics request, threaded through every stage unchanged."""

    model_config = ConfigDict(frozen=True)

    tenant_id: str
    date_range: DateRange | None = None
    store_id: str | None = None
    sales_rep_id: str | None = None
    include_returns: bool = True
    include_gift_cards: bool = True

    @field_validator("tenant_id")
    @classmethod
    def _tenant_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("tenant id must not be blank")
        return value

    @field_validator("store_id", "sales_rep_id")
    @classmethod
    def _all_means_unfiltered(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        if not value or value.lower() == "all":
            return None
        return value

    @classmethod
    def parse(cls, payload: "AnalyticsRequest | dict") -> "AnalyticsRequest":
        """
        Validate a request payload.

        Raises:
            InvalidRequestError: If the tenant id is missing or the payload is malformed
        """
        if isinstance(payload, cls):
            return payload
        if not isinstance(payload, dict):
            raise InvalidRequestError("request must be a mapping")
        try:
            return cls.model_validate(payload)
        except ValidationError as e:
            first = e.errors()[0]
            field_name = ".".join(str(p) for p in first["loc"]) or None
            raise InvalidRequestError(first["msg"], field_name=field_name) from e


# ---------------------------------------------------------------------------
# Response
# ---------------------------------------------------------------------------


class SalesDateRange(WireModel):
    earliest: str = ""
    latest: str = ""


class SalesMetrics(WireModel):
    """Aggregate KPIs over the canonical ledger."""

    total_sales: float = 0.0
    ticket_count: int = 0
    avg_ticket_value: float = 0.0
    gross_profit_percent: float = 0.0
    items_sold: float = 0.0
    return_rate: float = Field(default=0.0, description="returns / (tickets + returns)")
    gift_card_usage: float = Field(default=0.0, description="gift-card-only tickets / tickets")
    sales_consistency: float = Field(default=0.0, description="0-100, higher is steadier")
    unique_tickets: int = 0
    return_count: int = 0
    gift_card_ticket_count: int = 0
    total_return_value: float = 0.0
    total_gift_card_value: float = 0.0
    total_lines: int = 0
    stores: list[str] = Field(default_factory=list)
    sales_reps: list[str] = Field(default_factory=list)
    date_range: SalesDateRange = Field(default_factory=SalesDateRange)


class LeaderboardEntry(WireModel):
    entity_id: str
    avg_ticket_size: float
    gross_profit_percent: float
    revenue: float
    ticket_count: int


class Leaderboard(WireModel):
    avg_ticket_size: list[LeaderboardEntry] = Field(default_factory=list)
    gross_profit: list[LeaderboardEntry] = Field(default_factory=list)
    total_revenue: list[LeaderboardEntry] = Field(default_factory=list)


class Leaderboards(WireModel):
    reps: Leaderboard = Field(default_factory=Leaderboard)
    stores: Leaderboard = Field(default_factory=Leaderboard)


class UnderperformingDay(WireModel):
    date: str
    avg_ticket_size: float
    ticket_count: int
    revenue: float


class AlertRecord(WireModel):
    """An entity with at least one day below the benchmark."""

    entity_type: Literal["Store", "Rep"]
    entity_id: str
    underperforming_day_count: int
    total_days_worked: int
    performance_ratio: float
    severity: Literal["NeedsCoaching", "BeAware"]
    underperforming_days: list[UnderperformingDay] = Field(default_factory=list)


class PerformanceAlerts(WireModel):
    underperforming_stores: list[AlertRecord] = Field(default_factory=list)
    underperforming_reps: list[AlertRecord] = Field(default_factory=list)
    benchmark: float


class StoreMetrics(WireModel):
    store_id: str
    revenue: float
    ticket_count: int
    avg_ticket_size: float
    gross_profit_percent: float
    return_rate: float
    items_sold: float
    consistency_score: float


class RepMetrics(WireModel):
    rep_name: str
    revenue: float
    ticket_count: int
    avg_ticket_size: float
    gross_profit_percent: float
    return_rate: float
    items_sold: float
    consistency_score: float
    stores_worked: str = ""
    store_count: int = 0


class StorePerformance(WireModel):
    stores: list[StoreMetrics] = Field(default_factory=list)


class RepPerformance(WireModel):
    reps: list[RepMetrics] = Field(default_factory=list)


class RankedRep(WireModel):
    rep_name: str
    rank: int
    avg_ticket_size: float
    total_revenue: float
    ticket_count: int


class OverallRep(WireModel):
    rep_name: str
    avg_ticket_size: float
    total_revenue: float
    ticket_count: int
    store_count: int


class SchedulingRecommendation(WireModel):
    """Advisory staffing view for one store. Not a forecast."""

    store_id: str
    reps: list[RankedRep] = Field(default_factory=list)
    store_avg_ticket: float = 0.0
    potential_daily_revenue: float = 0.0
    relocation_candidates: list[RankedRep] = Field(default_factory=list)


class SchedulingData(WireModel):
    stores: list[SchedulingRecommendation] = Field(default_factory=list)
    top_overall_reps: list[OverallRep] = Field(default_factory=list)
    total_stores: int = 0
    total_reps: int = 0


class StreamRetrieval(WireModel):
    status: Literal["ok", "degraded", "failed", "skipped"]
    strategy: Literal["collect", "take", "none"]
    record_count: int = 0
    truncated: bool = False


class QualityIssue(WireModel):
    source: str
    column: str
    issue_type: str
    severity: str
    count: int
    percentage: float
    sample_values: list[str] = Field(default_factory=list)
    description: str = ""


class Diagnostics(WireModel):
    retrieval: dict[str, StreamRetrieval] = Field(default_factory=dict)
    issues: list[QualityIssue] = Field(default_factory=list)

    @property
    def retrievable(self) -> bool:
        """False when any requested stream failed outright."""
        return all(r.status != "failed" for r in self.retrieval.values())


class AnalyticsResponse(WireModel):
    """Every view derived from one canonical ledger pass."""

    metrics: SalesMetrics = Field(default_factory=SalesMetrics)
    leaderboards: Leaderboards = Field(default_factory=Leaderboards)
    performance_alerts: PerformanceAlerts
    store_performance: StorePerformance = Field(default_factory=StorePerformance)
    rep_performance: RepPerformance = Field(default_factory=RepPerformance)
    scheduling_data: SchedulingData = Field(default_factory=SchedulingData)
    diagnostics: Diagnostics = Field(default_factory=Diagnostics)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class DailyRepEntry(WireModel):
    rep_name: str
    avg_ticket: float
    total_tickets: int
    tier1_count: int
    tier2_count: int
    tier3_count: int


class DailyStoreReport(WireModel):
    store_id: str
    reps: list[DailyRepEntry] = Field(default_factory=list)
    total_reps: int = 0
    store_avg_ticket: float = 0.0


class DailyRepReport(WireModel):
    date: str
    stores: list[DailyStoreReport] = Field(default_factory=list)
    total_stores: int = 0
    total_reps: int = 0
