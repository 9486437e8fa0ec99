# Sales reconciliation and metrics engine for multi-store retail tenants

from .core.pipeline import SalesAnalyticsEngine
from .core.config import EngineSettings, load_settings
from .core.models import AnalyticsRequest, AnalyticsResponse
from .core.exceptions import InvalidRequestError
from .clients import DuckDBRecordStore, InMemoryRecordStore

__all__ = [
    "SalesAnalyticsEngine",
    "EngineSettings",
    "load_settings",
    "AnalyticsRequest",
    "AnalyticsResponse",
    "InvalidRequestError",
    "DuckDBRecordStore",
    "InMemoryRecordStore",
]
