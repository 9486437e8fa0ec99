# Ticket storage adapters
# Record stores serve the fetcher's read contract; the loader holds the
# ticket-table column mapping

from .duckdb_store import DuckDBRecordStore
from .memory_store import InMemoryRecordStore
from .ticket_loader import LoadedStreams, TicketStreamLoader

__all__ = [
    "DuckDBRecordStore",
    "InMemoryRecordStore",
    "LoadedStreams",
    "TicketStreamLoader",
]
