"""
Exceptions raised by the sales ledger engine.

Only InvalidRequestError ever reaches a caller of the engine. Retrieval
errors are raised by record stores and converted to diagnostics by the
fetcher, so the analytics surface always renders with best-effort data.
"""

from pathlib import Path


class TicketLedgerError(Exception):
    """Base exception for all ticket ledger errors."""


class InvalidRequestError(TicketLedgerError):
    """Raised when an analytics request is malformed (e.g. no tenant id)."""

    def __init__(self, message: str, field_name: str | None = None):
        self.field_name = field_name
        if field_name:
            message = f"{message} (field: {field_name})"
        super().__init__(message)


class RetrievalError(TicketLedgerError):
    """Raised by a record store when a read cannot be served."""

    def __init__(
        self,
        message: str,
        table: str | None = None,
        original_error: Exception | None = None,
    ):
        self.table = table
        self.original_error = original_error

        if table:
            message = f"Error reading table '{table}': {message}"

        if original_error:
            message = f"{message} (Original error: {original_error})"

        super().__init__(message)


class RowCapExceeded(RetrievalError):
    """Raised when an unbounded read would exceed the store's per-query row cap."""

    def __init__(self, table: str, row_cap: int, matched: int | None = None):
        self.row_cap = row_cap
        self.matched = matched
        detail = f"more than {row_cap:,} rows match"
        if matched is not None:
            detail = f"{matched:,} rows match, cap is {row_cap:,}"
        super().__init__(detail, table=table)


class SettingsError(TicketLedgerError):
    """Raised when an engine settings file cannot be loaded or validated."""

    def __init__(self, message: str, file_path: Path | None = None):
        self.file_path = file_path
        if file_path:
            message = f"Error loading settings file '{file_path}': {message}"
        super().__init__(message)
