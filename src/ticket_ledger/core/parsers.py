"""
Reusable parsers for the messy fields found in POS ticket exports.

These parsers handle the reality of ticket line data:
- ISO-8601 timestamps mixed with older POS date formats
- Gross profit recorded as "42.5%", "42.5" or a bare number
- Money amounts exported as "$1,204.50"
- Ticket numbers with stray whitespace or numeric coercion
"""

import numbers
import re
from datetime import datetime, timezone

import pandas as pd


class DateParser:
    """
    Date parser for ticket sale dates.

    ISO-8601 is tried first (this is what the ticket tables store); the
    fallback formats cover exports from older registers. Timezone-aware
    values are converted to naive UTC so every stream shares one clock.
    """

    # Fallback formats, ordered by specificity
    DATE_FORMATS = [
        "%Y-%m-%d %H:%M:%S",  # 2024-07-25 14:03:11
        "%m/%d/%Y %H:%M",     # 07/25/2024 14:03
        "%m/%d/%Y",           # 07/25/2024
        "%m/%d/%y",           # 07/25/24
        "%Y/%m/%d",           # 2024/07/25
    ]

    def __init__(self, custom_formats: list[str] | None = None):
        """
        Args:
            custom_formats: Additional date formats to try (prepended to defaults)
        """
        self.formats = (custom_formats or []) + self.DATE_FORMATS
        self._cache: dict[str, datetime | None] = {}

    def parse(self, value) -> datetime | None:
        """Parse a sale date, returning None when no format matches."""
        if value is None or (not isinstance(value, str) and pd.isna(value)):
            return None

        if isinstance(value, pd.Timestamp):
            value = value.to_pydatetime()
        if isinstance(value, datetime):
            return self._to_naive_utc(value)

        date_str = str(value).strip()
        if not date_str:
            return None

        if date_str in self._cache:
            return self._cache[date_str]

        result = self._parse_iso(date_str)
        if result is None:
            for fmt in self.formats:
                try:
                    result = datetime.strptime(date_str, fmt)
                    break
                except ValueError:
                    continue

        self._cache[date_str] = result
        return result

    def parse_series(self, series: pd.Series) -> pd.Series:
        """Parse an entire pandas Series of dates into datetime64 values."""
        return pd.to_datetime(series.apply(self.parse), errors="coerce")

    def _parse_iso(self, date_str: str) -> datetime | None:
        iso = date_str[:-1] + "+00:00" if date_str.endswith("Z") else date_str
        try:
            return self._to_naive_utc(datetime.fromisoformat(iso))
        except ValueError:
            return None

    @staticmethod
    def _to_naive_utc(value: datetime) -> datetime:
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value


class PercentParser:
    """
    Parses gross profit values.

    Handles:
    - 42.5 -> 42.5
    - "42.5%" -> 42.5
    - " 42.5 % " -> 42.5
    - "n/a", "", None -> None (skipped, never treated as zero)
    """

    def parse(self, value) -> float | None:
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, numbers.Real):
            return None if pd.isna(value) else float(value)

        text = str(value).strip()
        if text.endswith("%"):
            text = text[:-1].strip()
        if not text:
            return None
        try:
            result = float(text)
        except ValueError:
            return None
        return None if pd.isna(result) else result

    def parse_series(self, series: pd.Series) -> pd.Series:
        return series.apply(self.parse).astype("float64")


class AmountParser:
    """
    Parses money and quantity fields.

    Currency symbols, thousands separators and surrounding whitespace are
    stripped; parentheses are read as a negative amount ("(12.00)" -> -12.0).
    """

    _STRIP = re.compile(r"[$,\s]")

    def parse(self, value) -> float | None:
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, numbers.Real):
            return None if pd.isna(value) else float(value)

        text = self._STRIP.sub("", str(value))
        negative = text.startswith("(") and text.endswith(")")
        if negative:
            text = text[1:-1]
        if not text:
            return None
        try:
            result = float(text)
        except ValueError:
            return None
        if pd.isna(result):
            return None
        return -result if negative else result

    def parse_series(self, series: pd.Series) -> pd.Series:
        return series.apply(self.parse).astype("float64")


class TicketNumberNormalizer:
    """
    Normalizes ticket numbers so the same ticket matches across streams.

    Exports sometimes coerce ticket numbers to floats ("10452.0"); those are
    turned back into their integer form. Everything else is kept verbatim
    apart from surrounding whitespace.
    """

    _FLOAT_FORM = re.compile(r"^(\d+)\.0+$")

    def normalize(self, value) -> str | None:
        if value is None or (not isinstance(value, str) and pd.isna(value)):
            return None
        if isinstance(value, float) and value.is_integer():
            return str(int(value))

        result = str(value).strip()
        if not result:
            return None

        match = self._FLOAT_FORM.match(result)
        if match:
            return match.group(1)
        return result

    def normalize_series(self, series: pd.Series) -> pd.Series:
        return series.apply(self.normalize)


def normalize_label(value) -> str | None:
    """Normalize a store id or rep name; blanks become None."""
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return None
    result = " ".join(str(value).split())
    return result or None
