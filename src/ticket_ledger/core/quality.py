"""
Data quality checking and diagnostics for the ticket streams.

Nothing in the engine is allowed to fail the analytics request once the
request itself is valid. Problems found along the way (degraded or failed
retrieval, values that could not be parsed, ratios with a zero denominator)
are recorded here as issues and surfaced in the response diagnostics.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Any

import pandas as pd


class IssueType(str, Enum):
    """Kinds of recoverable problems the engine reports."""

    RETRIEVAL_DEGRADED = "retrieval_degraded"  # fallback read used, data may be partial
    RETRIEVAL_FAILED = "retrieval_failed"  # both reads errored, stream is empty
    PARSE_SKIPPED = "parse_skipped"  # value omitted instead of coerced to zero
    DIVISION_GUARDED = "division_guarded"  # zero denominator, ratio reported as 0
    MISSING = "missing"
    DUPLICATE = "duplicate"


@dataclass
class DataQualityIssue:
    """A single data quality issue found while building the ledger."""

    source: str
    column: str
    issue_type: IssueType
    severity: str  # "critical", "warning", "info"
    count: int
    percentage: float
    sample_values: list[Any] = field(default_factory=list)
    description: str = ""

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "column": self.column,
            "issue_type": self.issue_type.value,
            "severity": self.severity,
            "count": int(self.count),
            "percentage": round(float(self.percentage), 4),
            "sample_values": [str(v) for v in self.sample_values],
            "description": self.description,
        }


@dataclass
class DataQualityReport:
    """Issues found in one normalized ticket stream."""

    source_name: str
    total_rows: int
    issues: list[DataQualityIssue] = field(default_factory=list)

    def by_severity(self, severity: str) -> list[DataQualityIssue]:
        return [i for i in self.issues if i.severity == severity]

    @property
    def has_critical_issues(self) -> bool:
        return any(i.severity == "critical" for i in self.issues)

    def count(self, issue_type: IssueType) -> int:
        return sum(int(i.count) for i in self.issues if i.issue_type == issue_type)


def _percentage(count: int, total: int) -> float:
    return (count / total) * 100 if total > 0 else 0.0


class DataQualityChecker:
    """
    Data quality checker for one normalized ticket stream.

    Checks are registered up front and run against the normalized frame,
    which still carries the raw values alongside the parsed ones.

    Usage:
        checker = DataQualityChecker("sales")
        checker.check_missing("ticket_number", severity="critical")
        checker.check_unparsed("gross_profit", "gross_profit_pct")
        report = checker.run(df)
    """

    def __init__(self, source_name: str):
        self.source_name = source_name
        self._checks: list[Callable[[pd.DataFrame], list[DataQualityIssue]]] = []

    def add_check(
        self, check_fn: Callable[[pd.DataFrame], list[DataQualityIssue]]
    ) -> "DataQualityChecker":
        """Add a custom check function. Returns self for chaining."""
        self._checks.append(check_fn)
        return self

    def check_missing(
        self, column: str, severity: str = "warning"
    ) -> "DataQualityChecker":
        """Add a check for missing values in one column."""

        def check(df: pd.DataFrame) -> list[DataQualityIssue]:
            if column not in df.columns:
                return []
            missing = int(df[column].isna().sum())
            if missing == 0:
                return []
            pct = _percentage(missing, len(df))
            return [
                DataQualityIssue(
                    source=self.source_name,
                    column=column,
                    issue_type=IssueType.MISSING,
                    severity=severity,
                    count=missing,
                    percentage=pct,
                    description=f"{missing:,} missing values ({pct:.1f}%)",
                )
            ]

        self._checks.append(check)
        return self

    def check_unparsed(
        self, original_col: str, parsed_col: str, severity: str = "warning"
    ) -> "DataQualityChecker":
        """
        Add a check for values present in the raw column that failed to parse.

        Blank raw values are not counted: a missing gross profit is simply
        absent, while "abc%" is a value that had to be skipped.
        """

        def check(df: pd.DataFrame) -> list[DataQualityIssue]:
            if original_col not in df.columns or parsed_col not in df.columns:
                return []
            raw = df[original_col]
            present = raw.notna() & (raw.astype(str).str.strip() != "")
            unparsed = present & df[parsed_col].isna()
            count = int(unparsed.sum())
            if count == 0:
                return []
            samples = raw[unparsed].head(5).tolist()
            return [
                DataQualityIssue(
                    source=self.source_name,
                    column=original_col,
                    issue_type=IssueType.PARSE_SKIPPED,
                    severity=severity,
                    count=count,
                    percentage=_percentage(count, len(df)),
                    sample_values=samples,
                    description=f"{count:,} values couldn't be parsed and were skipped",
                )
            ]

        self._checks.append(check)
        return self

    def check_duplicates(
        self, key_columns: list[str], severity: str = "info"
    ) -> "DataQualityChecker":
        """Add a duplicate check for the given columns."""

        def check(df: pd.DataFrame) -> list[DataQualityIssue]:
            if df.empty or any(c not in df.columns for c in key_columns):
                return []
            dupes = int(df.duplicated(subset=key_columns, keep=False).sum())
            if dupes == 0:
                return []
            return [
                DataQualityIssue(
                    source=self.source_name,
                    column=", ".join(key_columns),
                    issue_type=IssueType.DUPLICATE,
                    severity=severity,
                    count=dupes,
                    percentage=_percentage(dupes, len(df)),
                    description=f"{dupes:,} rows share the same key columns",
                )
            ]

        self._checks.append(check)
        return self

    def run(self, df: pd.DataFrame) -> DataQualityReport:
        """Run all checks and return a quality report."""
        all_issues = []
        for check_fn in self._checks:
            all_issues.extend(check_fn(df))

        return DataQualityReport(
            source_name=self.source_name, total_rows=len(df), issues=all_issues
        )


def retrieval_issue(
    source: str, issue_type: IssueType, description: str, count: int = 0
) -> DataQualityIssue:
    """Build the issue recorded for a degraded or failed stream read."""
    severity = "critical" if issue_type == IssueType.RETRIEVAL_FAILED else "warning"
    return DataQualityIssue(
        source=source,
        column="*",
        issue_type=issue_type,
        severity=severity,
        count=count,
        percentage=0.0,
        description=description,
    )


def division_guarded_issue(source: str, fields: list[str]) -> DataQualityIssue:
    """Build the issue recorded when ratios were zeroed for lack of a denominator."""
    return DataQualityIssue(
        source=source,
        column=", ".join(fields),
        issue_type=IssueType.DIVISION_GUARDED,
        severity="info",
        count=len(fields),
        percentage=0.0,
        description=f"{len(fields)} ratios had a zero denominator and were reported as 0",
    )
