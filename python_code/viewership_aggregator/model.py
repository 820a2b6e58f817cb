"""
Data models for the Viewership Aggregation Pipeline.

This module defines the core data structures passed between the fetch,
normalize, merge and report stages. Using NamedTuples and dataclasses keeps
the data contracts explicit, statically checked by mypy, and self-documenting.
"""

from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Dict, List, NamedTuple, Optional, Sequence

from .exceptions import MalformedRowError

# Column order of the raw provider extracts (one header row, then data).
SOURCE_HEADER = ["hh_id", "ts", "pg_id", "pg_name", "ch_num", "ch_name", "event", "zipcode", "country"]

# Column order of Canonical Files and of the aggregated daily report.
# Downstream consumers depend on this exact order.
CANONICAL_HEADER = ["ts", "hh_id", "pg_id", "pg_name", "ch_num", "ch_name", "event", "zipcode", "country"]

HH_COUNT_HEADER = ["date", "provider_code", "hh_id_count"]

RECORD_WIDTH = len(CANONICAL_HEADER)


class EventRecord(NamedTuple):
    """
    A single viewership event.

    Records are immutable once read. The timestamp is kept as the original
    `YYYY-MM-DD HH:MM:SS` string: its lexical order is its chronological order,
    so it is compared as-is and never parsed.
    """

    hh_id: str
    ts: str
    pg_id: str
    pg_name: str
    ch_num: str
    ch_name: str
    event: str
    zipcode: str
    country: str

    @classmethod
    def from_source_row(cls, row: Sequence[str]) -> "EventRecord":
        """Builds a record from a raw extract row (`hh_id, ts, ...`)."""
        if len(row) != RECORD_WIDTH:
            raise MalformedRowError(f"Expected {RECORD_WIDTH} columns, got {len(row)}: {row!r}")
        return cls(*row)

    @classmethod
    def from_canonical_row(cls, row: Sequence[str]) -> "EventRecord":
        """Builds a record from a Canonical File row (`ts, hh_id, ...`)."""
        if len(row) != RECORD_WIDTH:
            raise MalformedRowError(f"Expected {RECORD_WIDTH} columns, got {len(row)}: {row!r}")
        ts, hh_id, *rest = row
        return cls(hh_id, ts, *rest)

    def to_canonical_row(self) -> List[str]:
        return [
            self.ts,
            self.hh_id,
            self.pg_id,
            self.pg_name,
            self.ch_num,
            self.ch_name,
            self.event,
            self.zipcode,
            self.country,
        ]


@dataclass(frozen=True)
class Provider:
    """A provider (MSO) from the lookup table."""

    code: str
    name: str


@dataclass(frozen=True)
class FetchOutcome:
    """
    The terminal state of one fetch job.

    Attributes:
        key: The S3 object key that was requested.
        attempts: How many attempts were made before reaching this state.
        succeeded: True if the object was downloaded and normalized.
        error: The last error message for a failed job.
    """

    key: str
    attempts: int
    succeeded: bool
    error: Optional[str] = None


@dataclass
class FetchReport:
    """
    The outcome of a whole fetch batch.

    Every job requested appears exactly once, either in `succeeded` or in
    `failed`. Completion order between jobs is not guaranteed.
    """

    succeeded: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    attempts: Dict[str, int] = field(default_factory=dict)

    @property
    def succeeded_count(self) -> int:
        return len(self.succeeded)

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed)


@dataclass(frozen=True)
class HouseholdCount:
    """One row of a per-provider unique household summary."""

    date: str
    provider_code: str
    hh_id_count: int

    def to_row(self) -> List[str]:
        return [self.date, self.provider_code, str(self.hh_id_count)]


@dataclass
class DayReport:
    """
    The result of aggregating a single reporting day.

    Attributes:
        day: The reporting day.
        report_path: The aggregated report file for the day.
        records_merged: Records yielded by the merge across the whole window.
        records_written: Records that fell on the reporting day and were kept.
        hh_counts: Distinct household counts, one per provider.
        truncated_files: Canonical Files whose cursor hit a read error,
                         mapped to the number of records read before it.
        error: Set when the day's report could not be written.
    """

    day: date
    report_path: Path
    records_merged: int = 0
    records_written: int = 0
    hh_counts: List[HouseholdCount] = field(default_factory=list)
    truncated_files: Dict[str, int] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class RunSummary:
    """Everything a single pipeline run produced."""

    fetch: FetchReport
    days: List[DayReport] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return not self.fetch.failed and all(day.ok for day in self.days)
