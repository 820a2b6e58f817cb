"""
Daily aggregated report and per-provider unique household counts.
"""

import csv
import logging
from datetime import date
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Set, Union

from .config import DEFAULT_FLUSH_THRESHOLD
from .exceptions import ReportWriteError
from .model import CANONICAL_HEADER, HH_COUNT_HEADER, EventRecord, HouseholdCount, Provider

logger = logging.getLogger(__name__)


def report_filename(report_name: str, day: date) -> str:
    """`<report_name>-<YYYYMMDD>.csv`"""
    return f"{report_name}-{day.strftime('%Y%m%d')}.csv"


def hh_count_filename(provider_name: str, day: date) -> str:
    """`hh_count_<provider_name>_<YYYYMMDD>.csv`"""
    return f"hh_count_{provider_name}_{day.strftime('%Y%m%d')}.csv"


class AggregatedReport:
    """
    Buffered writer for one reporting day.

    Records are accepted in merge order. Only those whose timestamp falls on
    the report date are kept: they are appended to an in-memory buffer that is
    flushed to the end of the report file whenever it grows past
    `flush_threshold`. Flushed records are never read back.

    For each provider, the set of distinct household ids among accepted
    records is tracked. These sets only ever grow during the day.
    """

    def __init__(
        self,
        path: Union[str, Path],
        report_date: date,
        providers: Sequence[Provider] = (),
        flush_threshold: int = DEFAULT_FLUSH_THRESHOLD,
    ):
        self.path = Path(path)
        self.report_date = report_date
        self.date_str = report_date.isoformat()
        self.flush_threshold = flush_threshold
        self.records_written = 0
        self._buffer: List[EventRecord] = []
        self._closed = False
        self._hh_ids: Dict[str, Set[str]] = {provider.code: set() for provider in providers}
        self._write_rows([CANONICAL_HEADER], mode="w")

    def _write_rows(self, rows: Iterable[Sequence[str]], mode: str) -> None:
        try:
            with open(self.path, mode, newline="", encoding="utf-8") as out:
                csv.writer(out).writerows(rows)
        except OSError as e:
            raise ReportWriteError(f"Could not write report {self.path}: {e}") from e

    def accept(self, record: EventRecord, provider_code: str) -> bool:
        """
        Keeps the record if it falls on the report date.

        Returns:
            True if the record was kept, False if it was discarded.
        """
        if self._closed:
            raise ReportWriteError(f"Report {self.path} is already finished")
        if self.date_str not in record.ts:
            return False

        self._buffer.append(record)
        self._hh_ids.setdefault(provider_code, set()).add(record.hh_id)
        if len(self._buffer) > self.flush_threshold:
            self.flush()
        return True

    def flush(self) -> None:
        """Appends the buffered records to the report file and clears the buffer."""
        if not self._buffer:
            return
        self._write_rows((record.to_canonical_row() for record in self._buffer), mode="a")
        self.records_written += len(self._buffer)
        logger.debug("Flushed report buffer", extra={"path": str(self.path), "records": len(self._buffer)})
        self._buffer.clear()

    def finish(self) -> List[HouseholdCount]:
        """
        Flushes what is left and closes the report.

        Returns:
            One HouseholdCount per provider, in provider order.
        """
        if not self._closed:
            self.flush()
            self._closed = True
        return [
            HouseholdCount(date=self.date_str, provider_code=code, hh_id_count=len(hh_ids))
            for code, hh_ids in self._hh_ids.items()
        ]


def write_hh_counts(
    output_dir: Union[str, Path],
    report_date: date,
    counts: Iterable[HouseholdCount],
    providers: Sequence[Provider],
) -> List[Path]:
    """
    Writes one summary file per provider.

    Counts for a provider code missing from `providers` are written under the
    code itself.

    Raises:
        ReportWriteError: If a summary file cannot be written.
    """
    names = {provider.code: provider.name for provider in providers}
    written = []
    for count in counts:
        name = names.get(count.provider_code, count.provider_code)
        path = Path(output_dir) / hh_count_filename(name, report_date)
        try:
            with open(path, "w", newline="", encoding="utf-8") as out:
                writer = csv.writer(out)
                writer.writerow(HH_COUNT_HEADER)
                writer.writerow(count.to_row())
        except OSError as e:
            raise ReportWriteError(f"Could not write household counts {path}: {e}") from e
        written.append(path)
    return written


def read_report(path: Union[str, Path]) -> List[EventRecord]:
    """Reads an aggregated report back into records."""
    with open(path, "r", newline="", encoding="utf-8") as f:
        reader = csv.reader(f)
        header: Optional[List[str]] = next(reader, None)
        if header != CANONICAL_HEADER:
            raise ValueError(f"Unexpected report header in {path}: {header}")
        return [EventRecord.from_canonical_row(row) for row in reader if row]
