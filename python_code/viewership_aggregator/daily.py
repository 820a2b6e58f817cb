"""
Per-day merge and aggregation.

Every reporting day owns its own Cursor Set, report file and household sets,
so days can be processed in parallel with no shared mutable state. The only
shared input is the set of Canonical Files, which is read-only by now.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from typing import List, Sequence

from .config import PipelineConfig
from .core import collect_day_files, emit_metrics
from .exceptions import ReportWriteError
from .merge import CursorSet
from .model import DayReport, Provider
from .report import AggregatedReport, report_filename, write_hh_counts

logger = logging.getLogger(__name__)


def aggregate_day(config: PipelineConfig, day: date, providers: Sequence[Provider]) -> DayReport:
    """
    Merges the day's window of Canonical Files and writes its report.

    A failure to write the report or the household counts aborts this day
    only; it is recorded on the returned DayReport.
    """
    report_path = config.output_dir / report_filename(config.report_name, day)
    result = DayReport(day=day, report_path=report_path)
    files = collect_day_files(config.work_dir, config.prefix, day, providers, config.days_after)
    logger.info(
        "Aggregating day",
        extra={"day": day.isoformat(), "files": sum(len(paths) for paths in files.values())},
    )

    try:
        config.output_dir.mkdir(parents=True, exist_ok=True)
        report = AggregatedReport(report_path, day, providers, flush_threshold=config.flush_threshold)
        with CursorSet.open(files, block_size=config.block_size) as cursor_set:
            for record, provider_code in cursor_set:
                result.records_merged += 1
                report.accept(record, provider_code)
            result.truncated_files = cursor_set.truncations()
        result.hh_counts = report.finish()
        result.records_written = report.records_written
        write_hh_counts(config.output_dir, day, result.hh_counts, providers)
    except (ReportWriteError, OSError) as e:
        result.error = f"{type(e).__name__}: {e}"
        logger.error("Could not write daily report", extra={"day": day.isoformat(), "error": result.error})
        emit_metrics(config.environment, "Failure", {"day": day.isoformat(), "error_message": result.error})
        return result

    if result.truncated_files:
        logger.warning(
            "Some canonical files were only partially read",
            extra={"day": day.isoformat(), "truncated_files": result.truncated_files},
        )
    logger.info(
        "Saved the report",
        extra={"day": day.isoformat(), "report": str(report_path), "records": result.records_written},
    )
    emit_metrics(
        config.environment,
        "Success",
        {
            "day": day.isoformat(),
            "records_merged": result.records_merged,
            "records_written": result.records_written,
            "truncated_files": len(result.truncated_files),
        },
    )
    return result


def generate_daily_aggregates(
    config: PipelineConfig, days: Sequence[date], providers: Sequence[Provider]
) -> List[DayReport]:
    """
    Aggregates every reporting day, `day_workers` days at a time.

    Blocks until all days are done. Results are returned in the order of `days`.
    """
    logger.info("Starting reading/aggregating the results", extra={"days": len(days)})
    with ThreadPoolExecutor(max_workers=config.day_workers, thread_name_prefix="day") as executor:
        futures = [executor.submit(aggregate_day, config, day, providers) for day in days]
        return [future.result() for future in futures]
