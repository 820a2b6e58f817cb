"""
Core business logic for the Viewership Aggregation Pipeline.

These functions are designed to be "pure" and testable: they contain no direct
AWS SDK calls and no global state. The entry point in app.py passes in all
the data they work on, so each can be unit-tested in isolation.
"""

import csv
import json
import logging
from datetime import date, timedelta
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Sequence, Union

from .exceptions import ConfigurationError
from .model import Provider

logger = logging.getLogger(__name__)


def load_providers(path: Union[str, Path]) -> List[Provider]:
    """
    Reads the provider (MSO) lookup table.

    The file is a headerless CSV of `code, name` rows; whitespace after the
    comma is ignored.

    Raises:
        ConfigurationError: If the file cannot be read or a row is malformed.
    """
    providers = []
    try:
        with open(path, "r", newline="", encoding="utf-8") as f:
            for line_no, row in enumerate(csv.reader(f, skipinitialspace=True), start=1):
                if not row:
                    continue
                if len(row) < 2 or not row[0].strip() or not row[1].strip():
                    raise ConfigurationError(f"Malformed provider row {line_no} in {path}: {row!r}")
                providers.append(Provider(code=row[0].strip(), name=row[1].strip()))
    except (OSError, csv.Error) as e:
        raise ConfigurationError(f"Could not read provider list {path}: {e}") from e

    logger.info("Loaded providers", extra={"path": str(path), "count": len(providers)})
    return providers


def provider_lookup(providers: Iterable[Provider]) -> Dict[str, str]:
    """Maps provider code to provider name."""
    return {provider.code: provider.name for provider in providers}


def date_range(date_from: date, date_to: date) -> List[date]:
    """Every day from `date_from` to `date_to`, both inclusive."""
    days = []
    day = date_from
    while day <= date_to:
        days.append(day)
        day += timedelta(days=1)
    return days


def window_days(day: date, days_after: int) -> List[date]:
    """
    The days whose source files can hold events of `day`.

    Events of one calendar day may be split across adjacent extracts, so the
    window is the day before through `days_after` days after.
    """
    return date_range(day - timedelta(days=1), day + timedelta(days=days_after))


def fetch_days(date_from: date, date_to: date, days_after: int) -> List[date]:
    """Every day that some reporting day's window needs on disk."""
    return date_range(date_from - timedelta(days=1), date_to + timedelta(days=days_after))


def lookup_fragment(provider_name: str, day: date) -> str:
    """The part of a key or file name that identifies one provider/day extract."""
    return f"{provider_name}-{day.strftime('%Y%m%d')}.csv"


def select_keys(keys: Iterable[str], providers: Sequence[Provider], days: Sequence[date]) -> List[str]:
    """
    Keeps the object keys that belong to one of the providers on one of the days.

    Each matching key is returned once, in listing order.
    """
    fragments = [lookup_fragment(provider.name, day) for provider in providers for day in days]
    selected = []
    for key in keys:
        if any(fragment in key for fragment in fragments):
            selected.append(key)
        else:
            logger.debug("Key does not match any provider/day", extra={"key": key})
    return selected


def iter_canonical_files(directory: Path) -> Iterator[Path]:
    """Canonical Files (`*.csv`) anywhere under `directory`, in a stable order."""
    if not directory.is_dir():
        return iter(())
    return iter(sorted(path for path in directory.rglob("*.csv") if path.is_file()))


def collect_day_files(
    work_dir: Path,
    prefix: str,
    day: date,
    providers: Sequence[Provider],
    days_after: int,
) -> Dict[str, List[Path]]:
    """
    Finds the Canonical Files for a reporting day's window, grouped by provider code.

    Source files are expected under `work_dir/prefix/<YYYYMMDD>/`, mirroring the
    object keys they were fetched from.
    """
    files: Dict[str, List[Path]] = {provider.code: [] for provider in providers}
    # Longest name first, so "Armstrong-Butler" is not claimed by "Butler".
    by_name_length = sorted(providers, key=lambda provider: len(provider.name), reverse=True)
    for window_day in window_days(day, days_after):
        directory = Path(work_dir) / prefix / window_day.strftime("%Y%m%d")
        for path in iter_canonical_files(directory):
            for provider in by_name_length:
                if path.name.endswith(lookup_fragment(provider.name, window_day)):
                    files[provider.code].append(path)
                    break
            else:
                logger.debug("Canonical file matches no provider", extra={"path": str(path)})
    return {code: paths for code, paths in files.items() if paths}


def emit_metrics(environment: str, status: str, payload: Dict[str, Any]) -> None:
    """
    Emits a single structured metrics line.

    Args:
        environment: The deployment environment the run belongs to.
        status: One of "Success", "Failure" or "Info".
        payload: Metric names mapped to values.
    """
    logger.info(
        f"METRICS {status}: {json.dumps(payload, default=str, sort_keys=True)}",
        extra={"metric_status": status, "environment": environment, **payload},
    )
