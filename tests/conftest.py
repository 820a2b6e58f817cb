from __future__ import annotations

import csv
import gzip
import io
from datetime import date
from pathlib import Path

import pytest

from viewership_aggregator.config import PipelineConfig
from viewership_aggregator.model import CANONICAL_HEADER, SOURCE_HEADER, EventRecord, Provider


def make_record(ts: str, hh_id: str = "1", pg_name: str = "News") -> EventRecord:
    return EventRecord(
        hh_id=hh_id,
        ts=ts,
        pg_id="975540",
        pg_name=pg_name,
        ch_num="3",
        ch_name="KETA",
        event="watch",
        zipcode="79081",
        country="USA",
    )


def source_bytes(records: list[EventRecord]) -> bytes:
    """Gzip-compressed raw extract (`hh_id, ts, ...`) for the given records."""
    buf = io.StringIO(newline="")
    writer = csv.writer(buf)
    writer.writerow(SOURCE_HEADER)
    writer.writerows(list(record) for record in records)
    return gzip.compress(buf.getvalue().encode("utf-8"))


def write_canonical(path: Path, records: list[EventRecord]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", newline="", encoding="utf-8") as out:
        writer = csv.writer(out)
        writer.writerow(CANONICAL_HEADER)
        writer.writerows(record.to_canonical_row() for record in records)
    return path


class FakeStore:
    """In-memory stand-in for S3ObjectStore."""

    def __init__(self, objects: dict[str, bytes], failures: dict[str, int] | None = None) -> None:
        self.objects = objects
        self.failures = dict(failures or {})
        self.calls: list[str] = []

    def list_keys(self, prefix: str) -> list[str]:
        return [key for key in self.objects if key.startswith(prefix)]

    def fetch(self, key: str) -> bytes:
        self.calls.append(key)
        remaining = self.failures.get(key, 0)
        if remaining:
            self.failures[key] = remaining - 1
            raise OSError(f"simulated failure for {key}")
        return self.objects[key]


@pytest.fixture
def providers() -> list[Provider]:
    return [Provider("101", "Armstrong-Butler"), Provider("202", "Blue-Ridge")]


@pytest.fixture
def config(tmp_path: Path) -> PipelineConfig:
    return PipelineConfig(
        date_from=date(2016, 6, 1),
        date_to=date(2016, 6, 1),
        providers_path=tmp_path / "mso-list.csv",
        max_attempts=3,
        concurrency=4,
        days_after=1,
        retry_delay_seconds=0.0,
        work_dir=tmp_path / "work",
        output_dir=tmp_path / "out",
        block_size=2,
        flush_threshold=3,
        day_workers=2,
    ).validate()
