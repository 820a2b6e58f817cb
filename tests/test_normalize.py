from __future__ import annotations

import gzip
from pathlib import Path

import pytest

from viewership_aggregator.exceptions import MalformedRowError, NormalizationError
from viewership_aggregator.model import CANONICAL_HEADER, SOURCE_HEADER
from viewership_aggregator.normalize import canonical_path, normalize_file
from viewership_aggregator.report import read_report

from conftest import make_record, source_bytes


def test_canonical_path_strips_archive_suffix() -> None:
    assert canonical_path("a/Blue-Ridge-20160601.csv.gzip") == Path("a/Blue-Ridge-20160601.csv")
    assert canonical_path("a/Blue-Ridge-20160601.csv.gz") == Path("a/Blue-Ridge-20160601.csv")
    with pytest.raises(NormalizationError):
        canonical_path("a/Blue-Ridge-20160601.csv")


def test_normalize_sorts_stably_and_reorders_columns(tmp_path: Path) -> None:
    records = [
        make_record("2016-06-01 10:00:00", hh_id="c"),
        make_record("2016-06-01 08:00:00", hh_id="a"),
        make_record("2016-06-01 10:00:00", hh_id="d"),
        make_record("2016-06-01 09:00:00", hh_id="b", pg_name="Oklahoma, News Report"),
    ]
    archive = tmp_path / "Blue-Ridge-20160601.csv.gzip"
    archive.write_bytes(source_bytes(records))

    target = normalize_file(archive)

    assert target == tmp_path / "Blue-Ridge-20160601.csv"
    assert target.read_text(encoding="utf-8").splitlines()[0] == ",".join(CANONICAL_HEADER)
    normalized = read_report(target)
    assert [r.hh_id for r in normalized] == ["a", "b", "c", "d"]
    assert normalized[1].pg_name == "Oklahoma, News Report"
    assert archive.exists()


def test_normalize_header_only_archive(tmp_path: Path) -> None:
    archive = tmp_path / "x-20160601.csv.gzip"
    archive.write_bytes(source_bytes([]))

    target = normalize_file(archive)

    assert read_report(target) == []


def test_corrupt_archive_leaves_no_canonical_file(tmp_path: Path) -> None:
    archive = tmp_path / "x-20160601.csv.gzip"
    archive.write_bytes(b"definitely not gzip")

    with pytest.raises(NormalizationError):
        normalize_file(archive)

    assert sorted(p.name for p in tmp_path.iterdir()) == ["x-20160601.csv.gzip"]


def test_malformed_row_fails_without_partial_output(tmp_path: Path) -> None:
    body = ",".join(SOURCE_HEADER) + "\n1,2016-06-01 00:00:00,only,four\n"
    archive = tmp_path / "x-20160601.csv.gzip"
    archive.write_bytes(gzip.compress(body.encode("utf-8")))

    with pytest.raises(MalformedRowError):
        normalize_file(archive)

    assert not (tmp_path / "x-20160601.csv").exists()


def test_failed_renormalization_keeps_previous_canonical_file(tmp_path: Path) -> None:
    archive = tmp_path / "x-20160601.csv.gzip"
    archive.write_bytes(source_bytes([make_record("2016-06-01 01:00:00")]))
    target = normalize_file(archive)
    before = target.read_bytes()

    archive.write_bytes(gzip.compress(b"hh_id\nbroken-row\n"))
    with pytest.raises(NormalizationError):
        normalize_file(archive)

    assert target.read_bytes() == before
    assert not list(tmp_path.glob(".*.tmp"))
