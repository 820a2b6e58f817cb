from __future__ import annotations

from pathlib import Path

import pytest

from viewership_aggregator.cursor import CursorState, FileCursor
from viewership_aggregator.exceptions import CursorExhausted
from viewership_aggregator.model import CANONICAL_HEADER

from conftest import make_record, write_canonical


def _drain(cursor: FileCursor) -> list[str]:
    seen = []
    while cursor.peek_timestamp() is not None:
        seen.append(cursor.pop().ts)
    return seen


def test_cursor_reads_all_records_across_refills(tmp_path: Path) -> None:
    stamps = [f"2016-06-01 00:00:0{i}" for i in range(5)]
    path = write_canonical(tmp_path / "a.csv", [make_record(ts) for ts in stamps])
    cursor = FileCursor(path, block_size=2)

    assert cursor.state is CursorState.UNOPENED
    assert cursor.open()
    assert cursor.state is CursorState.PRIMED
    assert _drain(cursor) == stamps
    assert cursor.ended
    assert cursor.records_read == 5
    assert not cursor.truncated


def test_cursor_ends_and_releases_handle_on_last_pop(tmp_path: Path) -> None:
    path = write_canonical(tmp_path / "a.csv", [make_record("2016-06-01 00:00:00")])
    cursor = FileCursor(path, block_size=10)
    cursor.open()

    cursor.pop()

    assert cursor.state is CursorState.ENDED
    assert cursor._handle is None
    assert cursor.peek_timestamp() is None
    with pytest.raises(CursorExhausted):
        cursor.pop()
    cursor.close()
    cursor.close()


def test_cursor_on_missing_file_is_ended(tmp_path: Path) -> None:
    cursor = FileCursor(tmp_path / "missing.csv")

    assert cursor.open() is False
    assert cursor.ended
    assert cursor.error


def test_cursor_on_header_only_file_is_ended(tmp_path: Path) -> None:
    path = write_canonical(tmp_path / "empty.csv", [])
    cursor = FileCursor(path)

    assert cursor.open() is False
    assert cursor.ended
    assert cursor.error is None


def test_read_error_truncates_only_the_unread_tail(tmp_path: Path) -> None:
    path = tmp_path / "bad.csv"
    good = [make_record(f"2016-06-01 00:00:0{i}") for i in range(3)]
    lines = [",".join(CANONICAL_HEADER)]
    lines += [",".join(record.to_canonical_row()) for record in good]
    lines += ["2016-06-01 00:00:09,broken", ",".join(make_record("2016-06-01 00:00:10").to_canonical_row())]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")

    cursor = FileCursor(path, block_size=2)
    cursor.open()

    assert _drain(cursor) == [record.ts for record in good]
    assert cursor.truncated
    assert cursor.records_read == 3
    assert cursor.ended


def test_cursor_cannot_be_opened_twice(tmp_path: Path) -> None:
    path = write_canonical(tmp_path / "a.csv", [make_record("2016-06-01 00:00:00")])
    cursor = FileCursor(path)
    cursor.open()

    with pytest.raises(RuntimeError):
        cursor.open()
