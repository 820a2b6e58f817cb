from __future__ import annotations

import random
from pathlib import Path

from viewership_aggregator.merge import CursorSet, merge
from viewership_aggregator.model import CANONICAL_HEADER

from conftest import make_record, write_canonical


def _ts(n: int) -> str:
    return f"2016-06-01 00:{n // 60:02d}:{n % 60:02d}"


def test_three_files_merge_in_timestamp_order(tmp_path: Path) -> None:
    a = write_canonical(tmp_path / "a.csv", [make_record(_ts(n)) for n in (1, 3, 5)])
    b = write_canonical(tmp_path / "b.csv", [make_record(_ts(n)) for n in (2, 4)])
    c = write_canonical(tmp_path / "c.csv", [make_record(_ts(n)) for n in (0, 6)])

    with CursorSet.open({"101": [a, b], "202": [c]}, block_size=1) as cursor_set:
        merged = list(merge(cursor_set))

    assert [record.ts for record, _ in merged] == [_ts(n) for n in range(7)]
    assert [provider for _, provider in merged] == ["202", "101", "101", "101", "101", "101", "202"]
    assert cursor_set.exhausted


def test_merge_is_sorted_and_conserves_records(tmp_path: Path) -> None:
    rng = random.Random(7)
    files = {}
    expected = 0
    for i in range(6):
        stamps = sorted(rng.randrange(0, 3600) for _ in range(rng.randrange(0, 40)))
        expected += len(stamps)
        records = [make_record(_ts(n), hh_id=f"{i}-{j}") for j, n in enumerate(stamps)]
        files.setdefault(str(i % 2), []).append(write_canonical(tmp_path / f"{i}.csv", records))

    with CursorSet.open(files, block_size=3) as cursor_set:
        merged = [record for record, _ in cursor_set]

    stamps = [record.ts for record in merged]
    assert stamps == sorted(stamps)
    assert len(merged) == expected
    assert len({record.hh_id for record in merged}) == expected


def test_equal_timestamps_within_a_file_keep_file_order(tmp_path: Path) -> None:
    a = write_canonical(tmp_path / "a.csv", [make_record(_ts(1), hh_id=h) for h in ("x", "y", "z")])
    b = write_canonical(tmp_path / "b.csv", [make_record(_ts(0), hh_id="w")])

    with CursorSet.open({"101": [a, b]}, block_size=2) as cursor_set:
        assert [record.hh_id for record, _ in cursor_set] == ["w", "x", "y", "z"]


def test_truncated_file_drops_only_its_own_tail(tmp_path: Path) -> None:
    good = write_canonical(tmp_path / "good.csv", [make_record(_ts(n)) for n in (0, 2, 4)])
    bad = tmp_path / "bad.csv"
    rows = [",".join(CANONICAL_HEADER), ",".join(make_record(_ts(1)).to_canonical_row()), "not,enough"]
    bad.write_text("\n".join(rows) + "\n", encoding="utf-8")

    with CursorSet.open({"101": [good], "202": [bad]}, block_size=5) as cursor_set:
        merged = [record.ts for record, _ in cursor_set]
        truncations = cursor_set.truncations()

    assert merged == [_ts(n) for n in (0, 1, 2, 4)]
    assert truncations == {str(bad): 1}


def test_unopenable_and_empty_files_are_left_out(tmp_path: Path) -> None:
    good = write_canonical(tmp_path / "good.csv", [make_record(_ts(0))])
    empty = write_canonical(tmp_path / "empty.csv", [])
    missing = tmp_path / "missing.csv"

    cursor_set = CursorSet.open({"101": [good, empty, missing]})

    assert len(cursor_set) == 1
    assert [record.ts for record, _ in cursor_set] == [_ts(0)]
    assert cursor_set.truncations() == {str(missing): 0}


def test_empty_cursor_set_yields_nothing() -> None:
    cursor_set = CursorSet()

    assert list(cursor_set) == []
    assert cursor_set.next_min() is None
