"""
Turns a freshly fetched provider archive into a Canonical File.

A Canonical File is the CSV form of one provider/day extract with its records
sorted by timestamp and its columns in canonical order. It is written once,
here, and only read afterwards. The whole archive is decompressed in memory,
which is fine for daily per-provider extracts.
"""

import csv
import gzip
import io
import logging
import os
import tempfile
import zlib
from pathlib import Path
from typing import Iterable, List, Union

from .exceptions import NormalizationError
from .model import CANONICAL_HEADER, EventRecord

logger = logging.getLogger(__name__)

ARCHIVE_SUFFIXES = (".gzip", ".gz")


def canonical_path(path: Union[str, Path]) -> Path:
    """Strips the archive suffix: `x-20160601.csv.gzip` -> `x-20160601.csv`."""
    path = Path(path)
    if path.suffix in ARCHIVE_SUFFIXES:
        return path.with_suffix("")
    raise NormalizationError(f"Not a compressed archive: {path}")


def read_source_records(payload: bytes) -> List[EventRecord]:
    """Parses decompressed extract bytes, discarding the header row."""
    reader = csv.reader(io.StringIO(payload.decode("utf-8"), newline=""))
    records = []
    for i, row in enumerate(reader):
        if i == 0 or not row:
            continue
        records.append(EventRecord.from_source_row(row))
    return records


def sort_records(records: Iterable[EventRecord]) -> List[EventRecord]:
    # sorted() is stable: equal timestamps keep their original order.
    return sorted(records, key=lambda record: record.ts)


def write_canonical_file(path: Path, records: Iterable[EventRecord]) -> None:
    """
    Writes records to `path` atomically.

    The content goes to a temporary file in the same directory which is then
    renamed over `path`, so readers never observe a partially written file.
    """
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", newline="", encoding="utf-8") as out:
            writer = csv.writer(out)
            writer.writerow(CANONICAL_HEADER)
            writer.writerows(record.to_canonical_row() for record in records)
            out.flush()
            os.fsync(out.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def normalize_file(path: Union[str, Path]) -> Path:
    """
    Decompresses, sorts and persists one fetched archive.

    Args:
        path: Path to the gzip-compressed source extract.

    Returns:
        The path of the Canonical File written next to the archive.

    Raises:
        NormalizationError: If the archive is corrupt, a row is malformed, or
                            reading or writing fails. No Canonical File is left
                            behind in that case.
    """
    source = Path(path)
    target = canonical_path(source)
    try:
        with gzip.open(source, "rb") as archive:
            payload = archive.read()
        records = sort_records(read_source_records(payload))
        write_canonical_file(target, records)
    except NormalizationError:
        raise
    except (OSError, EOFError, zlib.error, UnicodeDecodeError, csv.Error) as e:
        raise NormalizationError(f"Could not normalize {source}: {e}") from e

    logger.debug("Normalized archive", extra={"source": str(source), "target": str(target), "records": len(records)})
    return target
