"""
K-way merge of time-sorted Canonical Files.

The merge repeatedly takes the earliest pending record across all cursors.
Selection is a linear scan, which is O(k) per record; k is the number of files
merged for one reporting day (tens), so a heap buys nothing here.

Every input file must already be sorted by timestamp. This is not checked: an
unsorted input produces an unsorted merge.
"""

import logging
from pathlib import Path
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

from .config import DEFAULT_BLOCK_SIZE
from .cursor import FileCursor
from .model import EventRecord

logger = logging.getLogger(__name__)


class CursorSet:
    """
    The group of cursors merged together for one reporting day.

    Cursors are grouped by provider code so that every merged record can be
    attributed to the provider whose file it came from. Insertion order is
    kept and decides ties: among cursors whose next records share a timestamp,
    the first one added wins.
    """

    def __init__(self):
        self._cursors: List[Tuple[str, FileCursor]] = []
        self.skipped: List[Path] = []

    @classmethod
    def open(
        cls,
        files_by_provider: Mapping[str, Sequence[Union[str, Path]]],
        block_size: int = DEFAULT_BLOCK_SIZE,
    ) -> "CursorSet":
        """
        Opens a cursor for every file. Files that cannot be opened, or hold no
        records, are logged and left out of the set.
        """
        cursor_set = cls()
        for provider_code, paths in files_by_provider.items():
            for path in paths:
                cursor = FileCursor(path, block_size=block_size)
                if cursor.open():
                    cursor_set.add(provider_code, cursor)
                else:
                    if cursor.error is not None:
                        cursor_set.skipped.append(cursor.path)
                    logger.debug("Skipping file with no records", extra={"path": str(path), "provider": provider_code})
        return cursor_set

    def add(self, provider_code: str, cursor: FileCursor) -> None:
        self._cursors.append((provider_code, cursor))

    def __len__(self) -> int:
        return len(self._cursors)

    @property
    def exhausted(self) -> bool:
        return all(cursor.ended for _, cursor in self._cursors)

    def next_min(self) -> Optional[Tuple[EventRecord, str]]:
        """
        Pops the record with the smallest timestamp across all live cursors.

        Returns:
            The record and its provider code, or None once every cursor has ended.
        """
        min_ts: Optional[str] = None
        min_entry: Optional[Tuple[str, FileCursor]] = None
        for provider_code, cursor in self._cursors:
            if cursor.ended:
                continue
            ts = cursor.peek_timestamp()
            if ts is None:
                cursor.close()
                continue
            if min_ts is None or ts < min_ts:
                min_ts = ts
                min_entry = (provider_code, cursor)

        if min_entry is None:
            return None
        provider_code, cursor = min_entry
        return cursor.pop(), provider_code

    def __iter__(self) -> Iterator[Tuple[EventRecord, str]]:
        while (item := self.next_min()) is not None:
            yield item

    def truncations(self) -> Dict[str, int]:
        """Files whose cursor hit a read error, mapped to the records read from each."""
        result = {str(cursor.path): cursor.records_read for _, cursor in self._cursors if cursor.truncated}
        for path in self.skipped:
            result.setdefault(str(path), 0)
        return result

    def close(self) -> None:
        for _, cursor in self._cursors:
            cursor.close()

    def __enter__(self) -> "CursorSet":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def merge(cursor_set: CursorSet) -> Iterator[Tuple[EventRecord, str]]:
    """Yields `(record, provider_code)` pairs in non-decreasing timestamp order."""
    return iter(cursor_set)
