"""
Buffered streaming reader over one Canonical File.

A cursor keeps only a small window of upcoming records in memory and refills
it one block at a time, so many Canonical Files can be merged without loading
any of them fully.

Usage:

    cursor = FileCursor("provider-20160601.csv")
    if cursor.open():
        while (ts := cursor.peek_timestamp()) is not None:
            record = cursor.pop()
            ...
"""

import csv
import enum
import logging
from collections import deque
from pathlib import Path
from typing import Deque, Optional, TextIO, Union

from .config import DEFAULT_BLOCK_SIZE
from .exceptions import CursorExhausted, MalformedRowError
from .model import EventRecord

logger = logging.getLogger(__name__)


class CursorState(enum.Enum):
    UNOPENED = "unopened"
    PRIMED = "primed"
    REFILLING = "refilling"
    ENDED = "ended"


class FileCursor:
    """
    A forward-only cursor over a time-sorted Canonical File.

    While the cursor is not ended, the head of its window is the earliest
    record of the file that has not been popped yet. Once ended it yields
    nothing more and its file handle has been released.

    A read error in the middle of the file ends the cursor early. The rest of
    that file is skipped, and the cursor records it as truncated so callers can
    report it.
    """

    def __init__(self, path: Union[str, Path], block_size: int = DEFAULT_BLOCK_SIZE):
        if block_size < 1:
            raise ValueError(f"block_size must be positive, got {block_size}")
        self.path = Path(path)
        self.block_size = block_size
        self.state = CursorState.UNOPENED
        self.records_read = 0
        self.truncated = False
        self.error: Optional[str] = None
        self._window: Deque[EventRecord] = deque()
        self._handle: Optional[TextIO] = None
        self._reader = None
        self._exhausted = False

    @property
    def ended(self) -> bool:
        return self.state is CursorState.ENDED

    def open(self) -> bool:
        """
        Opens the file, skips the header and primes the first block.

        Returns:
            True if the cursor is ready to yield records. False if the file
            could not be opened or read; the cursor is ended in that case.
        """
        if self.state is not CursorState.UNOPENED:
            raise RuntimeError(f"Cursor for {self.path} is already {self.state.value}")
        try:
            self._handle = open(self.path, "r", newline="", encoding="utf-8")
            self._reader = csv.reader(self._handle)
            next(self._reader, None)  # header
        except (OSError, csv.Error, UnicodeDecodeError) as e:
            logger.warning("Could not open canonical file", extra={"path": str(self.path), "error": str(e)})
            self.error = str(e)
            self.close()
            return False

        self.state = CursorState.PRIMED
        self._read_block()
        if not self._window:
            self.close()
        return not self.ended

    def _read_block(self) -> int:
        """Reads up to `block_size` records into the window. Returns how many were read."""
        count = 0
        if self._exhausted:
            return count
        try:
            while count < self.block_size:
                row = next(self._reader, None)
                if row is None:
                    self._exhausted = True
                    break
                if not row:
                    continue
                self._window.append(EventRecord.from_canonical_row(row))
                count += 1
        except (OSError, csv.Error, UnicodeDecodeError, MalformedRowError) as e:
            self._exhausted = True
            self.truncated = True
            self.error = str(e)
            logger.warning(
                "Read error, skipping the rest of the file",
                extra={"path": str(self.path), "records_read": self.records_read + len(self._window), "error": str(e)},
            )
        logger.debug("Read block", extra={"path": str(self.path), "records": count})
        return count

    def peek_timestamp(self) -> Optional[str]:
        """Returns the timestamp of the next record, or None at end of data."""
        if self.ended or not self._window:
            return None
        return self._window[0].ts

    def pop(self) -> EventRecord:
        """
        Returns the next record and advances.

        Refills the window when it runs empty, and ends the cursor once the
        file has no more records.

        Raises:
            CursorExhausted: If the cursor has no more records.
        """
        if self.ended or not self._window:
            raise CursorExhausted(f"No records left in {self.path}")
        record = self._window.popleft()
        self.records_read += 1

        if not self._window:
            self.state = CursorState.REFILLING
            self._read_block()
            if self._window:
                self.state = CursorState.PRIMED
            else:
                self.close()
        return record

    def close(self) -> None:
        """Ends the cursor and releases the file handle. Safe to call repeatedly."""
        self.state = CursorState.ENDED
        self._window.clear()
        handle, self._handle = self._handle, None
        self._reader = None
        if handle is not None:
            handle.close()

    def __enter__(self) -> "FileCursor":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"FileCursor({str(self.path)!r}, state={self.state.value}, records_read={self.records_read})"
