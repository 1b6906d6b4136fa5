"""Sparse index of file positions, to resume reading a large file close to a requested date."""

import bisect
from typing import NamedTuple, Optional

from ..utils_time import Timestamp


class FilePosition(NamedTuple):
    """Byte offset right after a data line, and the number of that line."""

    offset: int
    linenr: int


class FileIndexer:
    """
    Ordered timestamp -> file position map of one source file.

    The positions are only valid for the file content they were recorded on:
    call ``invalidate()`` whenever the source is re-opened.
    """

    def __init__(self):
        self._dates: list[Timestamp] = []
        self._positions: list[FilePosition] = []

    def __len__(self) -> int:
        return len(self._dates)

    def set_index(self, date: Timestamp, offset: int, linenr: int) -> None:
        """Record the position following the line holding date."""
        idx = bisect.bisect_left(self._dates, date)
        if idx < len(self._dates) and self._dates[idx] == date:
            self._positions[idx] = FilePosition(offset, linenr)
            return
        self._dates.insert(idx, date)
        self._positions.insert(idx, FilePosition(offset, linenr))

    def get_index(self, date: Timestamp) -> Optional[FilePosition]:
        """
        Position to resume reading from in order to find date.

        Returns:
            FilePosition or None: The position recorded for the latest date strictly
            before the requested one, None if there is none
        """
        idx = bisect.bisect_left(self._dates, date)
        if idx == 0:
            return None
        return self._positions[idx - 1]

    def invalidate(self) -> None:
        self._dates.clear()
        self._positions.clear()
