"""Index ranges of a record series that fall within time restriction periods."""

import bisect
from typing import Iterator, NamedTuple, Sequence

from ..schema import MeteoRecord
from ..utils_time import Timestamp


class DateRange(NamedTuple):
    """Closed period [start, end]."""

    start: Timestamp
    end: Timestamp

    def contains(self, date: Timestamp) -> bool:
        return self.start <= date <= self.end


class RestrictionsIdx:
    """
    Cursor over the [start, end) index pairs of a series matching each period.

    Periods must be ascending and non-overlapping; periods without any record
    are dropped. Typical use::

        idx = RestrictionsIdx(records, ranges)
        while idx.is_valid():
            process(records[idx.start:idx.end])
            idx.advance()
    """

    def __init__(self, records: Sequence[MeteoRecord], ranges: Sequence[DateRange]):
        dates = [record.date for record in records]
        self._pairs: list[tuple[int, int]] = []
        for date_range in ranges:
            first = bisect.bisect_left(dates, date_range.start)
            last = bisect.bisect_right(dates, date_range.end)
            if first < last:
                self._pairs.append((first, last))
        self._index = 0

    def is_valid(self) -> bool:
        return self._index < len(self._pairs)

    @property
    def start(self) -> int:
        if not self.is_valid():
            raise IndexError("Time restrictions index is not valid anymore")
        return self._pairs[self._index][0]

    @property
    def end(self) -> int:
        if not self.is_valid():
            raise IndexError("Time restrictions index is not valid anymore")
        return self._pairs[self._index][1]

    def advance(self) -> "RestrictionsIdx":
        """Move to the next period; the index becomes invalid after the last one."""
        if self.is_valid():
            self._index += 1
        return self

    def __iter__(self) -> Iterator[tuple[int, int]]:
        return iter(self._pairs)

    def __len__(self) -> int:
        return len(self._pairs)

    def __repr__(self) -> str:
        pairs = " ".join(f"[{start}-{end}]" for start, end in self._pairs)
        return f"RestrictionsIdx({pairs}, index={self._index})"
