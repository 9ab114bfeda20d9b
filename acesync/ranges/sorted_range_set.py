"""Compact sets of non-negative integers stored as sorted, merged ranges.

A ``SortedRangeSet`` is the currency of every synchronization exchange: a
party describes which event IDs or repository versions it holds as text such
as ``"1-5,7,9-12"``, the peer parses it, and both sides compute differences to
find out what is missing.

Sets are values. Every operation returns a new set and never changes the
receiver, so a set can be shared between threads once it is published.
"""

import re
import sys
from bisect import bisect_right
from dataclasses import dataclass
from typing import Iterable, Iterator

from ..errors import FormatError

_TOKEN = re.compile(r"(\d+)(?:-(\d+))?", re.ASCII)


@dataclass(frozen=True, order=True)
class Range:
    """Inclusive interval ``[low, high]`` of non-negative integers."""

    low: int
    high: int

    def __post_init__(self) -> None:
        if self.low < 0:
            raise FormatError(f"Range bounds must be non-negative, got {self.low}")
        if self.low > self.high:
            raise FormatError(
                f"Range low bound {self.low} exceeds high bound {self.high}"
            )

    @classmethod
    def parse(cls, token: str) -> "Range":
        """Parse a single ``n`` or ``n-m`` token.

        Raises:
            FormatError: If the token is malformed or its bounds descend.
        """
        match = _TOKEN.fullmatch(token)
        if match is None:
            raise FormatError(f"Invalid range token: {token!r}")
        low = int(match.group(1))
        high = int(match.group(2)) if match.group(2) is not None else low
        return cls(low, high)

    def contains(self, number: int) -> bool:
        return self.low <= number <= self.high

    def __len__(self) -> int:
        return self.high - self.low + 1

    def to_representation(self) -> str:
        if self.low == self.high:
            return str(self.low)
        return f"{self.low}-{self.high}"


class RangeIterator:
    """Lazy, single-pass producer of the integers in a ``SortedRangeSet``.

    Iterates in ascending order, or descending when ``reverse`` is set. The
    iterator is meant for a single consumer thread.
    """

    def __init__(self, ranges: tuple[Range, ...], reverse: bool = False):
        self._ranges = ranges
        self._reverse = reverse
        self._index = len(ranges) - 1 if reverse else 0
        self._next: int | None = None
        self._load()

    def _load(self) -> None:
        if 0 <= self._index < len(self._ranges):
            current = self._ranges[self._index]
            self._next = current.high if self._reverse else current.low
        else:
            self._next = None

    def has_next(self) -> bool:
        return self._next is not None

    def __iter__(self) -> "RangeIterator":
        return self

    def __next__(self) -> int:
        if self._next is None:
            raise StopIteration
        value = self._next
        current = self._ranges[self._index]
        if self._reverse:
            if value > current.low:
                self._next = value - 1
            else:
                self._index -= 1
                self._load()
        else:
            if value < current.high:
                self._next = value + 1
            else:
                self._index += 1
                self._load()
        return value


class SortedRangeSet:
    """Set of non-negative integers kept as ascending, disjoint, non-adjacent ranges.

    ``SortedRangeSet("1-5,7")`` parses the canonical text form; ``str(s)``
    (or ``s.to_representation()``) produces it again. The empty set is the
    empty string.
    """

    __slots__ = ("_ranges", "_lows")

    def __init__(self, representation: str = ""):
        ranges: list[Range] = []
        if representation:
            for token in representation.split(","):
                ranges.append(Range.parse(token))
        ranges.sort()
        self._ranges = _coalesce(ranges)
        self._lows = [r.low for r in self._ranges]

    @classmethod
    def parse(cls, representation: str) -> "SortedRangeSet":
        """Parse the textual form, raising ``FormatError`` on bad input."""
        return cls(representation)

    @classmethod
    def from_ranges(cls, ranges: Iterable[Range]) -> "SortedRangeSet":
        """Build a set from ranges in any order; overlaps are merged."""
        result = cls.__new__(cls)
        result._ranges = _coalesce(sorted(ranges))
        result._lows = [r.low for r in result._ranges]
        return result

    @classmethod
    def from_items(cls, items: Iterable[int]) -> "SortedRangeSet":
        """Build a set from integers in any order, duplicates allowed."""
        ranges: list[Range] = []
        low = high = None
        for item in sorted(set(items)):
            if high is not None and item == high + 1:
                high = item
                continue
            if low is not None:
                ranges.append(Range(low, high))
            low = high = item
        if low is not None:
            ranges.append(Range(low, high))
        return cls._canonical(tuple(ranges))

    @classmethod
    def _canonical(cls, ranges: tuple[Range, ...]) -> "SortedRangeSet":
        result = cls.__new__(cls)
        result._ranges = ranges
        result._lows = [r.low for r in ranges]
        return result

    # ------------------------------------------------------------------
    # Queries

    def ranges(self) -> tuple[Range, ...]:
        return self._ranges

    def contains(self, number: int) -> bool:
        index = bisect_right(self._lows, number) - 1
        return index >= 0 and self._ranges[index].high >= number

    def __contains__(self, number: object) -> bool:
        return isinstance(number, int) and self.contains(number)

    @property
    def is_empty(self) -> bool:
        return not self._ranges

    @property
    def high(self) -> int:
        """Highest member, or 0 when the set is empty."""
        return self._ranges[-1].high if self._ranges else 0

    @property
    def low(self) -> int:
        """Lowest member, or 0 when the set is empty."""
        return self._ranges[0].low if self._ranges else 0

    def iterator(self) -> RangeIterator:
        return RangeIterator(self._ranges)

    def reverse_iterator(self) -> RangeIterator:
        return RangeIterator(self._ranges, reverse=True)

    def __iter__(self) -> Iterator[int]:
        return self.iterator()

    def __len__(self) -> int:
        return sum(len(r) for r in self._ranges)

    def __bool__(self) -> bool:
        return bool(self._ranges)

    # ------------------------------------------------------------------
    # Algebra

    def add(self, number: int) -> "SortedRangeSet":
        """Return a copy with ``number`` inserted, merging neighbours."""
        if self.contains(number):
            return self
        return self.union(SortedRangeSet._canonical((Range(number, number),)))

    def union(self, other: "SortedRangeSet") -> "SortedRangeSet":
        merged: list[Range] = []
        a, b = self._ranges, other._ranges
        i = j = 0
        while i < len(a) or j < len(b):
            if j >= len(b) or (i < len(a) and a[i].low <= b[j].low):
                merged.append(a[i])
                i += 1
            else:
                merged.append(b[j])
                j += 1
        return SortedRangeSet._canonical(_coalesce(merged))

    def difference(self, other: "SortedRangeSet") -> "SortedRangeSet":
        """Members of this set that are not in ``other``."""
        result: list[Range] = []
        b = other._ranges
        j = 0
        for r in self._ranges:
            low, high = r.low, r.high
            while j < len(b) and b[j].high < low:
                j += 1
            k = j
            while k < len(b) and b[k].low <= high:
                if b[k].low > low:
                    result.append(Range(low, b[k].low - 1))
                low = b[k].high + 1
                if low > high:
                    break
                k += 1
            if low <= high:
                result.append(Range(low, high))
        return SortedRangeSet._canonical(tuple(result))

    def intersection(self, other: "SortedRangeSet") -> "SortedRangeSet":
        result: list[Range] = []
        a, b = self._ranges, other._ranges
        i = j = 0
        while i < len(a) and j < len(b):
            low = max(a[i].low, b[j].low)
            high = min(a[i].high, b[j].high)
            if low <= high:
                result.append(Range(low, high))
            if a[i].high < b[j].high:
                i += 1
            else:
                j += 1
        return SortedRangeSet._canonical(tuple(result))

    __or__ = union
    __sub__ = difference
    __and__ = intersection

    # ------------------------------------------------------------------
    # Representation

    def to_representation(self) -> str:
        return ",".join(r.to_representation() for r in self._ranges)

    def __str__(self) -> str:
        return self.to_representation()

    def __repr__(self) -> str:
        return f"SortedRangeSet[{self.to_representation()}]"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SortedRangeSet):
            return NotImplemented
        return self._ranges == other._ranges

    def __hash__(self) -> int:
        return hash(self._ranges)


def _coalesce(ranges: list[Range]) -> tuple[Range, ...]:
    """Merge overlapping or adjacent ranges of a list sorted by low bound."""
    result: list[Range] = []
    for r in ranges:
        if result and r.low <= result[-1].high + 1:
            if r.high > result[-1].high:
                result[-1] = Range(result[-1].low, r.high)
        else:
            result.append(r)
    return tuple(result)


FULL_SET = SortedRangeSet._canonical((Range(0, sys.maxsize),))
