"""Range-set algebra used to describe which IDs or versions a party holds."""

from .sorted_range_set import FULL_SET, Range, RangeIterator, SortedRangeSet

__all__ = ["FULL_SET", "Range", "RangeIterator", "SortedRangeSet"]
