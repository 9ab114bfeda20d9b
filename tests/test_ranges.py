"""Tests for the range set algebra."""

import sys

import pytest

from acesync.errors import FormatError
from acesync.ranges import FULL_SET, Range, RangeIterator, SortedRangeSet


class TestRange:
    """Tests for single ranges."""

    def test_parse_singleton(self):
        assert Range.parse("7") == Range(7, 7)

    def test_parse_interval(self):
        r = Range.parse("3-9")
        assert (r.low, r.high) == (3, 9)
        assert len(r) == 7

    def test_descending_bounds_rejected(self):
        with pytest.raises(FormatError):
            Range.parse("9-3")

    def test_negative_bound_rejected(self):
        with pytest.raises(FormatError):
            Range(-1, 4)

    def test_representation(self):
        assert Range(4, 4).to_representation() == "4"
        assert Range(4, 6).to_representation() == "4-6"


class TestParsing:
    """Tests for parsing and printing range sets."""

    @pytest.mark.parametrize("text", ["", "0", "1-5", "1-5,7,9-12", "1,3,5", "0-1,10-20"])
    def test_canonical_round_trip(self, text):
        """Canonical text prints back unchanged."""
        assert str(SortedRangeSet.parse(text)) == text

    def test_example_iterates_members(self):
        s = SortedRangeSet("1-5,7,9-12")
        assert list(s) == [1, 2, 3, 4, 5, 7, 9, 10, 11, 12]

    def test_unordered_and_adjacent_tokens_are_merged(self):
        assert str(SortedRangeSet("9,3-4,1-2,5")) == "1-5,9"

    def test_overlapping_tokens_are_merged(self):
        assert str(SortedRangeSet("1-5,3-8")) == "1-8"

    def test_degenerate_interval_prints_as_singleton(self):
        assert str(SortedRangeSet("4-4")) == "4"

    @pytest.mark.parametrize(
        "text", ["5-3", "-1", "a", "1,,2", " 1", "1-", "1-2-3", "1,", "1.5", "+3"]
    )
    def test_malformed_input_rejected(self, text):
        with pytest.raises(FormatError):
            SortedRangeSet.parse(text)

    def test_format_error_is_value_error(self):
        with pytest.raises(ValueError):
            SortedRangeSet.parse("x")

    def test_empty_set(self):
        s = SortedRangeSet()
        assert s.is_empty
        assert not s
        assert len(s) == 0
        assert str(s) == ""
        assert s.high == 0
        assert list(s) == []

    def test_repr(self):
        assert repr(SortedRangeSet("1-3")) == "SortedRangeSet[1-3]"


class TestConstruction:
    """Tests for alternative constructors."""

    def test_from_items_unordered_with_duplicates(self):
        s = SortedRangeSet.from_items([5, 1, 3, 2, 2, 9, 10])
        assert str(s) == "1-3,5,9-10"

    def test_from_items_empty(self):
        assert SortedRangeSet.from_items([]).is_empty

    def test_from_ranges(self):
        s = SortedRangeSet.from_ranges([Range(8, 9), Range(1, 3), Range(2, 5)])
        assert str(s) == "1-5,8-9"


class TestQueries:
    """Tests for membership and bounds."""

    def test_contains(self):
        s = SortedRangeSet("1-5,7,9-12")
        assert s.contains(1)
        assert s.contains(7)
        assert 12 in s
        assert 6 not in s
        assert 0 not in s
        assert 13 not in s

    def test_contains_ignores_non_integers(self):
        assert "3" not in SortedRangeSet("1-5")

    def test_bounds(self):
        s = SortedRangeSet("3-5,9")
        assert s.low == 3
        assert s.high == 9
        assert len(s) == 4

    def test_ranges(self):
        s = SortedRangeSet("1-2,4")
        assert s.ranges() == (Range(1, 2), Range(4, 4))

    def test_reverse_iterator(self):
        s = SortedRangeSet("1-3,7,9-10")
        assert list(s.reverse_iterator()) == [10, 9, 7, 3, 2, 1]

    def test_iterator_has_next(self):
        it = SortedRangeSet("4-5").iterator()
        assert isinstance(it, RangeIterator)
        assert it.has_next()
        assert next(it) == 4
        assert next(it) == 5
        assert not it.has_next()
        with pytest.raises(StopIteration):
            next(it)

    def test_full_set(self):
        assert 0 in FULL_SET
        assert sys.maxsize in FULL_SET
        assert FULL_SET.high == sys.maxsize


class TestAlgebra:
    """Tests for add, union, difference and intersection."""

    def test_merge_law(self):
        s = SortedRangeSet().add(1).add(2).add(3)
        assert str(s) == "1-3"

    def test_add_is_idempotent(self):
        s = SortedRangeSet("1-5")
        assert s.add(3) == s

    def test_add_bridges_gap(self):
        assert str(SortedRangeSet("1-3,5-7").add(4)) == "1-7"

    def test_add_returns_new_value(self):
        s = SortedRangeSet("1-3")
        t = s.add(10)
        assert str(s) == "1-3"
        assert str(t) == "1-3,10"

    def test_union(self):
        a = SortedRangeSet("1-3,10")
        b = SortedRangeSet("4-6,8,10-12")
        assert str(a | b) == "1-6,8,10-12"
        assert a.union(b) == b.union(a)

    def test_difference(self):
        a = SortedRangeSet("1-10")
        b = SortedRangeSet("2,4-5,9-20")
        assert str(a - b) == "1,3,6-8"
        assert str(b - a) == "11-20"

    def test_difference_with_empty(self):
        a = SortedRangeSet("1-3")
        assert a - SortedRangeSet() == a
        assert (SortedRangeSet() - a).is_empty

    def test_intersection(self):
        a = SortedRangeSet("1-5,8-12")
        b = SortedRangeSet("4-9,12,20")
        assert str(a & b) == "4-5,8-9,12"

    def test_sync_example(self):
        a = SortedRangeSet("1-3,5")
        b = SortedRangeSet("1-2,4")
        assert str(a - b) == "3,5"
        assert str(b - a) == "4"

    @pytest.mark.parametrize(
        "left,right",
        [
            ("1-5,7,9-12", "3-8,12-15"),
            ("", "1-4"),
            ("0-100", "50"),
            ("1,3,5,7", "2,4,6,8"),
        ],
    )
    def test_partition_law(self, left, right):
        """A-B, B-A and A&B are disjoint and together make A|B."""
        a, b = SortedRangeSet(left), SortedRangeSet(right)
        only_a, only_b, both = a - b, b - a, a & b

        assert (only_a & only_b).is_empty
        assert (only_a & both).is_empty
        assert (only_b & both).is_empty
        assert only_a | only_b | both == a | b

    def test_equality_and_hash(self):
        a = SortedRangeSet("1-3")
        b = SortedRangeSet.from_items([3, 2, 1])
        assert a == b
        assert hash(a) == hash(b)
        assert a != SortedRangeSet("1-4")
