"""Tests for the SQLite log store."""

import threading

import pytest

from acesync.errors import NotFoundError
from acesync.log import AuditEventType, LogEvent, LogStore
from acesync.ranges import SortedRangeSet


@pytest.fixture
def store():
    """Create an in-memory log store."""
    s = LogStore(":memory:")
    s.connect()
    yield s
    s.close()


def make_events(log_id, ids):
    return [LogEvent(log_id, i, 1000 + i, AuditEventType.BUNDLE_STARTED, {"n": str(i)}) for i in ids]


class TestPut:
    """Tests for appending events."""

    def test_ids_start_at_one(self, store):
        event = store.put("target-1", AuditEventType.FRAMEWORK_STARTED)

        assert event.event_id == 1
        assert event.log_id == "target-1"
        assert event.timestamp > 0

    def test_ids_increase_per_log(self, store):
        ids = [store.put("a", 1).event_id for _ in range(3)]
        other = store.put("b", 1)

        assert ids == [1, 2, 3]
        assert other.event_id == 1

    def test_properties_round_trip(self, store):
        store.put("a", 2001, {"name": "bundle", "msg": "x,y\nz"}, timestamp=55)

        (event,) = store.get("a")
        assert event.properties == {"name": "bundle", "msg": "x,y\nz"}
        assert event.timestamp == 55
        assert event.type == 2001

    def test_put_continues_after_replicated_events(self, store):
        store.put_events(make_events("a", [1, 2, 7]))

        assert store.put("a", 0).event_id == 8

    def test_concurrent_puts_are_gap_free(self, tmp_path):
        """Concurrent writers on one log get distinct, contiguous IDs."""
        store = LogStore(tmp_path / "log.db")
        store.connect()
        ids = []
        ids_lock = threading.Lock()

        def writer():
            for _ in range(25):
                event = store.put("shared", 1)
                with ids_lock:
                    ids.append(event.event_id)

        threads = [threading.Thread(target=writer) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(ids) == list(range(1, 101))
        assert str(store.get_descriptor("shared").range_set) == "1-100"
        store.close()

    def test_persists_across_connections(self, tmp_path):
        path = tmp_path / "log.db"
        store = LogStore(path)
        store.put("a", 1)
        store.close()

        reopened = LogStore(path)
        assert reopened.get_highest_id("a") == 1
        reopened.close()


class TestPutEvents:
    """Tests for storing replicated events."""

    def test_stores_carried_ids(self, store):
        added = store.put_events(make_events("a", [2, 5]))

        assert added == 2
        assert str(store.get_descriptor("a").range_set) == "2,5"

    def test_idempotent(self, store):
        events = make_events("a", [1, 2, 3])
        store.put_events(events)

        assert store.put_events(events) == 0
        assert len(store.get("a")) == 3

    def test_existing_event_not_overwritten(self, store):
        store.put("a", 1, {"origin": "local"})
        store.put_events([LogEvent("a", 1, 0, 9, {"origin": "remote"})])

        assert store.get("a")[0].properties == {"origin": "local"}


class TestReading:
    """Tests for queries."""

    def test_get_unknown_log(self, store):
        with pytest.raises(NotFoundError):
            store.get("missing")

    def test_get_bounds(self, store):
        store.put_events(make_events("a", range(1, 11)))

        assert [e.event_id for e in store.get("a", start=3, end=5)] == [3, 4, 5]
        assert [e.event_id for e in store.get("a", start=9)] == [9, 10]

    def test_get_events_by_range(self, store):
        store.put_events(make_events("a", range(1, 11)))

        events = store.get_events("a", SortedRangeSet("2,5-6,20"))
        assert [e.event_id for e in events] == [2, 5, 6]

    def test_get_events_unknown_log(self, store):
        assert store.get_events("missing", SortedRangeSet("1-5")) == []

    def test_descriptors(self, store):
        store.put_events(make_events("b", [1, 2, 4]))
        store.put_events(make_events("a", [1]))

        descriptors = store.get_descriptors()
        assert [d.log_id for d in descriptors] == ["a", "b"]
        assert str(descriptors[1].range_set) == "1-2,4"

    def test_unknown_descriptor_is_empty(self, store):
        assert store.get_descriptor("missing").range_set.is_empty

    def test_highest_id(self, store):
        assert store.get_highest_id("a") == 0
        store.put_events(make_events("a", [3, 9]))
        assert store.get_highest_id("a") == 9

    def test_stats(self, store):
        store.put("a", 1)
        store.put("a", 1)
        store.put("b", 1)

        stats = store.get_stats()
        assert stats["total_events"] == 3
        assert stats["logs"]["a"] == {"events": 2, "highest_id": 2}


class TestLowestId:
    """Tests for pruning below a lowest ID."""

    def test_default_is_zero(self, store):
        assert store.get_lowest_id("a") == 0

    def test_drops_older_events(self, store):
        store.put_events(make_events("a", range(1, 6)))
        store.set_lowest_id("a", 4)

        assert str(store.get_descriptor("a").range_set) == "4-5"
        assert store.get_lowest_id("a") == 4

    def test_only_moves_up(self, store):
        store.set_lowest_id("a", 10)
        store.set_lowest_id("a", 3)

        assert store.get_lowest_id("a") == 10

    def test_refuses_pruned_events(self, store):
        store.set_lowest_id("a", 5)

        assert store.put_events(make_events("a", [2, 6])) == 1
        assert str(store.get_descriptor("a").range_set) == "6"

    def test_new_ids_start_at_lowest(self, store):
        store.set_lowest_id("a", 20)

        assert store.put("a", 1).event_id == 20

    def test_log_known_through_lowest_id(self, store):
        store.set_lowest_id("a", 5)

        assert "a" in store.get_log_ids()
        assert store.get("a") == []


class TestMaxEvents:
    """Tests for the per-log event cap."""

    def test_negative_rejected(self):
        with pytest.raises(ValueError):
            LogStore(":memory:", max_events=-1)

    def test_keeps_newest(self):
        store = LogStore(":memory:", max_events=3)
        for _ in range(5):
            store.put("a", 1)

        assert str(store.get_descriptor("a").range_set) == "3-5"
        assert store.put("a", 1).event_id == 6
        store.close()
