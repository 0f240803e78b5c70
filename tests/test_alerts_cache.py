"""
Tests for the per-partner alert group cache.
"""
import threading

import pytest

from churnwatch.models.alerts import AlertGroup
from churnwatch.utils import cache as cache_module
from churnwatch.utils.cache import AlertsCache
from factories import prioritized


def _group(alert_id="a"):
    alert = prioritized(alert_id)
    return AlertGroup(
        category=alert.category,
        severity=alert.severity,
        alerts=(alert,),
        count=1,
        total_priority_score=alert.priority_score,
    )


class FakeClock:

    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now


@pytest.fixture
def clock(monkeypatch):
    fake = FakeClock()
    monkeypatch.setattr(cache_module.time, "time", fake)
    return fake


# ────────────────────────────────────────────
# GET / SET
# ────────────────────────────────────────────


class TestGetSet:

    def test_miss_is_none(self):
        assert AlertsCache().get("P") is None

    def test_round_trip(self):
        cache = AlertsCache()
        groups = (_group("a"), _group("b"))
        cache.set("P", groups)
        assert cache.get("P") == groups

    def test_empty_result_is_cached(self):
        cache = AlertsCache()
        cache.set("P", [])
        assert cache.get("P") == ()

    def test_lists_are_stored_as_tuples(self):
        cache = AlertsCache()
        cache.set("P", [_group()])
        assert isinstance(cache.get("P"), tuple)

    def test_last_write_wins(self):
        cache = AlertsCache()
        cache.set("P", [_group("old")])
        cache.set("P", [_group("new")])
        assert cache.get("P")[0].alerts[0].id == "new"

    def test_hit_and_miss_counters(self):
        cache = AlertsCache()
        cache.get("P")
        cache.set("P", [])
        cache.get("P")
        cache.get("P")

        stats = cache.stats()
        assert stats["hits"] == 2
        assert stats["misses"] == 1
        assert stats["size"] == 1
        assert stats["partners"] == ["P"]


# ────────────────────────────────────────────
# EVICTION AND EXPIRY
# ────────────────────────────────────────────


class TestEviction:

    def test_oldest_entry_evicted_at_limit(self):
        cache = AlertsCache(max_entries=2)
        cache.set("A", [])
        cache.set("B", [])
        cache.set("C", [])

        assert cache.get("A") is None
        assert cache.get("B") == ()
        assert cache.get("C") == ()

    def test_rewrite_refreshes_position(self):
        cache = AlertsCache(max_entries=2)
        cache.set("A", [])
        cache.set("B", [])
        cache.set("A", [_group()])
        cache.set("C", [])

        assert cache.get("B") is None
        assert cache.get("A") is not None

    def test_entries_expire(self, clock):
        cache = AlertsCache(ttl=60)
        cache.set("P", [])

        clock.now += 59
        assert cache.get("P") == ()
        clock.now += 2
        assert cache.get("P") is None
        assert cache.stats()["size"] == 0

    def test_expired_entries_evicted_before_live_ones(self, clock):
        cache = AlertsCache(max_entries=2, ttl=60)
        cache.set("OLD", [])
        clock.now += 30
        cache.set("LIVE", [])
        clock.now += 31
        # OLD expired, LIVE still valid
        cache.set("NEW", [])

        assert cache.get("LIVE") == ()
        assert cache.get("NEW") == ()


# ────────────────────────────────────────────
# INVALIDATION AND IN-PROGRESS MARKERS
# ────────────────────────────────────────────


class TestInvalidation:

    def test_invalidate_one(self):
        cache = AlertsCache()
        cache.set("A", [])
        cache.set("B", [])

        assert cache.invalidate("A") == 1
        assert cache.invalidate("A") == 0
        assert cache.get("A") is None
        assert cache.get("B") == ()

    def test_invalidate_all(self):
        cache = AlertsCache()
        cache.set("A", [])
        cache.set("B", [])

        assert cache.invalidate() == 2
        assert cache.stats()["size"] == 0

    def test_in_progress_markers(self):
        cache = AlertsCache()
        assert cache.mark_in_progress("P")
        assert not cache.mark_in_progress("P")
        assert cache.is_in_progress("P")
        assert cache.stats()["in_progress"] == ["P"]

        cache.clear_in_progress("P")
        assert not cache.is_in_progress("P")
        cache.clear_in_progress("P")

    def test_concurrent_writers(self):
        cache = AlertsCache(max_entries=1000)

        def write(prefix):
            for i in range(100):
                cache.set(f"{prefix}-{i}", [])

        threads = [threading.Thread(target=write, args=(name,)) for name in "ABCD"]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert cache.stats()["size"] == 400
