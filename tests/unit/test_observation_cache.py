"""Unit tests for the correlation cache."""

from __future__ import annotations

import asyncio
import threading

import pytest

from cluster_lens.observation.cache import CorrelationCache, strip_query
from cluster_lens.observation.models import ExchangeRecord

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _record(endpoint_id: str = "https://x/graphql?id=1", **kwargs) -> ExchangeRecord:
    return ExchangeRecord(endpoint_id=endpoint_id, **kwargs)


# ===========================================================================
# put / get
# ===========================================================================


class TestPutGet:
    """Tests for exact put/get semantics."""

    def test_put_then_get_returns_record(self):
        """A record is readable immediately after put."""
        cache = CorrelationCache()
        record = _record()
        cache.put(record.endpoint_id, record)
        assert cache.get(record.endpoint_id) is record

    def test_get_missing_returns_none(self):
        cache = CorrelationCache()
        assert cache.get("https://x/graphql") is None

    def test_last_write_wins(self):
        """A second put replaces the first wholesale."""
        cache = CorrelationCache()
        first = _record(response_payload={"data": {"a": 1}}, status_code=200)
        second = _record(status_code=0)
        cache.put(first.endpoint_id, first)
        cache.put(second.endpoint_id, second)

        stored = cache.get(first.endpoint_id)
        assert stored is second
        # No field merging from the older record
        assert stored.response_payload is None
        assert len(cache) == 1

    def test_contains_and_keys(self):
        cache = CorrelationCache()
        cache.put("a", _record("a"))
        cache.put("b", _record("b"))
        assert "a" in cache
        assert "c" not in cache
        assert cache.keys() == ["a", "b"]

    def test_clear_empties_cache(self):
        cache = CorrelationCache()
        cache.put("a", _record("a"))
        cache.remember_request_id("a", "req-1")
        cache.clear()
        assert len(cache) == 0
        assert cache.request_id_for("a") is None


# ===========================================================================
# Prefix lookup
# ===========================================================================


class TestPrefixLookup:
    """Tests for get_by_prefix and lookup."""

    def test_strip_query(self):
        assert strip_query("https://x/graphql?id=1&b=2") == "https://x/graphql"
        assert strip_query("https://x/graphql") == "https://x/graphql"

    def test_no_match_returns_none(self):
        cache = CorrelationCache()
        cache.put("https://x/graphql?id=1", _record())
        assert cache.get_by_prefix("https://y/graphql") is None

    def test_match_ignores_stored_query_string(self):
        cache = CorrelationCache()
        record = _record("https://x/graphql?id=1")
        cache.put(record.endpoint_id, record)
        assert cache.get_by_prefix("https://x/graphql") is record

    def test_argument_query_string_is_stripped(self):
        cache = CorrelationCache()
        record = _record("https://x/graphql?id=1")
        cache.put(record.endpoint_id, record)
        assert cache.get_by_prefix("https://x/graphql?id=999") is record

    def test_query_string_does_not_leak_into_match(self):
        """Stored keys are compared on their pre-query part only."""
        cache = CorrelationCache()
        cache.put("https://x/api?next=https://x/graphql", _record("https://x/api?x"))
        assert cache.get_by_prefix("https://x/graphql") is None

    def test_lookup_prefers_exact_match(self):
        cache = CorrelationCache()
        exact = _record("https://x/graphql?id=2")
        other = _record("https://x/graphql?id=1")
        cache.put(other.endpoint_id, other)
        cache.put(exact.endpoint_id, exact)
        assert cache.lookup("https://x/graphql?id=2") is exact

    def test_lookup_falls_back_to_prefix(self):
        cache = CorrelationCache()
        other = _record("https://x/graphql?id=1")
        cache.put(other.endpoint_id, other)
        assert cache.lookup("https://x/graphql?id=7") is other


# ===========================================================================
# Expiry
# ===========================================================================


class TestSweep:
    """Tests for age-based expiry."""

    def test_entry_alive_before_max_age(self):
        clock = FakeClock()
        cache = CorrelationCache(max_age=300, clock=clock)
        cache.put("k", _record("k"))

        clock.advance(299)
        assert cache.sweep() == 0
        assert cache.get("k") is not None

    def test_entry_removed_after_max_age(self):
        clock = FakeClock()
        cache = CorrelationCache(max_age=300, clock=clock)
        cache.put("k", _record("k"))

        clock.advance(301)
        assert cache.sweep() == 1
        assert cache.get("k") is None

    def test_expired_entry_readable_until_sweep(self):
        """Expiry only happens when the sweep runs, never inline with a read."""
        clock = FakeClock()
        cache = CorrelationCache(max_age=300, clock=clock)
        record = _record("k")
        cache.put("k", record)

        clock.advance(1000)
        assert cache.get("k") is record
        cache.sweep()
        assert cache.get("k") is None

    def test_rewrite_refreshes_age(self):
        clock = FakeClock()
        cache = CorrelationCache(max_age=300, clock=clock)
        cache.put("k", _record("k"))
        clock.advance(200)
        cache.put("k", _record("k"))
        clock.advance(200)
        assert cache.sweep() == 0
        assert "k" in cache

    def test_sweep_only_removes_stale_entries(self):
        clock = FakeClock()
        cache = CorrelationCache(max_age=300, clock=clock)
        cache.put("old", _record("old"))
        clock.advance(250)
        cache.put("new", _record("new"))
        clock.advance(100)

        assert cache.sweep() == 1
        assert cache.keys() == ["new"]

    def test_sweep_drops_orphaned_request_ids(self):
        clock = FakeClock()
        cache = CorrelationCache(max_age=300, clock=clock)
        cache.put("k", _record("k"))
        cache.remember_request_id("k", "req-1")
        cache.remember_request_id("gone", "req-2")

        cache.sweep()
        assert cache.request_id_for("k") == "req-1"
        assert cache.request_id_for("gone") is None

        clock.advance(301)
        cache.sweep()
        assert cache.request_id_for("k") is None


# ===========================================================================
# Concurrency
# ===========================================================================


class TestConcurrency:
    """Concurrent writers and the background sweeper."""

    def test_concurrent_writers_leave_one_entry_per_key(self):
        cache = CorrelationCache()

        def _writer(n: int) -> None:
            for i in range(200):
                cache.put("shared", _record("shared", status_code=n * 1000 + i))

        threads = [threading.Thread(target=_writer, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(cache) == 1
        assert cache.get("shared").status_code % 1000 == 199

    @pytest.mark.asyncio
    async def test_run_sweeper_sweeps_periodically(self):
        clock = FakeClock()
        cache = CorrelationCache(max_age=10, clock=clock)
        cache.put("k", _record("k"))
        clock.advance(11)

        task = asyncio.create_task(cache.run_sweeper(0.01))
        for _ in range(50):
            await asyncio.sleep(0.01)
            if "k" not in cache:
                break
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert "k" not in cache
