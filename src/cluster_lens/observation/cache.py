"""Correlation cache shared by the instrumentation adapters.

The three instrumentation sources cannot share a request identifier, so the
endpoint address is the correlation key. Each key holds the most recent
record only (last write wins, no field merging). Entries expire after
``max_age`` seconds, but only when the periodic sweep runs; a read between
expiry and the next sweep still sees the entry.
"""

from __future__ import annotations

import asyncio
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from cluster_lens.constants import CACHE_MAX_AGE_SECONDS
from cluster_lens.logging import get_logger
from cluster_lens.observation.models import ExchangeRecord

log = get_logger("cluster_lens.observation.cache")


def strip_query(address: str) -> str:
    """Return the address without its query string."""
    return address.split("?", 1)[0]


@dataclass(frozen=True)
class _Entry:
    record: ExchangeRecord
    inserted_at: float


class CorrelationCache:
    """Bounded-lifetime map from endpoint address to the latest exchange record.

    Thread-safe: the map is guarded by a lock, and the sweep snapshots under
    the lock then filters outside it so writers are never held up by a scan.
    """

    def __init__(
        self,
        max_age: float = CACHE_MAX_AGE_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the cache.

        Args:
            max_age: Seconds an entry survives before a sweep removes it.
            clock: Monotonic time source, injectable for tests.
        """
        self._max_age = max_age
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, _Entry] = {}
        self._request_ids: dict[str, str] = {}  # endpoint_id → request id

    @property
    def max_age(self) -> float:
        return self._max_age

    # ------------------------------------------------------------------
    # Reads and writes
    # ------------------------------------------------------------------

    def put(self, endpoint_id: str, record: ExchangeRecord) -> None:
        """Insert or overwrite the entry for an endpoint."""
        entry = _Entry(record=record, inserted_at=self._clock())
        with self._lock:
            # Re-insert so iteration order follows the latest write
            self._entries.pop(endpoint_id, None)
            self._entries[endpoint_id] = entry

    def get(self, endpoint_id: str) -> ExchangeRecord | None:
        """Exact lookup by endpoint address."""
        with self._lock:
            entry = self._entries.get(endpoint_id)
        return entry.record if entry else None

    def get_by_prefix(self, address_without_query: str) -> ExchangeRecord | None:
        """Find an entry whose pre-query address starts with the given prefix.

        Returns the first match in iteration order. Under concurrent writes
        which entry wins is not defined.
        """
        prefix = strip_query(address_without_query)
        with self._lock:
            items = list(self._entries.items())
        for stored_id, entry in items:
            if strip_query(stored_id).startswith(prefix):
                log.debug("cache_prefix_match", prefix=prefix, endpoint_id=stored_id)
                return entry.record
        return None

    def lookup(self, endpoint_id: str) -> ExchangeRecord | None:
        """Exact lookup, falling back to a prefix match on the pre-query address."""
        record = self.get(endpoint_id)
        if record is not None:
            return record
        return self.get_by_prefix(strip_query(endpoint_id))

    # ------------------------------------------------------------------
    # Request-id side table
    # ------------------------------------------------------------------

    def remember_request_id(self, endpoint_id: str, request_id: str) -> None:
        """Remember which browser request id last targeted an endpoint."""
        with self._lock:
            self._request_ids[endpoint_id] = request_id

    def request_id_for(self, endpoint_id: str) -> str | None:
        with self._lock:
            return self._request_ids.get(endpoint_id)

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    def sweep(self) -> int:
        """Remove every entry older than ``max_age``.

        Returns the number of entries removed. Request ids whose endpoint no
        longer has an entry are dropped as well.
        """
        now = self._clock()
        with self._lock:
            snapshot = list(self._entries.items())

        stale = [key for key, entry in snapshot if now - entry.inserted_at > self._max_age]

        removed = 0
        with self._lock:
            for key in stale:
                current = self._entries.get(key)
                # A write that landed after the snapshot keeps the key alive
                if current is not None and now - current.inserted_at > self._max_age:
                    del self._entries[key]
                    removed += 1
            orphaned = [key for key in self._request_ids if key not in self._entries]
            for key in orphaned:
                del self._request_ids[key]

        if removed or orphaned:
            log.debug(
                "cache_swept",
                removed=removed,
                orphaned_request_ids=len(orphaned),
                remaining=len(self),
            )
        return removed

    async def run_sweeper(self, interval: float) -> None:
        """Sweep every ``interval`` seconds until cancelled."""
        log.info("cache_sweeper_started", interval=interval, max_age=self._max_age)
        try:
            while True:
                await asyncio.sleep(interval)
                self.sweep()
        finally:
            log.info("cache_sweeper_stopped")

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._request_ids.clear()

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, endpoint_id: object) -> bool:
        with self._lock:
            return endpoint_id in self._entries
