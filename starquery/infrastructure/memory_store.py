from __future__ import annotations
import logging
import time
from typing import Callable, Iterable

from starquery.domain.interfaces import IKeyValueStore
from .locking import ReadWriteLock

log = logging.getLogger(__name__)

EVICTION_INTERVAL = 60.0


class InMemoryKeyValueStore(IKeyValueStore):
    """
    Process-local implementation of IKeyValueStore for tests and dev.

    Entries are (value, deadline) pairs. Reads share the lock, writes take
    it exclusively, so the sync loop, webhook handler and query endpoint
    can hit the store from different threads without racing.

    ``clock`` must be monotonic; tests inject a fake one to step past
    expiry without sleeping.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._data:  dict[str, tuple[str, float]] = {}
        self._lock  = ReadWriteLock()
        self._clock = clock
        self._next_eviction = clock() + EVICTION_INTERVAL

    def set_with_expiry(self, ttl_seconds: int, pairs: Iterable[tuple[str, str]]) -> None:
        pairs = list(pairs)
        if not pairs:
            return
        with self._lock.write():
            now      = self._clock()
            deadline = now + ttl_seconds
            self._evict_expired(now)
            for key, value in pairs:
                self._data[key] = (value, deadline)
        log.debug("Stored %d keys (ttl=%ds)", len(pairs), ttl_seconds)

    def get(self, key: str) -> str:
        with self._lock.read():
            entry = self._data.get(key)
            if entry is None:
                return ""
            value, deadline = entry
            if deadline <= self._clock():
                return ""
            return value

    def delete(self, key: str) -> None:
        with self._lock.write():
            self._data.pop(key, None)

    def __len__(self) -> int:
        """Number of live (non-expired) entries."""
        with self._lock.read():
            now = self._clock()
            return sum(1 for _, deadline in self._data.values() if deadline > now)

    def _evict_expired(self, now: float) -> None:
        # Caller holds the write lock. Full scans are amortised over
        # EVICTION_INTERVAL; get() already hides anything past its deadline.
        if now < self._next_eviction:
            return
        self._next_eviction = now + EVICTION_INTERVAL
        expired = [k for k, (_, deadline) in self._data.items() if deadline <= now]
        for key in expired:
            del self._data[key]
