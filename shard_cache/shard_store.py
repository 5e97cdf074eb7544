"""Bounded LRU store with per-entry TTL for a single shard."""

from __future__ import annotations

import fnmatch
import itertools
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, TypeVar

import cachetools

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

V = TypeVar("V")


class _Miss:
    """Type of the ``MISS`` sentinel."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "MISS"

    def __bool__(self) -> bool:
        return False


MISS = _Miss()


@dataclass
class CacheEntry(Generic[V]):
    """A cached value plus its expiry and recency markers."""

    key: str
    value: V
    expires_at: float | None
    last_accessed: float
    sequence: int = 0

    def is_expired(self, now: float) -> bool:
        """Whether the entry has expired at time ``now``."""
        return self.expires_at is not None and now >= self.expires_at


@dataclass(frozen=True)
class ShardStats:
    """Point-in-time counters for a shard store."""

    hits: int
    misses: int
    evictions: int
    expirations: int
    size: int
    capacity: int


def _time_to_use(key: str, entry: CacheEntry, now: float) -> float:
    del key, now
    return math.inf if entry.expires_at is None else entry.expires_at


class _ShardCache(cachetools.TLRUCache):
    """``TLRUCache`` that counts what leaves it.

    ``expire`` runs before every insert, so expired entries are always
    purged before a live entry is evicted.
    """

    def __init__(self, maxsize: int, timer: Callable[[], float]) -> None:
        super().__init__(maxsize, ttu=_time_to_use, timer=timer)
        self.evictions = 0
        self.expirations = 0

    def expire(self, now=None):
        expired = super().expire(now)
        if expired:
            self.expirations += len(expired)
            logger.debug("Dropped %d expired entries", len(expired))
        return expired

    def popitem(self):
        key, entry = super().popitem()
        self.evictions += 1
        logger.debug("Evicted least recently used entry %s", key)
        return key, entry

    def peek(self, key: str) -> CacheEntry | None:
        """Return the stored entry without touching recency or expiry."""
        try:
            return cachetools.Cache.__getitem__(self, key)
        except KeyError:
            return None

    def held(self) -> int:
        """Number of stored entries, expired ones not yet purged included."""
        return cachetools.Cache.__len__(self)


class ShardStore(Generic[V]):
    """Thread-safe LRU cache with optional per-entry TTL.

    Entries live in a ``cachetools.TLRUCache`` whose time-to-use is each
    entry's own expiry. Every public operation, ``get`` included, runs under
    one exclusive lock because reads reorder the cache.

    Attributes:
        clock: Zero-argument callable returning the current time in seconds.
    """

    def __init__(self, capacity: int, *, clock: Callable[[], float] = time.monotonic) -> None:
        """Initialize the store.

        Args:
            capacity: Maximum number of entries. Zero disables caching.
            clock: Time source used for TTL and recency timestamps.
        """
        if capacity < 0:
            msg = "capacity must not be negative"
            raise ValueError(msg)
        self._capacity = capacity
        self.clock = clock
        self._cache = _ShardCache(capacity, timer=clock)
        self._lock = threading.Lock()
        self._ticks = itertools.count()
        self._available = True
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> V | _Miss:
        """Return the value for ``key``, or ``MISS``.

        Expired entries are purged on a miss. A hit moves the entry to the
        most recently used position.
        """
        with self._lock:
            try:
                entry = self._cache[key]
            except KeyError:
                self._cache.expire()
                self._misses += 1
                return MISS
            entry.last_accessed = self.clock()
            entry.sequence = next(self._ticks)
            self._hits += 1
            return entry.value

    def set(self, key: str, value: V, ttl: float | None = None) -> None:
        """Insert or overwrite ``key`` as the most recently used entry.

        Args:
            key: Cache key.
            value: Payload to store.
            ttl: Seconds until expiry. ``None`` never expires; zero or negative
                values are already expired and only remove an existing entry.
        """
        with self._lock:
            if self._capacity == 0:
                # TLRUCache refuses every insert at maxsize 0
                self._cache.evictions += 1
                logger.debug("Dropped %s, store has no capacity", key)
                return
            now = self.clock()
            expires_at = None if ttl is None else now + ttl
            self._cache[key] = CacheEntry(
                key=key,
                value=value,
                expires_at=expires_at,
                last_accessed=now,
                sequence=next(self._ticks),
            )

    def delete(self, key: str) -> bool:
        """Remove ``key``. Returns whether a live entry was present."""
        with self._lock:
            self._cache.expire()
            return self._cache.pop(key, MISS) is not MISS

    def delete_matching(self, pattern: str) -> int:
        """Remove every live key matching the glob ``pattern``. Returns the count removed."""
        with self._lock:
            self._cache.expire()
            doomed = [key for key in self._cache if fnmatch.fnmatchcase(key, pattern)]
            return sum(1 for key in doomed if self._cache.pop(key, MISS) is not MISS)

    def sweep_expired(self) -> int:
        """Remove every expired entry. Returns the count removed."""
        with self._lock:
            return len(self._cache.expire())

    def clear(self) -> None:
        """Remove all entries. Counters are kept."""
        with self._lock:
            self._cache.clear()

    def keys(self) -> list[str]:
        """Live keys from least to most recently used."""
        with self._lock:
            entries = [self._cache.peek(key) for key in self._cache]
        return [entry.key for entry in sorted(entries, key=lambda entry: entry.sequence)]

    def size(self) -> int:
        """Number of entries currently held, expired ones not yet purged included."""
        with self._lock:
            return self._cache.held()

    def capacity(self) -> int:
        """Configured maximum number of entries."""
        return self._capacity

    def stats(self) -> ShardStats:
        """Snapshot of the hit, miss, eviction and expiration counters."""
        with self._lock:
            return ShardStats(
                hits=self._hits,
                misses=self._misses,
                evictions=self._cache.evictions,
                expirations=self._cache.expirations,
                size=self._cache.held(),
                capacity=self._capacity,
            )

    @property
    def available(self) -> bool:
        """Whether the store accepts routed traffic."""
        return self._available

    def mark_unavailable(self) -> None:
        """Simulate a failed shard."""
        self._available = False

    def mark_available(self) -> None:
        """Bring a failed shard back."""
        self._available = True

    def __contains__(self, key: object) -> bool:
        # does not touch recency
        with self._lock:
            return key in self._cache

    def __len__(self) -> int:
        return self.size()

    def __repr__(self) -> str:
        return f"ShardStore(capacity={self._capacity}, size={self._cache.held()}, available={self._available})"
