from collections import OrderedDict
import logging
from typing import Generic, Hashable, Iterable, List, Optional, Tuple, TypeVar

from cache_errors import CapacityError

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

log = logging.getLogger(__name__)


class LRUCache(Generic[K, V]):
    """
    A simple LRU (Least Recently Used) cache with a fixed capacity.

    Entries live in a single OrderedDict whose order is the recency order:
    the first entry is the least recently used, the last one the most
    recently used. Lookup and ordering share that one structure.

    The cache takes no locks. One owner should use an instance at a time;
    callers sharing it between threads must wrap it in their own lock.

    Values may be None, in which case `get` cannot tell a stored None from a
    miss. Use `contains` for that.
    """

    def __init__(self, capacity: int):
        if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity < 1:
            raise CapacityError(f"capacity must be a positive integer, got {capacity!r}")

        self._capacity = capacity
        self._cache: "OrderedDict[K, V]" = OrderedDict()

        # Metrics
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @classmethod
    def from_items(cls, capacity: int, items: Iterable[Tuple[K, V]]) -> "LRUCache[K, V]":
        """
        Build a cache from (key, value) pairs ordered least to most recently used.

        If there are more pairs than `capacity`, only the most recently used
        `capacity` of them are kept. Repeated keys behave like repeated puts.
        """
        cache = cls(capacity)
        for key, value in items:
            cache._store(key, value)
        # Dropping surplus entries while building is not an eviction
        cache._evictions = 0
        return cache

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return len(self._cache)

    def __contains__(self, key) -> bool:
        return key in self._cache

    def __repr__(self) -> str:
        return f"{type(self).__name__}(capacity={self._capacity}, size={len(self._cache)})"

    def is_empty(self) -> bool:
        return not self._cache

    def contains(self, key: K) -> bool:
        """
        Membership test. Does not touch the recency order or the metrics.
        """
        return key in self._cache

    def get(self, key: K) -> Optional[V]:
        """
        Return the value for `key` if present, otherwise None.
        Accessing a key marks it as recently used.
        """
        if key not in self._cache:
            self._misses += 1
            return None

        self._hits += 1
        self._cache.move_to_end(key)
        return self._cache[key]

    def peek(self, key: K) -> Optional[V]:
        """
        Return the value for `key` without marking it as used.
        """
        return self._cache.get(key)

    def put(self, key: K, value: V) -> Optional[V]:
        """
        Insert or update a key-value pair.

        Updating an existing key returns its previous value. Inserting a new
        key into a full cache evicts the least recently used entry first; the
        evicted value is dropped, not returned.
        """
        return self._store(key, value)

    def insert(self, key: K, value: V) -> Optional[V]:
        """Same as `put`; provided for the CacheOps capability."""
        return self._store(key, value)

    def remove(self, key: K) -> Optional[V]:
        """
        Remove `key` and return its value, or None if it was not present.
        """
        return self._cache.pop(key, None)

    def clear(self) -> None:
        """Remove all entries. Metrics are kept."""
        self._cache.clear()

    def items(self) -> List[Tuple[K, V]]:
        """
        Snapshot of the entries, least recently used first.
        """
        return list(self._cache.items())

    def keys(self) -> List[K]:
        return list(self._cache.keys())

    def _store(self, key: K, value: V) -> Optional[V]:
        if key in self._cache:
            # Update existing key and mark it as recently used
            previous = self._cache[key]
            self._cache[key] = value
            self._cache.move_to_end(key)
            return previous

        self._cache[key] = value
        self._evict_if_needed()
        return None

    def _evict_if_needed(self):
        """
        Evict entries until the cache satisfies the capacity constraint.
        """
        while len(self._cache) > self._capacity:
            self._evict_least_recently_used()

    def _evict_least_recently_used(self):
        """
        Remove the least recently used item from the cache.
        """
        key, _ = self._cache.popitem(last=False)
        self._evictions += 1
        log.debug("Evicted least recently used key %r", key)

    def get_stats(self) -> dict:
        """
        Return a snapshot of cache metrics.
        """
        total = self._hits + self._misses
        hit_ratio = (self._hits / total) if total > 0 else 0.0
        return {
            "size": len(self._cache),
            "capacity": self._capacity,
            "hits": self._hits,
            "misses": self._misses,
            "evictions": self._evictions,
            "hit_ratio": hit_ratio,
        }
