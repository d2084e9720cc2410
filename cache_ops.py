"""
Minimal cache capability.

Callers that only need "a cache" should depend on CacheOps rather than on a
concrete eviction policy, so another policy can be swapped in later.
"""

from typing import Hashable, Optional, Protocol, TypeVar, runtime_checkable

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@runtime_checkable
class CacheOps(Protocol[K, V]):
    def insert(self, key: K, value: V) -> Optional[V]:
        """Store `value` under `key`, returning the previous value if any."""
        ...

    def get(self, key: K) -> Optional[V]:
        """Return the value for `key`, or None if absent."""
        ...

    def contains(self, key: K) -> bool:
        """Return True if `key` is held, without marking it as used."""
        ...

    def __len__(self) -> int:
        """Return the number of entries held."""
        ...
