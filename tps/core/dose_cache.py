"""Bounded key-value cache for repeated dose-factor lookups.

Approximate LRU: a hit moves the entry to the back of the insertion
order; when full, the entry at the front is evicted.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from collections.abc import Hashable
from typing import Generic, TypeVar

from tps.constants import DEFAULT_CACHE_CAPACITY

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class BoundedCache(Generic[K, V]):
    """Fixed-capacity cache with oldest-entry eviction.

    Args:
        capacity: Maximum number of entries, truncated to an integer.
            Values below 1 (or not convertible) are replaced by
            DEFAULT_CACHE_CAPACITY.
    """

    def __init__(self, capacity: int = DEFAULT_CACHE_CAPACITY) -> None:
        requested = capacity
        try:
            capacity = int(capacity)
        except (TypeError, ValueError, OverflowError):
            capacity = 0
        if capacity <= 0:
            logger.warning(
                "Cache capacity should be positive (got %s), defaulting to %d",
                requested, DEFAULT_CACHE_CAPACITY,
            )
            capacity = DEFAULT_CACHE_CAPACITY
        self._capacity = capacity
        self._entries: OrderedDict[K, V] = OrderedDict()

    @property
    def capacity(self) -> int:
        return self._capacity

    def get(self, key: K) -> V | None:
        """Return the cached value, or None on a miss."""
        if key not in self._entries:
            return None
        self._entries.move_to_end(key)
        return self._entries[key]

    def set(self, key: K, value: V) -> None:
        """Store *value*, evicting the oldest entry if the cache is full."""
        if key in self._entries:
            self._entries.move_to_end(key)
        elif len(self._entries) >= self._capacity:
            self._entries.popitem(last=False)
        self._entries[key] = value

    def clear(self) -> None:
        self._entries.clear()

    def size(self) -> int:
        return len(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries
