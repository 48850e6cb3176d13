"""Bounded first-in first-out cache."""
from collections import OrderedDict
from typing import Generic, Hashable, Optional, TypeVar

V = TypeVar('V')


class BoundedCache(Generic[V]):
    """
    Cache holding at most `capacity` entries.

    Once the size exceeds capacity the oldest inserted entry is dropped.
    Reading an entry does not refresh its position.
    """

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError(f"capacity must be at least 1, got {capacity}")
        self.capacity = capacity
        self._entries: OrderedDict = OrderedDict()
        self.hits = 0
        self.misses = 0

    def get(self, key: Hashable) -> Optional[V]:
        if key in self._entries:
            self.hits += 1
            return self._entries[key]
        self.misses += 1
        return None

    def put(self, key: Hashable, value: V) -> None:
        self._entries[key] = value
        while len(self._entries) > self.capacity:
            self._entries.popitem(last=False)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: Hashable) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
