"""
Fixed-capacity FIFO buffer used for recent-question and topic history.

Oldest entries are evicted first; the buffer never exceeds its capacity.
"""

from collections import deque
from typing import Any, Iterable, Iterator, List, Optional


class RingBuffer:
    """Bounded FIFO with explicit push/evict"""

    def __init__(self, capacity: int, items: Optional[Iterable[Any]] = None):
        if capacity < 1:
            raise ValueError(f"RingBuffer capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        self._items = deque()
        for item in items or ():
            self.push(item)

    def push(self, item: Any) -> Optional[Any]:
        """
        Append item, evicting the oldest entry if full.

        Returns:
            The evicted item, or None if nothing was evicted
        """
        evicted = None
        if len(self._items) >= self.capacity:
            evicted = self.evict()
        self._items.append(item)
        return evicted

    def evict(self) -> Optional[Any]:
        """Remove and return the oldest item (None if empty)"""
        if not self._items:
            return None
        return self._items.popleft()

    def last(self, n: int) -> List[Any]:
        """Most recent n items, oldest first"""
        if n <= 0:
            return []
        return list(self._items)[-n:]

    def to_list(self) -> List[Any]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Any]:
        return iter(list(self._items))

    def __eq__(self, other) -> bool:
        if not isinstance(other, RingBuffer):
            return NotImplemented
        return self.capacity == other.capacity and list(self._items) == list(other._items)

    def __repr__(self) -> str:
        return f"RingBuffer(capacity={self.capacity}, items={list(self._items)!r})"
