"""
Insertion-ordered bounded set.

Backs every bounded membership set of the crawl state. Adding past the
capacity evicts the oldest entries, so the size never exceeds the bound.
"""

import itertools
from typing import Dict, Generic, Hashable, Iterable, Iterator, List, Optional, TypeVar

T = TypeVar("T", bound=Hashable)


class BoundedSet(Generic[T]):
    """Set that remembers insertion order and holds at most ``maxsize`` items."""

    def __init__(self, maxsize: int, items: Optional[Iterable[T]] = None):
        if maxsize < 1:
            raise ValueError("maxsize must be positive")
        self.maxsize = maxsize
        self._items: Dict[T, None] = {}
        if items is not None:
            self.update(items)

    def __contains__(self, item: object) -> bool:
        return item in self._items

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(self._items)

    def __repr__(self) -> str:
        return f"BoundedSet(size={len(self._items)}, maxsize={self.maxsize})"

    def add(self, item: T) -> List[T]:
        """
        Add an item, refreshing nothing if already present.

        Returns:
            Items evicted to stay within the bound
        """
        if item in self._items:
            return []
        self._items[item] = None
        return self.trim()

    def update(self, items: Iterable[T]) -> List[T]:
        evicted: List[T] = []
        for item in items:
            evicted.extend(self.add(item))
        return evicted

    def discard(self, item: T) -> None:
        self._items.pop(item, None)

    def trim(self, maxsize: Optional[int] = None) -> List[T]:
        """Evict the oldest items until at most ``maxsize`` remain."""
        limit = self.maxsize if maxsize is None else maxsize
        excess = len(self._items) - limit
        if excess <= 0:
            return []
        return self.evict_oldest(excess)

    def evict_oldest(self, count: int) -> List[T]:
        victims = list(itertools.islice(self._items, max(count, 0)))
        for item in victims:
            del self._items[item]
        return victims

    def evict_fraction(self, fraction: float) -> List[T]:
        """Evict the oldest ``fraction`` of the items."""
        return self.evict_oldest(int(len(self._items) * fraction))

    def oldest(self, count: int) -> List[T]:
        return list(itertools.islice(self._items, max(count, 0)))

    def newest(self, count: int) -> List[T]:
        """The most recent ``count`` items, oldest first."""
        if count <= 0:
            return []
        return list(self._items)[-count:]

    def clear(self) -> None:
        self._items.clear()
