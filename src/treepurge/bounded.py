"""Fixed-capacity, insertion-ordered collection of paths."""

from typing import Dict, Iterator


class BoundedPathSet:
    """
    Ordered set of distinct paths with a hard capacity.

    Used to collect failed and newly appeared paths while keeping diagnostic
    output bounded. ``add()`` returns whether the set is full, so callers can
    stop walking without an exception unwinding the traversal.
    """

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        # dict keeps insertion order and gives O(1) membership
        self._items: Dict[str, None] = {}

    @property
    def full(self) -> bool:
        return len(self._items) >= self.capacity

    def add(self, path: str) -> bool:
        """
        Add a path unless it is already present or the set is full.

        Returns:
            True if the set is full after the call
        """
        if not self.full:
            self._items.setdefault(path, None)
        return self.full

    def discard(self, path: str) -> None:
        self._items.pop(path, None)

    def __contains__(self, path: object) -> bool:
        return path in self._items

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[str]:
        return iter(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def __repr__(self) -> str:
        return f"BoundedPathSet(capacity={self.capacity}, items={list(self._items)!r})"
