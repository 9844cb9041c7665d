"""Keyed collection iterated in comparator order."""

from functools import cmp_to_key
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple


class SortedMap:
    """
    Map of key -> value that iterates values by a comparator, not insertion order.

    The sort order is recomputed lazily on the first read after a mutation.
    """

    def __init__(
        self,
        entries: Iterable[Tuple[Any, Any]] = (),
        sorter: Optional[Callable[[Any, Any], int]] = None
    ):
        """
        Initialize sorted map.

        Args:
            entries: Initial (key, value) pairs
            sorter: cmp-style function (a, b) -> negative, zero or positive.
                    Without it values are ordered by key.
        """
        self._map: Dict[Any, Any] = {}
        self._sorter = sorter
        self._sorted: Optional[List[Tuple[Any, Any]]] = None
        for key, value in entries:
            self._map[key] = value

    def __contains__(self, key) -> bool:
        return key in self._map

    def __iter__(self) -> Iterator[Any]:
        return iter([value for _, value in self._entries()])

    def __len__(self) -> int:
        return len(self._map)

    def __repr__(self) -> str:
        return f"SortedMap({[key for key, _ in self._entries()]!r})"

    @property
    def size(self) -> int:
        return len(self._map)

    def get(self, key, default=None):
        return self._map.get(key, default)

    def has(self, key) -> bool:
        return key in self._map

    def set(self, key, value) -> 'SortedMap':
        """Insert or replace a value. Returns self."""
        self._map[key] = value
        self._sorted = None
        return self

    def delete(self, key) -> bool:
        """Remove a key. Returns True if something was removed."""
        if key not in self._map:
            return False
        del self._map[key]
        self._sorted = None
        return True

    def clear(self):
        self._map.clear()
        self._sorted = None

    def keys(self) -> List[Any]:
        return [key for key, _ in self._entries()]

    def values(self) -> List[Any]:
        return [value for _, value in self._entries()]

    def items(self) -> List[Tuple[Any, Any]]:
        return list(self._entries())

    def to_array(self) -> List[Any]:
        """Snapshot of the values in sort order."""
        return self.values()

    def for_each(self, cb: Callable[[Any, Any], Any]):
        """
        Call cb(value, key) for every entry in sort order.

        Walks a snapshot taken before the first call, so cb may add or
        remove entries without affecting which entries are visited.
        """
        for key, value in self.items():
            cb(value, key)

    def _entries(self) -> List[Tuple[Any, Any]]:
        if self._sorted is None:
            if self._sorter:
                sorter = self._sorter
                key = cmp_to_key(lambda a, b: sorter(a[1], b[1]))
            else:
                key = lambda item: item[0]
            self._sorted = sorted(self._map.items(), key=key)
        return self._sorted
