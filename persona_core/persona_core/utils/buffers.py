"""
Bounded in-memory containers used for per-thread state.

BoundedHistory is an append-only ring buffer addressable by item id; it
drops the oldest entry once full and derives previous/next neighbours from
position instead of storing links. TTLCache expires entries lazily on read.
"""

from __future__ import annotations
import time
from typing import Callable, Dict, Generic, Hashable, Iterator, List, Optional, Tuple, TypeVar

T = TypeVar("T")
V = TypeVar("V")


class BoundedHistory(Generic[T]):
    """
    Append-only, id-addressable sequence with a fixed capacity.

    Usage:
        history = BoundedHistory(capacity=50, key=lambda snap: snap.id)
        history.append(snapshot)
        prev_id = history.previous_id(snapshot.id)
    """

    def __init__(self, capacity: int, key: Callable[[T], str]):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._key = key
        self._items: List[T] = []
        # id -> absolute sequence number; position = seq - self._base
        self._seq: Dict[str, int] = {}
        self._base = 0

    def append(self, item: T) -> Optional[T]:
        """Append an item. Returns the evicted oldest item, if any."""
        item_id = self._key(item)
        if item_id in self._seq:
            raise ValueError(f"duplicate id: {item_id}")
        self._seq[item_id] = self._base + len(self._items)
        self._items.append(item)
        if len(self._items) > self.capacity:
            dropped = self._items.pop(0)
            del self._seq[self._key(dropped)]
            self._base += 1
            return dropped
        return None

    def index_of(self, item_id: str) -> Optional[int]:
        seq = self._seq.get(item_id)
        if seq is None:
            return None
        return seq - self._base

    def get(self, item_id: str) -> Optional[T]:
        idx = self.index_of(item_id)
        return None if idx is None else self._items[idx]

    def previous_id(self, item_id: str) -> Optional[str]:
        idx = self.index_of(item_id)
        if idx is None or idx == 0:
            return None
        return self._key(self._items[idx - 1])

    def next_id(self, item_id: str) -> Optional[str]:
        idx = self.index_of(item_id)
        if idx is None or idx >= len(self._items) - 1:
            return None
        return self._key(self._items[idx + 1])

    def latest(self) -> Optional[T]:
        return self._items[-1] if self._items else None

    def tail(self, n: int) -> List[T]:
        if n <= 0:
            return []
        return list(self._items[-n:])

    def items(self) -> List[T]:
        return list(self._items)

    def clear(self) -> None:
        self._items.clear()
        self._seq.clear()
        self._base = 0

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._items))

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._seq


class TTLCache(Generic[V]):
    """Key/value cache whose entries expire after `ttl_seconds`, evicted on read."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._data: Dict[Hashable, Tuple[float, V]] = {}

    def get(self, key: Hashable) -> Optional[V]:
        entry = self._data.get(key)
        if entry is None:
            return None
        stored_at, value = entry
        if self._clock() - stored_at >= self.ttl_seconds:
            del self._data[key]
            return None
        return value

    def set(self, key: Hashable, value: V) -> None:
        self._data[key] = (self._clock(), value)

    def invalidate(self, predicate: Callable[[Hashable], bool]) -> int:
        """Drop every key matching `predicate`. Returns the number dropped."""
        doomed = [k for k in self._data if predicate(k)]
        for k in doomed:
            del self._data[k]
        return len(doomed)

    def clear(self) -> None:
        self._data.clear()

    def __len__(self) -> int:
        return len(self._data)
