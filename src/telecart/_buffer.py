"""Bounded ring buffer for finished telemetry records."""

from __future__ import annotations

import threading
from collections import deque
from typing import Generic, Literal, TypeVar

T = TypeVar("T")

DropPolicy = Literal["oldest", "newest"]


class RingBuffer(Generic[T]):
    """Thread-safe bounded buffer backed by collections.deque.

    ``enqueue`` never blocks. When full, ``drop_policy`` decides which item
    is discarded: ``"oldest"`` evicts the head, ``"newest"`` rejects the
    incoming item.
    """

    def __init__(self, maxsize: int, *, drop_policy: DropPolicy = "oldest") -> None:
        if maxsize <= 0:
            raise ValueError("maxsize must be positive")
        if drop_policy not in ("oldest", "newest"):
            raise ValueError(f"unknown drop policy {drop_policy!r}")
        self._buffer: deque[T] = deque()
        self._lock = threading.Lock()
        self._drop_count: int = 0
        self._maxsize = maxsize
        self._drop_policy = drop_policy

    def enqueue(self, item: T) -> bool:
        """Add an item. Returns False if the incoming item was dropped."""
        with self._lock:
            if len(self._buffer) >= self._maxsize:
                self._drop_count += 1
                if self._drop_policy == "newest":
                    return False
                self._buffer.popleft()
            self._buffer.append(item)
            return True

    def drain(self, max_items: int) -> list[T]:
        """Remove and return up to max_items items in FIFO order."""
        with self._lock:
            count = min(max_items, len(self._buffer))
            return [self._buffer.popleft() for _ in range(count)]

    @property
    def drop_count(self) -> int:
        """Number of items dropped due to buffer overflow."""
        return self._drop_count

    @property
    def maxsize(self) -> int:
        return self._maxsize

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffer)
