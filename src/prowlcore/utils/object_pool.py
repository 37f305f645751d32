"""
Thread-safe free list of reusable objects.

Crawlers keep one pool each for contexts, requests and responses. An object is
reset before it goes back on the free list, so whatever ``acquire`` returns is
indistinguishable from a freshly built instance.
"""

from __future__ import annotations

import threading
from typing import Callable, Generic, List, Optional, TypeVar

T = TypeVar("T")


class ObjectPool(Generic[T]):
    def __init__(self, factory: Callable[[], T], reset: Callable[[T], None], max_size: int = 256):
        self._factory = factory
        self._reset = reset
        self._max_size = max_size
        self._free: List[T] = []
        self._lock = threading.Lock()

    def acquire(self) -> T:
        with self._lock:
            if self._free:
                return self._free.pop()
        return self._factory()

    def release(self, obj: Optional[T]) -> None:
        """Reset ``obj`` and keep it for reuse. Surplus objects are dropped."""
        if obj is None:
            return
        self._reset(obj)
        with self._lock:
            if len(self._free) < self._max_size:
                self._free.append(obj)

    def __len__(self) -> int:
        with self._lock:
            return len(self._free)
