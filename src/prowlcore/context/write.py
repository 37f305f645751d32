"""Write-optimised context guarded by a readers/writer lock."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List

from prowlcore.context.api import Context


class _RWLock:
    """Many readers or one writer. Writers are not starved by new readers."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._waiting_writers:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._waiting_writers += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._waiting_writers -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class WriteContext(Context):
    """Context for balanced or write-heavy usage."""

    def __init__(self) -> None:
        self._data: Dict[str, Any] = {}
        self._lock = _RWLock()

    def get_any(self, key: str) -> Any:
        with self._lock.read():
            return self._data.get(key)

    def put(self, key: str, value: Any) -> None:
        with self._lock.write():
            self._data[key] = value

    def get_and_delete(self, key: str) -> Any:
        with self._lock.write():
            return self._data.pop(key, None)

    def _snapshot(self) -> List[tuple]:
        with self._lock.read():
            return list(self._data.items())

    def for_each(self, func: Callable[[str, Any], Any]) -> List[Any]:
        return [func(k, v) for k, v in self._snapshot()]

    def clear(self) -> None:
        with self._lock.write():
            self._data.clear()

    def length(self) -> int:
        with self._lock.read():
            return len(self._data)
