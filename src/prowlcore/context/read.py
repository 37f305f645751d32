"""Read-optimised context: reads never take a lock."""

from __future__ import annotations

import threading
from typing import Any, Callable, Dict, List

from prowlcore.context.api import Context


class ReadContext(Context):
    """
    Context for handlers that read far more often than they write.

    Single dict operations are atomic under the interpreter, so ``get_any``
    goes straight to the dict. Writers serialise among themselves, and
    iteration works on a copy so a concurrent write cannot break it.
    """

    def __init__(self) -> None:
        self._data: Dict[str, Any] = {}
        self._write_lock = threading.Lock()

    def get_any(self, key: str) -> Any:
        return self._data.get(key)

    def put(self, key: str, value: Any) -> None:
        with self._write_lock:
            self._data[key] = value

    def get_and_delete(self, key: str) -> Any:
        with self._write_lock:
            return self._data.pop(key, None)

    def _snapshot(self) -> List[tuple]:
        with self._write_lock:
            return list(self._data.items())

    def for_each(self, func: Callable[[str, Any], Any]) -> List[Any]:
        return [func(k, v) for k, v in self._snapshot()]

    def clear(self) -> None:
        with self._write_lock:
            self._data.clear()

    def length(self) -> int:
        return len(self._data)
