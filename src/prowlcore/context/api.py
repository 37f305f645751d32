"""
Key/value context shared between the request and response handlers of one
pipeline execution.
"""

from __future__ import annotations

import enum
import json
from abc import ABC, abstractmethod
from typing import Any, Callable, Iterator, List, Optional


class ContextKind(str, enum.Enum):
    """Which context variant a crawler hands out."""

    # Many readers, few writers.
    READ = "read"
    # Balanced or write-heavy usage.
    WRITE = "write"


class Context(ABC):
    """Mapping from string keys to arbitrary values."""

    @abstractmethod
    def get_any(self, key: str) -> Any:
        """Return the value stored under ``key`` or None."""

    @abstractmethod
    def put(self, key: str, value: Any) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""

    @abstractmethod
    def get_and_delete(self, key: str) -> Any:
        """Remove ``key`` and return its value, or None when absent."""

    @abstractmethod
    def for_each(self, func: Callable[[str, Any], Any]) -> List[Any]:
        """Apply ``func(key, value)`` to every entry and collect the results."""

    @abstractmethod
    def clear(self) -> None:
        """Remove every entry, keeping the backing store."""

    @abstractmethod
    def length(self) -> int:
        """Number of entries."""

    @abstractmethod
    def _snapshot(self) -> List[tuple]:
        """Consistent copy of the entries as ``(key, value)`` pairs."""

    def get_string(self, key: str) -> str:
        """Return the value under ``key`` if it is a string, else ``""``."""
        value = self.get_any(key)
        if isinstance(value, str):
            return value
        return ""

    # Alias kept for handlers written against the short name.
    get = get_string

    def delete(self, key: str) -> None:
        self.get_and_delete(key)

    def to_json_string(self) -> str:
        """
        Render the context as a JSON object.

        Strings are quoted, integers are emitted bare, every other value is
        converted with ``str()`` and quoted.
        """
        parts = []
        for key, value in self._snapshot():
            if isinstance(value, str):
                rendered = json.dumps(value, ensure_ascii=False)
            elif isinstance(value, int) and not isinstance(value, bool):
                rendered = str(value)
            else:
                rendered = json.dumps(str(value), ensure_ascii=False)
            parts.append(f"{json.dumps(key, ensure_ascii=False)}:{rendered}")
        return "{" + ",".join(parts) + "}"

    def __len__(self) -> int:
        return self.length()

    def __contains__(self, key: object) -> bool:
        return any(k == key for k, _ in self._snapshot())

    def __iter__(self) -> Iterator[str]:
        return iter([k for k, _ in self._snapshot()])

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.to_json_string()})"


def new_context(kind: Optional[ContextKind | str] = None) -> Context:
    """Create an empty context of the requested kind (write-optimised by default)."""
    from prowlcore.context.read import ReadContext
    from prowlcore.context.write import WriteContext

    kind = ContextKind(kind) if kind is not None else ContextKind.WRITE
    if kind is ContextKind.READ:
        return ReadContext()
    return WriteContext()
