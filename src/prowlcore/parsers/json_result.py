"""
Dotted-path queries over decoded JSON documents.

``JSONResult.parse('{"a": {"b": [1, 2]}}').get("a.b.1").int()`` returns 2.
Path segments are object keys, or list indexes when the current value is a
list. A missing segment produces a result whose ``exists()`` is False; typed
accessors on it return zero values.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Union

MISSING = object()


def lookup_path(data: Any, path: str) -> Any:
    """
    Resolve ``path`` against ``data``.

    A dict key equal to the whole path wins over dotted descent, so keys that
    themselves contain dots stay reachable. Returns the module sentinel
    ``MISSING`` when nothing matches.
    """
    if isinstance(data, dict) and path in data:
        return data[path]
    if path == "":
        return data

    current = data
    for segment in path.split("."):
        if isinstance(current, dict):
            if segment not in current:
                return MISSING
            current = current[segment]
        elif isinstance(current, list):
            try:
                index = int(segment)
            except ValueError:
                return MISSING
            if index < 0 or index >= len(current):
                return MISSING
            current = current[index]
        else:
            return MISSING
    return current


class JSONResult:
    """A value found in a JSON document, or the absence of one."""

    __slots__ = ("_value",)

    def __init__(self, value: Any = MISSING):
        self._value = value

    @classmethod
    def parse(cls, raw: Union[str, bytes, bytearray]) -> "JSONResult":
        """Decode ``raw``. Invalid JSON yields a non-existing result."""
        try:
            return cls(json.loads(raw))
        except (ValueError, TypeError):
            return cls()

    def get(self, path: str) -> "JSONResult":
        if self._value is MISSING:
            return JSONResult()
        return JSONResult(lookup_path(self._value, path))

    def exists(self) -> bool:
        return self._value is not MISSING

    @property
    def value(self) -> Any:
        return None if self._value is MISSING else self._value

    def string(self) -> str:
        value = self.value
        if value is None:
            return ""
        if isinstance(value, str):
            return value
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, (dict, list)):
            return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
        return str(value)

    def int(self) -> int:
        value = self.value
        try:
            return int(float(value)) if isinstance(value, str) else int(value)
        except (TypeError, ValueError):
            return 0

    def float(self) -> float:
        value = self.value
        try:
            return float(value)
        except (TypeError, ValueError):
            return 0.0

    def bool(self) -> bool:
        value = self.value
        if isinstance(value, str):
            return value.strip().lower() in ("true", "1")
        return bool(value)

    def list(self) -> List["JSONResult"]:
        value = self.value
        if isinstance(value, list):
            return [JSONResult(item) for item in value]
        if value is None:
            return []
        return [JSONResult(value)]

    def map(self) -> Dict[str, "JSONResult"]:
        value = self.value
        if isinstance(value, dict):
            return {k: JSONResult(v) for k, v in value.items()}
        return {}

    def __eq__(self, other: object) -> bool:
        if isinstance(other, JSONResult):
            return self._value == other._value
        return NotImplemented

    def __repr__(self) -> str:
        if not self.exists():
            return "JSONResult(<missing>)"
        return f"JSONResult({self._value!r})"


def get_path(data: Any, path: str, default: Optional[Any] = None) -> Any:
    value = lookup_path(data, path)
    return default if value is MISSING else value
