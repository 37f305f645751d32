"""In-process cache backend."""

from __future__ import annotations

from typing import Dict, Optional

from prowlcore.cache.base import Cache


class MemoryCache(Cache):
    """Dict-backed cache. Lives as long as the process; useful for tests and short crawls."""

    def __init__(self, compressed: bool = False):
        super().__init__(compressed)
        self._store: Dict[str, bytes] = {}

    async def _open(self) -> None:
        return None

    async def _get(self, key: str) -> Optional[bytes]:
        return self._store.get(key)

    async def _put_if_absent(self, key: str, value: bytes) -> None:
        self._store.setdefault(key, value)

    async def _clear(self) -> None:
        self._store.clear()

    def __len__(self) -> int:
        return len(self._store)
