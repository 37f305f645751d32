"""
Abstract response cache.

Backends store opaque bytes under a fingerprint. Compression is handled here
so every backend gets it for free: subclasses implement the ``_get``/``_put``
primitives and never see compressed or uncompressed distinctions.
"""

from __future__ import annotations

import zlib
from abc import ABC, abstractmethod
from typing import Optional, Tuple

import structlog

logger = structlog.get_logger(__name__)

TABLE_NAME = "predator-cache"


class Cache(ABC):
    """Key -> bytes store with first-write-wins semantics."""

    def __init__(self, compressed: bool = False):
        self._compressed = compressed
        self._initialized = False

    @property
    def compressed(self) -> bool:
        return self._compressed

    @property
    def initialized(self) -> bool:
        return self._initialized

    def set_compression(self, enabled: bool) -> None:
        """Toggle zlib compression. Only allowed before ``init()``."""
        if self._initialized and enabled != self._compressed:
            raise RuntimeError("cache compression cannot be changed after init()")
        self._compressed = enabled

    async def init(self) -> None:
        """Open the backing store and create its schema. Idempotent."""
        if self._initialized:
            return
        await self._open()
        self._initialized = True
        logger.debug("Cache initialized", backend=type(self).__name__, compressed=self._compressed)

    async def is_cached(self, key: str) -> Tuple[Optional[bytes], bool]:
        """Return ``(value, True)`` for a stored key, ``(None, False)`` otherwise."""
        stored = await self._get(key)
        if stored is None:
            return None, False
        if self._compressed:
            stored = zlib.decompress(stored)
        return stored, True

    async def cache(self, key: str, value: bytes) -> None:
        """Store ``value`` unless ``key`` is already present."""
        if self._compressed:
            value = zlib.compress(value)
        await self._put_if_absent(key, value)

    async def clear(self) -> None:
        await self._clear()
        logger.info("Cache cleared", backend=type(self).__name__)

    async def close(self) -> None:
        await self._close()
        self._initialized = False

    async def __aenter__(self) -> "Cache":
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @abstractmethod
    async def _open(self) -> None: ...

    @abstractmethod
    async def _get(self, key: str) -> Optional[bytes]: ...

    @abstractmethod
    async def _put_if_absent(self, key: str, value: bytes) -> None: ...

    @abstractmethod
    async def _clear(self) -> None: ...

    async def _close(self) -> None:
        return None
