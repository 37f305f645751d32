"""Response cache backends."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from .base import TABLE_NAME, Cache
from .memory import MemoryCache
from .redis_cache import RedisCache
from .sql import SQLCache
from .sqlite import SQLiteCache

if TYPE_CHECKING:
    from prowlcore.config.config import CacheConfig

__all__ = ["TABLE_NAME", "Cache", "MemoryCache", "RedisCache", "SQLCache", "SQLiteCache", "build_cache"]


def build_cache(config: "CacheConfig") -> Optional[Cache]:
    """Construct the backend named by ``config``; None when caching is off."""
    if config.backend is None:
        return None
    if config.backend == "memory":
        return MemoryCache(compressed=config.compressed)
    if config.backend == "sqlite":
        return SQLiteCache(config.path, compressed=config.compressed)
    if config.backend == "redis":
        assert config.url is not None
        return RedisCache(config.url, compressed=config.compressed)
    if config.backend == "sql":
        assert config.url is not None
        return SQLCache(config.url, compressed=config.compressed)
    raise ValueError(f"unknown cache backend: {config.backend}")
