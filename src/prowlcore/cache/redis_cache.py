"""
Redis cache backend.

Entries live under ``predator-cache:<key>`` as base64 strings. ``SET NX``
makes the first write win without a read-modify-write round trip.
"""

from __future__ import annotations

import base64
from typing import Any, Optional

import redis.asyncio as redis
import structlog

from prowlcore.cache.base import TABLE_NAME, Cache

logger = structlog.get_logger(__name__)


class RedisCache(Cache):
    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        compressed: bool = False,
        redis_client: Optional[Any] = None,
        namespace: str = TABLE_NAME,
    ):
        super().__init__(compressed)
        self.redis_url = redis_url
        self.namespace = namespace
        self.redis_client = redis_client
        self._owns_client = redis_client is None

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def _open(self) -> None:
        if self.redis_client is None:
            self.redis_client = redis.from_url(self.redis_url, decode_responses=False)
        await self.redis_client.ping()
        logger.info("Connected to Redis cache", url=self.redis_url, namespace=self.namespace)

    def _client(self) -> Any:
        if self.redis_client is None:
            raise RuntimeError("Redis cache is not initialized; call init() first")
        return self.redis_client

    async def _get(self, key: str) -> Optional[bytes]:
        raw = await self._client().get(self._key(key))
        if raw is None:
            return None
        return base64.b64decode(raw)

    async def _put_if_absent(self, key: str, value: bytes) -> None:
        await self._client().set(self._key(key), base64.b64encode(value), nx=True)

    async def _clear(self) -> None:
        client = self._client()
        keys = [k async for k in client.scan_iter(match=f"{self.namespace}:*")]
        if keys:
            await client.delete(*keys)

    async def _close(self) -> None:
        if self.redis_client is not None and self._owns_client:
            await self.redis_client.aclose()
            self.redis_client = None
