"""
Tests for the response cache backends.

Every backend must honour the same contract: first write wins, clear empties
the store and compression is transparent to callers.
"""

import fnmatch
import sqlite3
import zlib
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from prowlcore.cache import MemoryCache, RedisCache, SQLCache, SQLiteCache, build_cache
from prowlcore.config import CacheConfig


class FakeRedis:
    """The subset of redis.asyncio.Redis the cache uses."""

    def __init__(self):
        self.store = {}
        self.ping = AsyncMock(return_value=True)
        self.aclose = AsyncMock()

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value, nx=False):
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    async def scan_iter(self, match="*"):
        for key in list(self.store):
            if fnmatch.fnmatch(key, match):
                yield key

    async def delete(self, *keys):
        for key in keys:
            self.store.pop(key, None)
        return len(keys)


@pytest_asyncio.fixture(params=["memory", "sqlite", "sql", "redis"])
async def backend(request, tmp_path):
    if request.param == "memory":
        cache = MemoryCache()
    elif request.param == "sqlite":
        cache = SQLiteCache(tmp_path / "cache.sqlite")
    elif request.param == "sql":
        cache = SQLCache(f"sqlite:///{tmp_path / 'sql-cache.db'}")
    else:
        cache = RedisCache(redis_client=FakeRedis())
    await cache.init()
    try:
        yield cache
    finally:
        await cache.close()


@pytest.mark.unit
class TestCacheContract:
    @pytest.mark.asyncio
    async def test_miss(self, backend):
        assert await backend.is_cached("absent") == (None, False)

    @pytest.mark.asyncio
    async def test_first_write_wins(self, backend):
        await backend.cache("k", b"first")
        await backend.cache("k", b"second")
        assert await backend.is_cached("k") == (b"first", True)

    @pytest.mark.asyncio
    async def test_clear(self, backend):
        await backend.cache("a", b"1")
        await backend.cache("b", b"2")
        await backend.clear()
        assert await backend.is_cached("a") == (None, False)
        assert await backend.is_cached("b") == (None, False)

    @pytest.mark.asyncio
    async def test_binary_values_survive(self, backend):
        payload = bytes(range(256))
        await backend.cache("bin", payload)
        assert (await backend.is_cached("bin"))[0] == payload

    @pytest.mark.asyncio
    async def test_init_is_idempotent(self, backend):
        await backend.init()
        assert backend.initialized


@pytest.mark.unit
class TestCompression:
    @pytest.mark.asyncio
    async def test_compressed_roundtrip_and_storage(self):
        cache = MemoryCache(compressed=True)
        await cache.init()
        await cache.cache("k", b'{"status_code":200}')

        assert await cache.is_cached("k") == (b'{"status_code":200}', True)
        assert zlib.decompress(cache._store["k"]) == b'{"status_code":200}'

    @pytest.mark.asyncio
    async def test_compression_fixed_after_init(self):
        cache = MemoryCache()
        cache.set_compression(True)
        await cache.init()
        cache.set_compression(True)
        with pytest.raises(RuntimeError):
            cache.set_compression(False)


@pytest.mark.unit
class TestSQLiteCache:
    @pytest.mark.asyncio
    async def test_table_layout(self, tmp_path):
        path = tmp_path / "nested" / "cache.sqlite"
        async with SQLiteCache(path) as cache:
            await cache.cache("abc", b"value")

        conn = sqlite3.connect(path)
        try:
            rows = conn.execute('SELECT key, value FROM "predator-cache"').fetchall()
        finally:
            conn.close()
        assert rows == [("abc", b"value")]

    @pytest.mark.asyncio
    async def test_persists_across_instances(self, tmp_path):
        path = tmp_path / "cache.sqlite"
        async with SQLiteCache(path) as cache:
            await cache.cache("k", b"v")
        async with SQLiteCache(path) as cache:
            assert await cache.is_cached("k") == (b"v", True)

    @pytest.mark.asyncio
    async def test_use_before_init(self, tmp_path):
        cache = SQLiteCache(tmp_path / "cache.sqlite")
        with pytest.raises(RuntimeError):
            await cache.is_cached("k")


@pytest.mark.unit
class TestRedisCache:
    @pytest.mark.asyncio
    async def test_keys_are_namespaced_and_base64(self):
        client = FakeRedis()
        cache = RedisCache(redis_client=client)
        await cache.init()
        await cache.cache("abc", b"hello")

        assert client.store == {"predator-cache:abc": b"aGVsbG8="}
        client.ping.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_clear_leaves_foreign_keys(self):
        client = FakeRedis()
        client.store["other:key"] = b"x"
        cache = RedisCache(redis_client=client)
        await cache.init()
        await cache.cache("abc", b"hello")
        await cache.clear()
        assert client.store == {"other:key": b"x"}

    @pytest.mark.asyncio
    async def test_injected_client_is_not_closed(self):
        client = FakeRedis()
        cache = RedisCache(redis_client=client)
        await cache.init()
        await cache.close()
        client.aclose.assert_not_awaited()


@pytest.mark.unit
class TestBuildCache:
    def test_disabled(self):
        assert build_cache(CacheConfig()) is None

    def test_backends(self, tmp_path):
        assert isinstance(build_cache(CacheConfig(backend="memory", compressed=True)), MemoryCache)
        sqlite_cache = build_cache(CacheConfig(backend="sqlite", path=tmp_path / "c.sqlite"))
        assert isinstance(sqlite_cache, SQLiteCache)
        assert isinstance(build_cache(CacheConfig(backend="redis", url="redis://localhost:6379/1")), RedisCache)
        assert isinstance(build_cache(CacheConfig(backend="sql", url="sqlite://")), SQLCache)

    def test_compression_flag_propagates(self):
        assert build_cache(CacheConfig(backend="memory", compressed=True)).compressed
