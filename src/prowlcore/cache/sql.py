"""
Relational cache backend for PostgreSQL, MySQL or any SQLAlchemy URL.

SQLAlchemy's engine is synchronous, so every statement runs in a worker
thread via ``asyncio.to_thread``.
"""

from __future__ import annotations

import asyncio
from typing import Optional

import structlog
from sqlalchemy import Column, LargeBinary, MetaData, String, Table, create_engine, delete, insert, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from prowlcore.cache.base import TABLE_NAME, Cache

logger = structlog.get_logger(__name__)

metadata = MetaData()

cache_table = Table(
    TABLE_NAME,
    metadata,
    Column("key", String(64), primary_key=True),
    Column("value", LargeBinary),
)


class SQLCache(Cache):
    def __init__(self, database_url: str, compressed: bool = False, **engine_kwargs):
        super().__init__(compressed)
        self.database_url = database_url
        self._engine_kwargs = engine_kwargs
        self._engine: Optional[Engine] = None

    def _engine_or_raise(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("SQL cache is not initialized; call init() first")
        return self._engine

    def _create(self) -> None:
        kwargs = {"pool_pre_ping": True}
        kwargs.update(self._engine_kwargs)
        self._engine = create_engine(self.database_url, **kwargs)
        metadata.create_all(self._engine, tables=[cache_table])

    async def _open(self) -> None:
        await asyncio.to_thread(self._create)
        logger.info("Database cache initialized", dialect=self._engine_or_raise().dialect.name)

    def _select(self, key: str) -> Optional[bytes]:
        with self._engine_or_raise().connect() as conn:
            row = conn.execute(select(cache_table.c.value).where(cache_table.c.key == key)).first()
        return bytes(row[0]) if row else None

    def _insert(self, key: str, value: bytes) -> None:
        try:
            with self._engine_or_raise().begin() as conn:
                conn.execute(insert(cache_table).values(key=key, value=value))
        except IntegrityError:
            # Another worker stored this key first.
            logger.debug("Cache key already stored", cache_key=key)

    def _delete_all(self) -> None:
        with self._engine_or_raise().begin() as conn:
            conn.execute(delete(cache_table))

    async def _get(self, key: str) -> Optional[bytes]:
        return await asyncio.to_thread(self._select, key)

    async def _put_if_absent(self, key: str, value: bytes) -> None:
        await asyncio.to_thread(self._insert, key, value)

    async def _clear(self) -> None:
        await asyncio.to_thread(self._delete_all)

    async def _close(self) -> None:
        if self._engine is not None:
            await asyncio.to_thread(self._engine.dispose)
            self._engine = None
