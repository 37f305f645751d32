"""
SQLite cache backend.

Schema: "predator-cache"(key TEXT PRIMARY KEY, value BLOB)
- WAL mode so readers do not block the writer
- INSERT OR IGNORE keeps the first response stored under a key
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional, Union

import aiosqlite
import structlog

from prowlcore.cache.base import TABLE_NAME, Cache

logger = structlog.get_logger(__name__)

_TABLE = f'"{TABLE_NAME}"'


class SQLiteCache(Cache):
    def __init__(self, db_path: Union[str, Path] = "predator-cache.sqlite", compressed: bool = False, wal_mode: bool = True):
        """
        Args:
            db_path: Database file, or ``":memory:"``
            compressed: zlib-compress stored responses
            wal_mode: Enable Write-Ahead Logging mode (recommended)
        """
        super().__init__(compressed)
        self.db_path = db_path if db_path == ":memory:" else Path(db_path)
        self.wal_mode = wal_mode
        self._conn: Optional[aiosqlite.Connection] = None
        self._lock: Optional[asyncio.Lock] = None

    async def _open(self) -> None:
        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = await aiosqlite.connect(self.db_path)
            if self.wal_mode and self.db_path != ":memory:":
                await self._conn.execute("PRAGMA journal_mode=WAL")
            await self._conn.execute("PRAGMA synchronous=NORMAL")
            await self._conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {_TABLE} (
                    key TEXT PRIMARY KEY,
                    value BLOB
                )
                """
            )
            await self._conn.commit()
        except Exception as e:
            logger.error("Failed to open SQLite cache", path=str(self.db_path), error=str(e))
            if self._conn is not None:
                await self._conn.close()
                self._conn = None
            raise
        self._lock = asyncio.Lock()
        logger.info("Initialized SQLite cache", path=str(self.db_path), wal=self.wal_mode)

    def _connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("SQLite cache is not initialized; call init() first")
        return self._conn

    async def _get(self, key: str) -> Optional[bytes]:
        conn = self._connection()
        async with conn.execute(f"SELECT value FROM {_TABLE} WHERE key = ?", (key,)) as cursor:
            row = await cursor.fetchone()
        return bytes(row[0]) if row else None

    async def _put_if_absent(self, key: str, value: bytes) -> None:
        conn = self._connection()
        assert self._lock is not None
        async with self._lock:
            await conn.execute(f"INSERT OR IGNORE INTO {_TABLE} (key, value) VALUES (?, ?)", (key, value))
            await conn.commit()

    async def _clear(self) -> None:
        conn = self._connection()
        assert self._lock is not None
        async with self._lock:
            await conn.execute(f"DELETE FROM {_TABLE}")
            await conn.commit()

    async def _close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
