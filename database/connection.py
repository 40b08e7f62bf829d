"""SQLite connection pool shared by the lottery services."""

from __future__ import annotations

import asyncio
from collections import deque
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Deque, Optional

import aiosqlite

from core.exceptions import ConnectionPoolError


class OptimizedSQLitePool:
    """Fixed-size pool of aiosqlite connections with WAL enabled.

    Checkout is bounded by a semaphore, so waiters park instead of spinning
    and a connection is always handed back before the next waiter wakes up.
    """

    def __init__(self, database_path: str, pool_size: int = 10, busy_timeout_ms: int = 5000) -> None:
        self.database_path = Path(database_path)
        self.pool_size = pool_size
        self.busy_timeout_ms = busy_timeout_ms
        self._connections: Deque[aiosqlite.Connection] = deque()
        self._idle: Deque[aiosqlite.Connection] = deque()
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._initialized = False

    @property
    def size(self) -> int:
        return len(self._connections)

    @property
    def available(self) -> int:
        return len(self._idle)

    async def init_pool(self) -> None:
        if self._initialized:
            return

        if not self.database_path.parent.exists():
            self.database_path.parent.mkdir(parents=True, exist_ok=True)

        for _ in range(self.pool_size):
            conn = await aiosqlite.connect(self.database_path.as_posix(), isolation_level=None)
            conn.row_factory = aiosqlite.Row
            await self._apply_pragma(conn)
            self._connections.append(conn)
            self._idle.append(conn)

        self._semaphore = asyncio.Semaphore(self.pool_size)
        self._initialized = True

    async def close(self) -> None:
        while self._connections:
            conn = self._connections.popleft()
            await conn.close()
        self._idle.clear()
        self._initialized = False

    async def _apply_pragma(self, conn: aiosqlite.Connection) -> None:
        await conn.execute("PRAGMA journal_mode=WAL")
        await conn.execute("PRAGMA synchronous=NORMAL")
        await conn.execute("PRAGMA foreign_keys=ON")
        await conn.execute("PRAGMA cache_size=-64000")
        await conn.execute("PRAGMA temp_store=MEMORY")
        await conn.execute(f"PRAGMA busy_timeout={self.busy_timeout_ms}")

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[aiosqlite.Connection]:
        if not self._initialized:
            await self.init_pool()
        async with self._semaphore:
            if not self._idle:
                raise ConnectionPoolError("Connection pool exhausted")
            conn = self._idle.popleft()
            try:
                yield conn
            finally:
                if conn.in_transaction:
                    await conn.rollback()
                self._idle.append(conn)

    @asynccontextmanager
    async def transaction(self, immediate: bool = False) -> AsyncIterator[aiosqlite.Connection]:
        """Run the block inside BEGIN/COMMIT, rolling back on any error."""
        async with self.connection() as conn:
            await conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
            try:
                yield conn
            except BaseException:
                await conn.rollback()
                raise
            else:
                await conn.commit()


_db_pool: Optional[OptimizedSQLitePool] = None


def get_db_pool() -> OptimizedSQLitePool:
    if _db_pool is None:
        raise ConnectionPoolError("Database pool not initialized")
    return _db_pool


async def init_db_pool(database_path: str, pool_size: int, busy_timeout_ms: int) -> OptimizedSQLitePool:
    global _db_pool
    pool = OptimizedSQLitePool(database_path=database_path, pool_size=pool_size, busy_timeout_ms=busy_timeout_ms)
    await pool.init_pool()
    _db_pool = pool
    return pool


async def close_db_pool() -> None:
    global _db_pool
    if _db_pool is not None:
        await _db_pool.close()
        _db_pool = None
