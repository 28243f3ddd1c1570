"""
Shared connection pool for MessageStore.

One ``StorePool`` holds a single ``aiosqlite.Connection`` per database path.
Every ``MessageStore`` pointed at the same file borrows that connection, so
concurrent chat requests share one handle instead of competing for SQLite's
writer lock.

Usage::

    pool = StorePool()
    store_a = MessageStore(config, pool=pool)
    store_b = MessageStore(config, pool=pool)   # same path → same connection

    await store_a.ensure_ready()   # opens the connection
    await store_b.ensure_ready()   # reuses it

    await pool.close_all()         # once, at shutdown
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import aiosqlite
import structlog

_logger = structlog.get_logger("chatmem.store.pool")


def _resolve(db_path: str) -> str:
    return str(Path(db_path).expanduser().resolve())


async def open_connection(
    db_path: str,
    *,
    wal_mode: bool = True,
    connection_timeout: float = 30.0,
) -> aiosqlite.Connection:
    """
    Open and configure a new SQLite connection.

    Creates the parent directory when missing. The connection uses
    ``aiosqlite.Row`` rows and, optionally, WAL journaling.
    """
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = await aiosqlite.connect(db_path, timeout=connection_timeout)
    try:
        conn.row_factory = aiosqlite.Row
        if wal_mode:
            await conn.execute("PRAGMA journal_mode=WAL")
        await conn.execute("PRAGMA foreign_keys=ON")
        await conn.execute("PRAGMA synchronous=NORMAL")
    except Exception:
        await conn.close()
        raise
    return conn


class StorePool:
    """
    Process-scoped registry of open ``aiosqlite.Connection`` objects.

    Only safe within a single asyncio event loop.

    ``acquire()`` may be called concurrently: a per-path lock makes sure only
    the first caller opens the file. The pool also hands out a per-path write
    lock that ``MessageStore`` holds around multi-statement writes.
    """

    def __init__(self) -> None:
        self._connections: dict[str, aiosqlite.Connection] = {}
        self._write_locks: dict[str, asyncio.Lock] = {}
        self._open_locks: dict[str, asyncio.Lock] = {}

    async def acquire(
        self,
        db_path: str,
        *,
        wal_mode: bool = True,
        connection_timeout: float = 30.0,
    ) -> aiosqlite.Connection:
        """
        Return the shared connection for *db_path*, opening it if needed.

        Args:
            db_path: Path to the database file (``~`` is expanded).
            wal_mode: Enable WAL journal mode on first open.
            connection_timeout: SQLite busy timeout in seconds.
        """
        resolved = _resolve(db_path)  # noqa: ASYNC240

        if resolved in self._connections:
            return self._connections[resolved]

        lock = self._open_locks.setdefault(resolved, asyncio.Lock())
        async with lock:
            if resolved in self._connections:
                return self._connections[resolved]

            conn = await open_connection(
                resolved, wal_mode=wal_mode, connection_timeout=connection_timeout
            )
            self._connections[resolved] = conn
            self._write_locks[resolved] = asyncio.Lock()
            _logger.debug("pool_connection_opened", db_path=resolved)
            return conn

    def write_lock(self, db_path: str) -> asyncio.Lock:
        """
        Return the write lock for *db_path*.

        Raises ``KeyError`` if ``acquire()`` has not been called for this path.
        """
        return self._write_locks[_resolve(db_path)]

    async def close_path(self, db_path: str) -> None:
        """Close and forget the connection for a single path."""
        resolved = _resolve(db_path)  # noqa: ASYNC240
        conn = self._connections.pop(resolved, None)
        self._write_locks.pop(resolved, None)
        self._open_locks.pop(resolved, None)
        if conn is not None:
            await conn.close()
            _logger.debug("pool_connection_closed", db_path=resolved)

    async def close_all(self) -> None:
        """Close every connection managed by this pool."""
        for path in list(self._connections):
            await self.close_path(path)

    @staticmethod
    def default() -> StorePool:
        """
        Return the process-level default pool, created on first access.

        Tests should build their own ``StorePool()`` for isolation.
        """
        global _default_pool
        if _default_pool is None:
            _default_pool = StorePool()
        return _default_pool


_default_pool: StorePool | None = None
