"""
Shared connection pool for ``SessionDatabase``.

One ``StorePool`` keeps a single ``aiosqlite.Connection`` per database file
together with the write lock that serialises transactions on it. Every
``SessionDatabase`` pointing at the same file (the per-session state holders,
the session index and the sweeper) then shares one physical connection, so
concurrent sessions never contend for SQLite's single-writer lock.

Usage::

    pool = StorePool()
    db_a = SessionDatabase(config.store, pool=pool)
    db_b = SessionDatabase(config.store, pool=pool)   # same file → same connection
    await db_a.initialize()
    await db_b.initialize()
    ...
    await pool.close_all()
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path

import aiosqlite
import structlog

_logger = structlog.get_logger("chatkeep.store.pool")


def resolve_db_path(db_path: str) -> str:
    """Expand ``~`` and resolve *db_path* to the key the pool uses."""
    return str(Path(db_path).expanduser().resolve())


async def open_connection(
    db_path: str, *, wal_mode: bool = True, connection_timeout: float = 30.0
) -> aiosqlite.Connection:
    """Open and configure a connection to *db_path*, creating parent directories."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = await aiosqlite.connect(db_path, timeout=connection_timeout)
    try:
        conn.row_factory = aiosqlite.Row
        if wal_mode:
            await conn.execute("PRAGMA journal_mode=WAL")
        await conn.execute("PRAGMA synchronous=NORMAL")
    except Exception:
        await conn.close()
        raise
    return conn


@dataclass
class PooledConnection:
    """A shared connection and the lock that serialises its write transactions."""

    conn: aiosqlite.Connection
    write_lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class StorePool:
    """
    Process-scoped registry of open SQLite connections, keyed by resolved path.

    Only safe to use from a single asyncio event loop. Concurrent ``acquire()``
    calls for the same path open the file once; later callers receive the same
    ``PooledConnection``.
    """

    def __init__(self) -> None:
        self._entries: dict[str, PooledConnection] = {}
        self._open_locks: dict[str, asyncio.Lock] = {}

    async def acquire(
        self,
        db_path: str,
        *,
        wal_mode: bool = True,
        connection_timeout: float = 30.0,
    ) -> PooledConnection:
        """
        Return the shared connection for *db_path*, opening it on first use.

        Args:
            db_path: Database path; ``~`` is expanded.
            wal_mode: Enable WAL journal mode on first open.
            connection_timeout: SQLite busy timeout in seconds.
        """
        resolved = resolve_db_path(db_path)

        entry = self._entries.get(resolved)
        if entry is not None:
            return entry

        open_lock = self._open_locks.setdefault(resolved, asyncio.Lock())
        async with open_lock:
            entry = self._entries.get(resolved)
            if entry is not None:
                return entry

            conn = await open_connection(
                resolved, wal_mode=wal_mode, connection_timeout=connection_timeout
            )
            entry = PooledConnection(conn=conn)
            self._entries[resolved] = entry
            _logger.debug("pool_connection_opened", db_path=resolved)
            return entry

    def __contains__(self, db_path: str) -> bool:
        return resolve_db_path(db_path) in self._entries

    async def close_path(self, db_path: str) -> None:
        """Close and forget the connection for a single path."""
        resolved = resolve_db_path(db_path)
        entry = self._entries.pop(resolved, None)
        self._open_locks.pop(resolved, None)
        if entry is not None:
            await entry.conn.close()
            _logger.debug("pool_connection_closed", db_path=resolved)

    async def close_all(self) -> None:
        """Close every connection managed by this pool."""
        for path in list(self._entries):
            await self.close_path(path)
