"""SQLite connection holder shared by the message log, context state and session index."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from chatkeep.models.config import StoreConfig
from chatkeep.store.pool import StorePool, open_connection, resolve_db_path

# ── Exceptions ─────────────────────────────────────────────────────────────────


class ChatkeepStoreError(Exception):
    """Base class for store errors. Fatal to the operation that raised it."""


class StoreNotInitializedError(ChatkeepStoreError):
    """Raised when the database is used before ``initialize()``."""

    def __init__(self) -> None:
        super().__init__("Store is not initialized. Call initialize() first.")


class SessionNotFoundError(ChatkeepStoreError):
    """Raised when a session_id has no state in the store."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session not found: {session_id!r}")
        self.session_id = session_id


# ── SessionDatabase ────────────────────────────────────────────────────────────


class SessionDatabase:
    """
    Owns (or borrows from a ``StorePool``) the SQLite connection and applies
    the schema.

    All writes go through :meth:`transaction`, which holds the connection's
    write lock for the duration of the transaction, commits on success and
    rolls back on any failure. Reads are single statements and therefore see
    either the state before or after a concurrent transaction, never a mix.

    Usage::

        db = SessionDatabase(StoreConfig(db_path="/tmp/chat.db"))
        await db.initialize()
        try:
            async with db.transaction() as conn:
                await conn.execute("DELETE FROM messages WHERE session_id = ?", (sid,))
        finally:
            await db.close()
    """

    def __init__(self, config: StoreConfig, pool: StorePool | None = None) -> None:
        self._config = config
        self._db_path = resolve_db_path(config.db_path)
        self._pool = pool
        self._conn: aiosqlite.Connection | None = None
        self._write_lock: asyncio.Lock | None = None
        self._logger = structlog.get_logger("chatkeep.store")

    @property
    def db_path(self) -> str:
        return self._db_path

    async def initialize(self) -> None:
        """
        Open (or borrow) the connection and apply the schema idempotently.

        Raises:
            aiosqlite.Error: If the database cannot be opened or the schema fails.
        """
        if self._conn is not None:
            return

        if self._pool is not None:
            entry = await self._pool.acquire(
                self._db_path,
                wal_mode=self._config.wal_mode,
                connection_timeout=self._config.connection_timeout,
            )
            conn, write_lock = entry.conn, entry.write_lock
        else:
            conn = await open_connection(
                self._db_path,
                wal_mode=self._config.wal_mode,
                connection_timeout=self._config.connection_timeout,
            )
            write_lock = asyncio.Lock()

        schema = (Path(__file__).parent / "schema.sql").read_text()
        async with write_lock:
            await conn.executescript(schema)
            await conn.commit()

        self._conn = conn
        self._write_lock = write_lock
        self._logger.info("store_initialized", db_path=self._db_path)

    async def close(self) -> None:
        """
        Release the connection.

        A pool-owned connection is left open for the pool to close; a private
        connection is closed here.
        """
        if self._conn is None:
            return
        if self._pool is None:
            await self._conn.close()
        self._conn = None
        self._write_lock = None

    def _conn_or_raise(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise StoreNotInitializedError()
        return self._conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Run a write transaction under the connection's write lock.

        Raises:
            ChatkeepStoreError: If any statement or the commit fails. The
                transaction is rolled back first.
        """
        conn = self._conn_or_raise()
        write_lock = self._write_lock
        if write_lock is None:
            raise StoreNotInitializedError()
        async with write_lock:
            try:
                yield conn
                await conn.commit()
            except aiosqlite.Error as exc:
                await conn.rollback()
                self._logger.error("store_transaction_failed", error=str(exc))
                raise ChatkeepStoreError(str(exc)) from exc
            except BaseException:
                await conn.rollback()
                raise

    async def fetch_one(self, sql: str, params: Iterable[Any] = ()) -> aiosqlite.Row | None:
        conn = self._conn_or_raise()
        try:
            async with conn.execute(sql, tuple(params)) as cursor:
                return await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise ChatkeepStoreError(str(exc)) from exc

    async def fetch_all(self, sql: str, params: Iterable[Any] = ()) -> list[aiosqlite.Row]:
        conn = self._conn_or_raise()
        try:
            async with conn.execute(sql, tuple(params)) as cursor:
                return list(await cursor.fetchall())
        except aiosqlite.Error as exc:
            raise ChatkeepStoreError(str(exc)) from exc
