"""Secondary registry of sessions, ordered by last access, for expiry sweeps."""

from __future__ import annotations

from collections.abc import Callable

import structlog

from chatkeep.models.message import IndexEntry, now_ms
from chatkeep.store.database import ChatkeepStoreError, SessionDatabase

MAX_EXPIRED_BATCH = 1_000


class SessionIndex:
    """
    One row per live session: ``(session_id, created_at, last_access_at)``.

    Every operation is a single SQL statement, so each is atomic on its own;
    concurrent touches of the same id resolve last-writer-wins. The
    ``last_access_at`` column is indexed so :meth:`find_expired` never scans
    per-session state.
    """

    def __init__(self, db: SessionDatabase, clock: Callable[[], int] = now_ms) -> None:
        self._db = db
        self._clock = clock
        self._logger = structlog.get_logger("chatkeep.session_index")

    async def register(self, session_id: str) -> IndexEntry:
        """
        Upsert an entry. A new entry gets ``created_at = last_access_at = now``;
        an existing one keeps its ``created_at`` and only refreshes
        ``last_access_at``.
        """
        now = self._clock()
        async with self._db.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO session_index (session_id, created_at, last_access_at)
                VALUES (?, ?, ?)
                ON CONFLICT(session_id) DO UPDATE SET last_access_at = excluded.last_access_at
                """,
                (session_id, now, now),
            )
        entry = await self.get(session_id)
        if entry is None:
            raise ChatkeepStoreError(f"Index entry for {session_id} vanished after upsert")
        self._logger.debug("session_registered", session_id=session_id)
        return entry

    async def touch(self, session_id: str) -> bool:
        """
        Refresh ``last_access_at``. No-op for an absent entry.

        Returns:
            True if an entry was updated.
        """
        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                "UPDATE session_index SET last_access_at = ? WHERE session_id = ?",
                (self._clock(), session_id),
            )
            updated = cursor.rowcount > 0
            await cursor.close()
        return updated

    async def remove(self, session_id: str) -> None:
        """Delete the entry. Idempotent."""
        async with self._db.transaction() as conn:
            await conn.execute("DELETE FROM session_index WHERE session_id = ?", (session_id,))
        self._logger.debug("session_unregistered", session_id=session_id)

    async def get(self, session_id: str) -> IndexEntry | None:
        row = await self._db.fetch_one(
            "SELECT session_id, created_at, last_access_at FROM session_index"
            " WHERE session_id = ?",
            (session_id,),
        )
        if row is None:
            return None
        return IndexEntry(
            session_id=row["session_id"],
            created_at=row["created_at"],
            last_access_at=row["last_access_at"],
        )

    async def find_expired(self, cutoff: int, limit: int = 200) -> list[IndexEntry]:
        """
        Return up to *limit* entries with ``last_access_at < cutoff``, least
        recently used first.

        Args:
            cutoff: Unix millisecond timestamp. Must be positive.
            limit: Batch size, clamped to ``[1, MAX_EXPIRED_BATCH]``.

        Raises:
            ValueError: If *cutoff* is not positive.
        """
        if cutoff <= 0:
            raise ValueError(f"Invalid cutoff: {cutoff!r}")
        limit = max(1, min(int(limit), MAX_EXPIRED_BATCH))
        rows = await self._db.fetch_all(
            """
            SELECT session_id, created_at, last_access_at FROM session_index
            WHERE last_access_at < ?
            ORDER BY last_access_at ASC
            LIMIT ?
            """,
            (cutoff, limit),
        )
        return [
            IndexEntry(
                session_id=row["session_id"],
                created_at=row["created_at"],
                last_access_at=row["last_access_at"],
            )
            for row in rows
        ]

    async def count(self) -> int:
        row = await self._db.fetch_one("SELECT COUNT(*) AS n FROM session_index")
        return int(row["n"]) if row is not None else 0
