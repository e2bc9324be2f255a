"""Append-only, per-session durable message log."""

from __future__ import annotations

from collections.abc import Callable

import structlog

from chatkeep.models.message import Role, Turn, now_ms
from chatkeep.store.database import SessionDatabase, SessionNotFoundError


class MessageLog:
    """
    Full-fidelity record of every user/assistant turn of one session.

    Positions come from the session's ``last_position`` counter in
    ``session_meta``, so they keep increasing across prunes and full resets.
    The log is independent of compaction: folding turns into the rolling
    summary never touches it.
    """

    def __init__(
        self,
        db: SessionDatabase,
        session_id: str,
        *,
        page_max: int = 500,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._db = db
        self._session_id = session_id
        self._page_max = page_max
        self._clock = clock
        self._logger = structlog.get_logger("chatkeep.message_log").bind(session_id=session_id)

    @property
    def session_id(self) -> str:
        return self._session_id

    async def append(self, role: Role, text: str) -> Turn:
        """
        Store a turn at the next position.

        Returns:
            The stored Turn, with its position assigned.

        Raises:
            SessionNotFoundError: If the session has not been initialised.
            ChatkeepStoreError: If the write fails.
        """
        created_at = self._clock()
        async with self._db.transaction() as conn:
            async with conn.execute(
                "SELECT last_position FROM session_meta WHERE session_id = ?",
                (self._session_id,),
            ) as cursor:
                row = await cursor.fetchone()
            if row is None:
                raise SessionNotFoundError(self._session_id)
            position = row["last_position"] + 1
            await conn.execute(
                "UPDATE session_meta SET last_position = ? WHERE session_id = ?",
                (position, self._session_id),
            )
            await conn.execute(
                "INSERT INTO messages (session_id, position, role, text, created_at)"
                " VALUES (?, ?, ?, ?, ?)",
                (self._session_id, position, role, text, created_at),
            )

        self._logger.debug("message_appended", role=role, position=position)
        return Turn(role=role, text=text, position=position, created_at=created_at)

    def clamp_limit(self, limit: int) -> int:
        """Bound a requested page size to ``[1, page_max]``."""
        return max(1, min(int(limit), self._page_max))

    async def page(self, limit: int, before_position: int | None = None) -> list[Turn]:
        """
        Return up to *limit* turns, oldest to newest.

        With *before_position* the page holds the newest turns strictly older
        than that cursor; without it, the most recent turns. Paging backward by
        passing the smallest position of each page eventually returns an empty
        page. *limit* is clamped silently.
        """
        limit = self.clamp_limit(limit)
        if before_position is None:
            rows = await self._db.fetch_all(
                "SELECT position, role, text, created_at FROM messages"
                " WHERE session_id = ? ORDER BY position DESC LIMIT ?",
                (self._session_id, limit),
            )
        else:
            rows = await self._db.fetch_all(
                "SELECT position, role, text, created_at FROM messages"
                " WHERE session_id = ? AND position < ? ORDER BY position DESC LIMIT ?",
                (self._session_id, before_position, limit),
            )
        return [
            Turn(
                role=row["role"],
                text=row["text"],
                position=row["position"],
                created_at=row["created_at"],
            )
            for row in reversed(rows)
        ]

    async def count(self) -> int:
        row = await self._db.fetch_one(
            "SELECT COUNT(*) AS n FROM messages WHERE session_id = ?", (self._session_id,)
        )
        return int(row["n"]) if row is not None else 0

    async def prune(self, max_rows: int) -> int:
        """
        Delete everything but the most recent *max_rows* turns.

        Returns:
            Number of rows deleted.
        """
        if max_rows < 0:
            raise ValueError("max_rows must be non-negative")
        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                """
                DELETE FROM messages
                WHERE session_id = ?
                  AND position <= (
                      SELECT position FROM messages
                      WHERE session_id = ?
                      ORDER BY position DESC
                      LIMIT 1 OFFSET ?
                  )
                """,
                (self._session_id, self._session_id, max_rows),
            )
            deleted = cursor.rowcount
            await cursor.close()

        if deleted:
            self._logger.info("message_log_pruned", deleted=deleted, kept=max_rows)
        return deleted

    async def clear(self) -> None:
        """Delete every turn of the session. Idempotent."""
        async with self._db.transaction() as conn:
            await conn.execute("DELETE FROM messages WHERE session_id = ?", (self._session_id,))
        self._logger.info("message_log_cleared")
