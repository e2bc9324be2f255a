"""Durable per-session state: identity row and rolling context record."""

from __future__ import annotations

import json
from collections.abc import Callable

import structlog
from pydantic import TypeAdapter

from chatkeep.models.message import RollingContextState, SessionMeta, Turn, now_ms
from chatkeep.store.database import SessionDatabase, SessionNotFoundError

_TAIL_ADAPTER = TypeAdapter(list[Turn])


class SessionStateStore:
    """
    Reads and writes the ``session_meta`` and ``context_state`` rows.

    The rolling context is stored as a typed record: the summary and counter
    as columns, the tail as a JSON array of turns. A missing ``context_state``
    row reads back as an empty ``RollingContextState``.
    """

    def __init__(self, db: SessionDatabase, clock: Callable[[], int] = now_ms) -> None:
        self._db = db
        self._clock = clock
        self._logger = structlog.get_logger("chatkeep.session_state")

    # ── Session metadata ───────────────────────────────────────────────────────

    async def ensure_meta(self, session_id: str) -> tuple[SessionMeta, bool]:
        """
        Create the metadata row if absent and refresh its access time.

        Returns:
            ``(meta, created)`` where *created* is True when the row is new.
        """
        ts = self._clock()
        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                "INSERT OR IGNORE INTO session_meta (session_id, created_at, last_access_at)"
                " VALUES (?, ?, ?)",
                (session_id, ts, ts),
            )
            created = cursor.rowcount == 1
            await cursor.close()
            if not created:
                await conn.execute(
                    "UPDATE session_meta SET last_access_at = ? WHERE session_id = ?",
                    (ts, session_id),
                )
        meta = await self.get_meta(session_id)
        if meta is None:
            raise SessionNotFoundError(session_id)
        return meta, created

    async def get_meta(self, session_id: str) -> SessionMeta | None:
        row = await self._db.fetch_one(
            "SELECT session_id, created_at, last_access_at FROM session_meta WHERE session_id = ?",
            (session_id,),
        )
        if row is None:
            return None
        return SessionMeta(
            session_id=row["session_id"],
            created_at=row["created_at"],
            last_access_at=row["last_access_at"],
        )

    async def touch_meta(self, session_id: str) -> None:
        ts = self._clock()
        async with self._db.transaction() as conn:
            await conn.execute(
                "UPDATE session_meta SET last_access_at = ? WHERE session_id = ?",
                (ts, session_id),
            )

    # ── Rolling context ────────────────────────────────────────────────────────

    async def load_state(self, session_id: str) -> RollingContextState:
        row = await self._db.fetch_one(
            "SELECT summary, tail, turns_since_compaction FROM context_state WHERE session_id = ?",
            (session_id,),
        )
        if row is None:
            return RollingContextState()
        return RollingContextState(
            summary=row["summary"],
            tail=_TAIL_ADAPTER.validate_json(row["tail"]),
            turns_since_compaction=row["turns_since_compaction"],
        )

    async def save_state(self, session_id: str, state: RollingContextState) -> None:
        tail_json = json.dumps([turn.model_dump() for turn in state.tail])
        async with self._db.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO context_state
                    (session_id, summary, tail, turns_since_compaction, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(session_id) DO UPDATE SET
                    summary = excluded.summary,
                    tail = excluded.tail,
                    turns_since_compaction = excluded.turns_since_compaction,
                    updated_at = excluded.updated_at
                """,
                (session_id, state.summary, tail_json, state.turns_since_compaction, self._clock()),
            )

    async def delete_state(self, session_id: str) -> None:
        """Drop the rolling context record. Idempotent."""
        async with self._db.transaction() as conn:
            await conn.execute("DELETE FROM context_state WHERE session_id = ?", (session_id,))

    # ── Destruction ────────────────────────────────────────────────────────────

    async def destroy(self, session_id: str) -> None:
        """Delete the message log, rolling context and metadata in one transaction."""
        async with self._db.transaction() as conn:
            await conn.execute("DELETE FROM messages WHERE session_id = ?", (session_id,))
            await conn.execute("DELETE FROM context_state WHERE session_id = ?", (session_id,))
            await conn.execute("DELETE FROM session_meta WHERE session_id = ?", (session_id,))
        self._logger.info("session_state_destroyed", session_id=session_id)
