"""SessionManager: the primary public API entry point."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

import structlog

from chatkeep.compaction.engine import CompactionEngine
from chatkeep.events.bus import EventBus
from chatkeep.expiry.sweeper import ExpirySweeper
from chatkeep.generation.backend import GenerationBackend, LiteLLMBackend
from chatkeep.models.config import ChatkeepConfig
from chatkeep.models.message import ChatResult, HistoryPage, SessionMeta, now_ms
from chatkeep.session import ChatSession, make_id
from chatkeep.store.database import SessionDatabase
from chatkeep.store.pool import StorePool
from chatkeep.store.session_index import SessionIndex


class SessionLocks:
    """
    One ``asyncio.Lock`` per session id, created on demand and dropped when
    nobody holds or waits for it.

    ``asyncio.Lock`` wakes waiters in FIFO order, so operations on one session
    run one at a time in arrival order while different sessions never wait on
    each other.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, session_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        self._users[session_id] = self._users.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[session_id] -= 1
            if self._users[session_id] == 0:
                del self._users[session_id]
                del self._locks[session_id]


class SessionManager:
    """
    Routes per-session operations to their ``ChatSession`` under that
    session's lock and keeps the ``SessionIndex`` in step.

    Usage::

        async with SessionManager.open(ChatkeepConfig.from_env()) as manager:
            session_id = await manager.create_session()
            result = await manager.chat(session_id, "Hello!")
            print(result.text)

            sweeper = manager.sweeper()
            await sweeper.tick()   # from a cron job, or sweeper.start() in-process
    """

    def __init__(
        self,
        config: ChatkeepConfig,
        db: SessionDatabase,
        backend: GenerationBackend,
        *,
        event_bus: EventBus | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._config = config
        self._db = db
        self._backend = backend
        self._event_bus = event_bus or EventBus()
        self._clock = clock
        self._engine = CompactionEngine(backend, config, self._event_bus)
        self._index = SessionIndex(db, clock=clock)
        self._locks = SessionLocks()
        self._logger = structlog.get_logger("chatkeep.manager")

    @classmethod
    async def create(
        cls,
        config: ChatkeepConfig | None = None,
        *,
        backend: GenerationBackend | None = None,
        event_bus: EventBus | None = None,
        pool: StorePool | None = None,
        db_path: str | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> SessionManager:
        """
        Build a manager with an initialised database.

        Args:
            config: chatkeep configuration. Defaults to ``ChatkeepConfig()``.
            backend: Generation backend. Defaults to ``LiteLLMBackend``.
            event_bus: Shared event bus. A private one is created if omitted.
            pool: Optional shared connection pool; the caller closes it.
            db_path: Override ``config.store.db_path`` (useful for testing).
            clock: Millisecond clock used for every timestamp.
        """
        cfg = config or ChatkeepConfig()
        if db_path is not None:
            cfg = cfg.model_copy(
                update={"store": cfg.store.model_copy(update={"db_path": db_path})}
            )
        db = SessionDatabase(cfg.store, pool=pool)
        await db.initialize()
        return cls(
            cfg,
            db,
            backend or LiteLLMBackend(cfg.generation),
            event_bus=event_bus,
            clock=clock,
        )

    @classmethod
    @asynccontextmanager
    async def open(
        cls, config: ChatkeepConfig | None = None, **kwargs: Any
    ) -> AsyncIterator[SessionManager]:
        """Create a manager and close it when the ``async with`` block exits."""
        manager = await cls.create(config, **kwargs)
        try:
            yield manager
        finally:
            await manager.close()

    async def close(self) -> None:
        await self._db.close()

    async def __aenter__(self) -> SessionManager:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    # ── Accessors ──────────────────────────────────────────────────────────────

    @property
    def config(self) -> ChatkeepConfig:
        return self._config

    @property
    def index(self) -> SessionIndex:
        return self._index

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    def session(self, session_id: str) -> ChatSession:
        """Return the state holder for *session_id*. Does not lock."""
        return ChatSession(
            session_id,
            self._db,
            self._backend,
            self._config,
            engine=self._engine,
            event_bus=self._event_bus,
            clock=self._clock,
        )

    def sweeper(self) -> ExpirySweeper:
        """An expiry sweeper wired to this manager's index and sessions."""
        return ExpirySweeper(
            self._index,
            self,
            self._config.expiry,
            event_bus=self._event_bus,
            clock=self._clock,
        )

    # ── Operations ─────────────────────────────────────────────────────────────

    async def create_session(self) -> str:
        """Create a fresh session, register it in the index and return its id."""
        session_id = make_id("sess")
        await self.init(session_id)
        return session_id

    async def init(self, session_id: str) -> SessionMeta:
        """Ensure state and index entry exist for *session_id*. Idempotent."""
        session = self.session(session_id)
        async with self._locks.hold(session_id):
            meta = await session.init()
            await self._index.register(session_id)
        return meta

    async def chat(
        self, session_id: str, message: str, *, system_prompt: str | None = None
    ) -> ChatResult:
        """Run one chat turn on *session_id*. See :meth:`ChatSession.chat`."""
        session = self.session(session_id)
        async with self._locks.hold(session_id):
            result = await session.chat(message, system_prompt=system_prompt)
            await self._index.touch(session_id)
        return result

    async def reset(self, session_id: str, *, full: bool = False) -> None:
        """Clear the rolling context (and the log when *full*); keep the session."""
        session = self.session(session_id)
        async with self._locks.hold(session_id):
            await session.reset(full=full)
            await self._index.touch(session_id)

    async def history(
        self,
        session_id: str,
        limit: int | None = None,
        before_position: int | None = None,
    ) -> HistoryPage:
        """Return summary, a page of turns and metadata for *session_id*."""
        session = self.session(session_id)
        async with self._locks.hold(session_id):
            page = await session.history(limit, before_position)
            await self._index.touch(session_id)
        return page

    async def destroy(self, session_id: str) -> None:
        """Delete all state of *session_id* and its index entry."""
        session = self.session(session_id)
        async with self._locks.hold(session_id):
            await session.destroy()
            await self._index.remove(session_id)

    async def destroy_if_idle(self, session_id: str, cutoff: int) -> bool:
        """
        Destroy *session_id*'s state unless it was accessed at or after *cutoff*.

        The index entry is re-read under the session lock, so a session touched
        between the sweep query and this call survives. The entry is removed
        under the same lock once the state is gone, so a concurrent ``init``
        either sees the session destroyed or re-registers it afterwards.

        Returns:
            True if the state and its index entry were destroyed.
        """
        session = self.session(session_id)
        async with self._locks.hold(session_id):
            entry = await self._index.get(session_id)
            if entry is not None and entry.last_access_at >= cutoff:
                self._logger.info(
                    "expiry_skipped_recently_used",
                    session_id=session_id,
                    last_access_at=entry.last_access_at,
                    cutoff=cutoff,
                )
                return False
            await session.destroy()
            await self._index.remove(session_id)
        return True
