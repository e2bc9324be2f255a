"""ChatSession: the per-session state holder and its operations."""

from __future__ import annotations

from collections.abc import Callable

import structlog
from ulid import ULID

from chatkeep.compaction.engine import CompactionEngine
from chatkeep.context.rolling import RollingContext
from chatkeep.events.bus import ChatkeepEvent, EventBus
from chatkeep.generation.backend import GenerationBackend
from chatkeep.models.config import ChatkeepConfig
from chatkeep.models.message import ChatResult, HistoryPage, SessionMeta, now_ms
from chatkeep.store.context_state import SessionStateStore
from chatkeep.store.database import SessionDatabase, SessionNotFoundError
from chatkeep.store.message_log import MessageLog


class InvalidInputError(ValueError):
    """Raised for a malformed request before any session state is touched."""


def make_id(prefix: str) -> str:
    """
    Generate a ULID-based sortable identifier.

    Args:
        prefix: Short prefix for readability (e.g. ``"sess"``).

    Returns:
        ID string in the format ``"{prefix}_{ulid}"``.
    """
    return f"{prefix}_{ULID()}"


class ChatSession:
    """
    Owns one session's durable state: metadata row, rolling context record and
    message log.

    ``ChatSession`` does no locking of its own. Callers must serialise every
    operation on the same session id; ``SessionManager`` does this with a
    per-session lock. The rolling context is loaded at the start of each
    operation and written back only when the operation succeeds.
    """

    def __init__(
        self,
        session_id: str,
        db: SessionDatabase,
        backend: GenerationBackend,
        config: ChatkeepConfig,
        *,
        engine: CompactionEngine | None = None,
        event_bus: EventBus | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        if not session_id:
            raise InvalidInputError("Missing sessionId")
        self._session_id = session_id
        self._db = db
        self._backend = backend
        self._config = config
        self._event_bus = event_bus or EventBus()
        self._engine = engine or CompactionEngine(backend, config, self._event_bus)
        self._state_store = SessionStateStore(db, clock=clock)
        self._log = MessageLog(db, session_id, page_max=config.history.page_max, clock=clock)
        self._logger = structlog.get_logger("chatkeep.session").bind(session_id=session_id)

    @property
    def id(self) -> str:
        """The session ID."""
        return self._session_id

    @property
    def message_log(self) -> MessageLog:
        return self._log

    async def _require_meta(self) -> SessionMeta:
        meta = await self._state_store.get_meta(self._session_id)
        if meta is None:
            raise SessionNotFoundError(self._session_id)
        return meta

    async def exists(self) -> bool:
        return await self._state_store.get_meta(self._session_id) is not None

    async def rolling_context(self) -> RollingContext:
        """Load the current rolling context from the store."""
        state = await self._state_store.load_state(self._session_id)
        return RollingContext(self._session_id, state, self._engine)

    # ── Operations ─────────────────────────────────────────────────────────────

    async def init(self) -> SessionMeta:
        """Ensure the session's state exists. Idempotent."""
        meta, created = await self._state_store.ensure_meta(self._session_id)
        if created:
            self._logger.info("session_created")
            self._event_bus.publish(
                ChatkeepEvent.SESSION_CREATED,
                {"session_id": self._session_id, "created_at": meta.created_at},
            )
        return meta

    async def reset(self, *, full: bool = False) -> None:
        """
        Clear the rolling context, and the message log too when *full*.

        The session identity survives; its access time is refreshed.
        """
        await self._require_meta()
        await self._state_store.delete_state(self._session_id)
        if full:
            await self._log.clear()
        await self._state_store.touch_meta(self._session_id)
        self._logger.info("session_reset", full=full)
        self._event_bus.publish(
            ChatkeepEvent.SESSION_RESET, {"session_id": self._session_id, "full": full}
        )

    async def destroy(self) -> None:
        """Delete every trace of the session. Idempotent; used by the expiry sweep."""
        await self._state_store.destroy(self._session_id)
        self._event_bus.publish(ChatkeepEvent.SESSION_DESTROYED, {"session_id": self._session_id})

    async def history(
        self, limit: int | None = None, before_position: int | None = None
    ) -> HistoryPage:
        """
        Return the current summary, a page of the message log and the session
        timestamps.

        Args:
            limit: Page size; defaults to ``history.default_page`` and is
                clamped to ``history.page_max``.
            before_position: Cursor from a previous page (its smallest position).
        """
        await self._state_store.touch_meta(self._session_id)
        meta = await self._require_meta()
        state = await self._state_store.load_state(self._session_id)
        turns = await self._log.page(
            self._config.history.default_page if limit is None else limit,
            before_position,
        )
        return HistoryPage(
            session_id=self._session_id,
            summary=state.summary,
            turns=turns,
            created_at=meta.created_at,
            last_access_at=meta.last_access_at,
        )

    async def chat(self, user_text: str, *, system_prompt: str | None = None) -> ChatResult:
        """
        Run one conversational turn.

        Steps: log the user turn, call the backend on the rolling prompt view
        (retrieval enabled), log the reply, evaluate compaction, persist the
        rolling context, prune the log to ``history.max_messages``.

        Raises:
            InvalidInputError: Empty message, or a system prompt supplied while
                overrides are disabled. Nothing has been written.
            SessionNotFoundError: The session was never initialised or has
                been destroyed.
            GenerationError: The reply or the summarisation failed. The user
                turn (and, for a summarisation failure, the reply) stays in the
                log; the rolling context is left as it was before the call.
        """
        text = (user_text or "").strip()
        if not text:
            raise InvalidInputError("Missing message")
        if system_prompt is not None and not self._config.generation.allow_system_prompt_override:
            raise InvalidInputError("Per-request system prompts are disabled")
        if system_prompt is not None and not system_prompt.strip():
            raise InvalidInputError("Missing systemPrompt")

        await self._require_meta()
        context = await self.rolling_context()

        user_turn = await self._log.append("user", text)
        context.append_turn("user", text, position=user_turn.position)

        reply = await self._backend.generate(
            system_prompt or self._config.generation.system_prompt,
            context.build_prompt_view(),
            use_retrieval=True,
        )

        assistant_turn = await self._log.append("assistant", reply)
        context.append_turn("assistant", reply, position=assistant_turn.position)

        compaction = await context.after_reply()
        await self._state_store.save_state(self._session_id, context.state)
        await self._log.prune(self._config.history.max_messages)
        await self._state_store.touch_meta(self._session_id)

        self._logger.info(
            "chat_turn_completed",
            user_position=user_turn.position,
            assistant_position=assistant_turn.position,
            tail_length=len(context.state.tail),
            compacted=compaction is not None,
        )
        for turn in (user_turn, assistant_turn):
            self._event_bus.publish(
                ChatkeepEvent.MESSAGE_APPENDED,
                {"session_id": self._session_id, "role": turn.role, "position": turn.position},
            )

        return ChatResult(
            session_id=self._session_id,
            text=reply,
            user_position=user_turn.position,
            assistant_position=assistant_turn.position,
            compaction=compaction,
        )
