"""The bounded, LLM-facing view of a session."""

from __future__ import annotations

import structlog

from chatkeep.compaction.engine import CompactionEngine
from chatkeep.models.message import (
    CompactionResult,
    ContentBlock,
    Role,
    RollingContextState,
    Turn,
)


class RollingContext:
    """
    A rolling summary plus a tail of verbatim turns.

    Invariants:
    1. ``tail`` is most-recent-last and holds every turn appended since the
       last compaction plus the turns that compaction kept.
    2. ``summary`` is empty only if no compaction has ever succeeded.
    3. A failed compaction leaves ``summary``, ``tail`` and the counter as
       they were before :meth:`after_reply` was called.
    """

    def __init__(
        self,
        session_id: str,
        state: RollingContextState,
        engine: CompactionEngine,
    ) -> None:
        self._session_id = session_id
        self._state = state
        self._engine = engine
        self._logger = structlog.get_logger("chatkeep.context").bind(session_id=session_id)

    @property
    def state(self) -> RollingContextState:
        return self._state

    @property
    def summary(self) -> str:
        return self._state.summary

    @property
    def tail(self) -> list[Turn]:
        return list(self._state.tail)

    @property
    def turns_since_compaction(self) -> int:
        return self._state.turns_since_compaction

    def build_prompt_view(self) -> list[ContentBlock]:
        """
        Return the exact payload handed to the generation backend.

        A non-empty summary becomes one leading ``user`` block labelled as
        background; every tail turn follows in order.
        """
        blocks: list[ContentBlock] = []
        if self._state.summary.strip():
            blocks.append(ContentBlock.background(self._state.summary))
        blocks.extend(ContentBlock(role=turn.role, text=turn.text) for turn in self._state.tail)
        return blocks

    def append_turn(self, role: Role, text: str, position: int | None = None) -> Turn:
        """Append a turn to the tail and count it towards the next compaction."""
        turn = Turn(role=role, text=text, position=position)
        self._state = RollingContextState(
            summary=self._state.summary,
            tail=[*self._state.tail, turn],
            turns_since_compaction=self._state.turns_since_compaction + 1,
        )
        return turn

    async def after_reply(self) -> CompactionResult | None:
        """
        Evaluate compaction once a user turn and its reply are both in the tail.

        Raises:
            GenerationError: If summarisation fails; the state is unchanged.
        """
        new_state, result = await self._engine.maybe_compact(self._session_id, self._state)
        if result is not None:
            self._state = new_state
        return result
