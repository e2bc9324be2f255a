"""Rolling-summary compaction engine.

Policy:

- Compaction fires only when ``turns_since_compaction >= trigger_turns``
  **and** the tail holds more than ``keep_last_turns`` turns.
- The oldest ``len(tail) - keep_last_turns`` turns are folded, together with
  the previous summary, into a new summary by the generation backend with
  retrieval disabled. The newest ``keep_last_turns`` stay verbatim.
- The swap is all-or-nothing: the engine never mutates the state it is
  given. It returns a new state on success and raises on failure, so the
  caller's summary, tail and counter are untouched when the backend fails.
"""

from __future__ import annotations

import time

import structlog

from chatkeep.events.bus import ChatkeepEvent, EventBus
from chatkeep.generation.backend import GenerationBackend
from chatkeep.models.config import ChatkeepConfig
from chatkeep.models.message import (
    CompactionResult,
    ContentBlock,
    RollingContextState,
    Turn,
)


class CompactionEngine:
    """
    Decides when to fold old turns into the rolling summary and performs the fold.

    The summarisation call targets ``config.summary_model`` (the chat model
    unless ``compaction.summary_model`` is set).

    Example::

        engine = CompactionEngine(backend, config, event_bus)
        if engine.should_compact(state):
            state, result = await engine.compact(session_id, state)
    """

    def __init__(
        self,
        backend: GenerationBackend,
        config: ChatkeepConfig,
        event_bus: EventBus | None = None,
    ) -> None:
        self._backend = backend
        self._config = config
        self._event_bus = event_bus or EventBus()
        self._logger = structlog.get_logger("chatkeep.compaction")

    @property
    def trigger_turns(self) -> int:
        return self._config.compaction.trigger_turns

    @property
    def keep_last_turns(self) -> int:
        return self._config.compaction.keep_last_turns

    def should_compact(self, state: RollingContextState) -> bool:
        """Return True when both the turn counter and the tail length allow a fold."""
        return (
            state.turns_since_compaction >= self.trigger_turns
            and len(state.tail) > self.keep_last_turns
        )

    def split_tail(self, tail: list[Turn]) -> tuple[list[Turn], list[Turn]]:
        """Split *tail* into ``(to_summarize, remaining)``."""
        cut = len(tail) - self.keep_last_turns
        return list(tail[:cut]), list(tail[cut:])

    def build_request(self, summary: str, to_summarize: list[Turn]) -> list[ContentBlock]:
        """
        Assemble the summarisation payload: the instruction block, the previous
        summary as background (when there is one), then the turns to fold.
        """
        blocks = [ContentBlock(role="user", text=self._config.compaction.summary_instruction)]
        if summary.strip():
            blocks.append(ContentBlock.background(summary))
        blocks.extend(ContentBlock(role=turn.role, text=turn.text) for turn in to_summarize)
        return blocks

    async def maybe_compact(
        self, session_id: str, state: RollingContextState
    ) -> tuple[RollingContextState, CompactionResult | None]:
        """
        Compact *state* if the policy allows it.

        Returns:
            ``(state, None)`` unchanged when the policy does not fire, else the
            new state and its ``CompactionResult``.

        Raises:
            GenerationError: If the summarisation call fails. *state* is left
                exactly as it was.
        """
        if not self.should_compact(state):
            return state, None
        return await self.compact(session_id, state)

    async def compact(
        self, session_id: str, state: RollingContextState
    ) -> tuple[RollingContextState, CompactionResult]:
        """Fold the oldest turns of *state* into a new summary unconditionally."""
        start_ms = time.time() * 1000
        to_summarize, remaining = self.split_tail(state.tail)
        model = self._config.summary_model

        self._logger.info(
            "compaction_triggered",
            session_id=session_id,
            turns_since_compaction=state.turns_since_compaction,
            tail_length=len(state.tail),
        )
        self._event_bus.publish(
            ChatkeepEvent.COMPACTION_TRIGGERED,
            {
                "session_id": session_id,
                "turns_since_compaction": state.turns_since_compaction,
                "tail_length": len(state.tail),
            },
        )

        try:
            summary = await self._backend.generate(
                self._config.compaction.summary_system_prompt,
                self.build_request(state.summary, to_summarize),
                use_retrieval=False,
                model_hint=model,
            )
        except Exception as exc:
            self._logger.error("compaction_failed", session_id=session_id, error=str(exc))
            self._event_bus.publish(
                ChatkeepEvent.COMPACTION_FAILED,
                {"session_id": session_id, "error": str(exc)},
            )
            raise

        new_state = RollingContextState(
            summary=summary,
            tail=remaining,
            turns_since_compaction=0,
        )
        result = CompactionResult(
            session_id=session_id,
            summarized_turns=len(to_summarize),
            kept_turns=len(remaining),
            summary_chars=len(summary),
            model=model,
            elapsed_ms=time.time() * 1000 - start_ms,
        )

        self._logger.info(
            "compaction_completed",
            session_id=session_id,
            summarized_turns=result.summarized_turns,
            kept_turns=result.kept_turns,
            elapsed_ms=result.elapsed_ms,
        )
        self._event_bus.publish(ChatkeepEvent.COMPACTION_COMPLETED, result.model_dump())
        return new_state, result
