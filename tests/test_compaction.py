"""Tests for the compaction engine and rolling context."""

from __future__ import annotations

import pytest

from chatkeep.compaction.engine import CompactionEngine
from chatkeep.context.rolling import RollingContext
from chatkeep.events.bus import ChatkeepEvent
from chatkeep.generation.backend import GenerationError
from chatkeep.models.config import ChatkeepConfig, CompactionConfig, GenerationConfig
from chatkeep.models.message import SUMMARY_BLOCK_PREFIX, RollingContextState, Turn


def make_tail(count: int) -> list[Turn]:
    return [
        Turn(role="user" if i % 2 == 0 else "assistant", text=f"turn {i}", position=i + 1)
        for i in range(count)
    ]


def make_engine(backend, event_bus=None, *, trigger=18, keep=8, summary_model=None):
    config = ChatkeepConfig(
        compaction=CompactionConfig(
            trigger_turns=trigger, keep_last_turns=keep, summary_model=summary_model
        ),
        generation=GenerationConfig(chat_model="gemini/gemini-2.5-flash"),
    )
    return CompactionEngine(backend, config, event_bus)


class TestShouldCompact:
    def test_fires_when_counter_and_tail_allow(self, backend):
        engine = make_engine(backend, trigger=6, keep=4)
        state = RollingContextState(tail=make_tail(6), turns_since_compaction=6)
        assert engine.should_compact(state)

    def test_counter_below_trigger(self, backend):
        engine = make_engine(backend, trigger=6, keep=4)
        state = RollingContextState(tail=make_tail(10), turns_since_compaction=5)
        assert not engine.should_compact(state)

    def test_tail_not_longer_than_keep(self, backend):
        """A full counter alone is not enough when there is nothing to fold."""
        engine = make_engine(backend, trigger=6, keep=4)
        state = RollingContextState(tail=make_tail(4), turns_since_compaction=20)
        assert not engine.should_compact(state)


class TestCompact:
    async def test_folds_oldest_turns(self, backend):
        engine = make_engine(backend)
        tail = make_tail(18)
        state = RollingContextState(tail=tail, turns_since_compaction=18)

        new_state, result = await engine.maybe_compact("sess_X", state)

        assert result is not None
        assert new_state.summary == "summary 1"
        assert new_state.tail == tail[10:]
        assert new_state.turns_since_compaction == 0
        assert result.summarized_turns == 10
        assert result.kept_turns == 8
        assert result.summary_chars == len("summary 1")

    async def test_guard_blocks_short_tail(self, backend):
        engine = make_engine(backend)
        state = RollingContextState(tail=make_tail(6), turns_since_compaction=18)
        new_state, result = await engine.maybe_compact("sess_X", state)
        assert result is None
        assert new_state is state
        assert backend.summary_calls == []

    async def test_failure_leaves_state_untouched(self, backend, event_bus):
        engine = make_engine(backend, event_bus)
        state = RollingContextState(
            summary="earlier", tail=make_tail(18), turns_since_compaction=18
        )
        before = state.model_dump_json()
        backend.fail_summary = True

        with pytest.raises(GenerationError):
            await engine.maybe_compact("sess_X", state)

        assert state.model_dump_json() == before
        events = [e for e, _ in event_bus.collected]
        assert ChatkeepEvent.COMPACTION_FAILED in events
        assert ChatkeepEvent.COMPACTION_COMPLETED not in events

    async def test_request_shape(self, backend):
        engine = make_engine(backend, trigger=4, keep=2)
        state = RollingContextState(
            summary="User is planning a trip.", tail=make_tail(5), turns_since_compaction=5
        )
        await engine.compact("sess_X", state)

        call = backend.summary_calls[0]
        assert call.use_retrieval is False
        assert call.system_instruction == engine._config.compaction.summary_system_prompt
        blocks = call.contents
        assert blocks[0].text == engine._config.compaction.summary_instruction
        assert blocks[1].role == "user"
        assert blocks[1].text == SUMMARY_BLOCK_PREFIX + "User is planning a trip."
        assert [b.text for b in blocks[2:]] == ["turn 0", "turn 1", "turn 2"]

    async def test_request_without_prior_summary(self, backend):
        engine = make_engine(backend, trigger=4, keep=2)
        state = RollingContextState(tail=make_tail(4), turns_since_compaction=4)
        await engine.compact("sess_X", state)
        blocks = backend.summary_calls[0].contents
        assert len(blocks) == 3
        assert not any(b.text.startswith(SUMMARY_BLOCK_PREFIX) for b in blocks)

    async def test_summary_model_hint(self, backend):
        engine = make_engine(backend, trigger=4, keep=2, summary_model="gemini/flash-lite")
        state = RollingContextState(tail=make_tail(4), turns_since_compaction=4)
        _, result = await engine.compact("sess_X", state)
        assert backend.summary_calls[0].model_hint == "gemini/flash-lite"
        assert result.model == "gemini/flash-lite"

    async def test_summary_model_defaults_to_chat_model(self, backend):
        engine = make_engine(backend, trigger=4, keep=2)
        state = RollingContextState(tail=make_tail(4), turns_since_compaction=4)
        await engine.compact("sess_X", state)
        assert backend.summary_calls[0].model_hint == "gemini/gemini-2.5-flash"

    async def test_events_published(self, backend, event_bus):
        engine = make_engine(backend, event_bus, trigger=4, keep=2)
        state = RollingContextState(tail=make_tail(4), turns_since_compaction=4)
        await engine.compact("sess_X", state)
        events = [e for e, _ in event_bus.collected]
        assert events == [ChatkeepEvent.COMPACTION_TRIGGERED, ChatkeepEvent.COMPACTION_COMPLETED]
        payload = event_bus.collected[-1][1]
        assert payload["session_id"] == "sess_X"
        assert payload["summarized_turns"] == 2


class TestRollingContext:
    def test_prompt_view_without_summary(self, backend):
        ctx = RollingContext("sess_X", RollingContextState(tail=make_tail(2)), make_engine(backend))
        view = ctx.build_prompt_view()
        assert [(b.role, b.text) for b in view] == [("user", "turn 0"), ("assistant", "turn 1")]

    def test_prompt_view_with_summary(self, backend):
        state = RollingContextState(summary="Facts so far.", tail=make_tail(1))
        ctx = RollingContext("sess_X", state, make_engine(backend))
        view = ctx.build_prompt_view()
        assert view[0].role == "user"
        assert view[0].text == SUMMARY_BLOCK_PREFIX + "Facts so far."
        assert view[1].text == "turn 0"

    def test_append_turn_counts(self, backend):
        original = RollingContextState()
        ctx = RollingContext("sess_X", original, make_engine(backend))
        ctx.append_turn("user", "hi", position=1)
        ctx.append_turn("assistant", "hello", position=2)
        assert ctx.turns_since_compaction == 2
        assert [t.text for t in ctx.tail] == ["hi", "hello"]
        assert original.tail == []

    async def test_after_reply_without_compaction(self, backend):
        ctx = RollingContext("sess_X", RollingContextState(), make_engine(backend))
        ctx.append_turn("user", "hi")
        ctx.append_turn("assistant", "hello")
        assert await ctx.after_reply() is None
        assert ctx.turns_since_compaction == 2

    async def test_after_reply_compacts(self, backend):
        ctx = RollingContext(
            "sess_X",
            RollingContextState(tail=make_tail(2), turns_since_compaction=2),
            make_engine(backend, trigger=4, keep=2),
        )
        ctx.append_turn("user", "u")
        ctx.append_turn("assistant", "a")
        result = await ctx.after_reply()
        assert result is not None
        assert ctx.summary == "summary 1"
        assert [t.text for t in ctx.tail] == ["u", "a"]
        assert ctx.turns_since_compaction == 0

    async def test_after_reply_failure_keeps_state(self, backend):
        ctx = RollingContext(
            "sess_X",
            RollingContextState(summary="old", tail=make_tail(2), turns_since_compaction=2),
            make_engine(backend, trigger=4, keep=2),
        )
        ctx.append_turn("user", "u")
        ctx.append_turn("assistant", "a")
        before = ctx.state
        backend.fail_summary = True
        with pytest.raises(GenerationError):
            await ctx.after_reply()
        assert ctx.state is before
        assert ctx.summary == "old"
        assert len(ctx.tail) == 4
        assert ctx.turns_since_compaction == 4
