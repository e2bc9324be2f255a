"""Core data models: turns, prompt blocks, rolling state and result types."""

from __future__ import annotations

import time
from typing import Literal

from pydantic import BaseModel, Field

Role = Literal["user", "assistant"]

SUMMARY_BLOCK_PREFIX = "Conversation background (rolling summary):\n"


def now_ms() -> int:
    """Current wall-clock time as a Unix millisecond timestamp."""
    return int(time.time() * 1000)


# ── Turns and prompt blocks ────────────────────────────────────────────────────


class Turn(BaseModel):
    """
    One message exchanged within a session.

    Turns are immutable once written. ``position`` is assigned by the
    ``MessageLog`` and is an opaque, strictly increasing cursor: pruning may
    leave gaps, so it must never be read as a count.
    """

    role: Role
    text: str
    position: int | None = None
    created_at: int = Field(default_factory=now_ms)
    """Unix millisecond timestamp."""

    model_config = {"frozen": True}


class ContentBlock(BaseModel):
    """A single role-tagged block of the payload handed to the generation backend."""

    role: Role
    text: str

    model_config = {"frozen": True}

    @classmethod
    def background(cls, summary: str) -> ContentBlock:
        """The synthetic block that carries the rolling summary as contextual background."""
        return cls(role="user", text=f"{SUMMARY_BLOCK_PREFIX}{summary}")


# ── Rolling state ──────────────────────────────────────────────────────────────


class RollingContextState(BaseModel):
    """
    Per-session compact context state.

    ``tail`` holds the turns appended since the last compaction plus the turns
    retained by that compaction. ``summary`` stays empty until the first
    compaction succeeds.
    """

    summary: str = ""
    tail: list[Turn] = Field(default_factory=list)
    turns_since_compaction: int = 0


class SessionMeta(BaseModel):
    """Identity and access timestamps of one session's own state holder."""

    session_id: str
    created_at: int
    last_access_at: int


class IndexEntry(BaseModel):
    """One row of the session index."""

    session_id: str
    created_at: int
    last_access_at: int


# ── Result types ───────────────────────────────────────────────────────────────


class CompactionResult(BaseModel):
    """The outcome of a compaction that fired and committed."""

    session_id: str
    summarized_turns: int
    kept_turns: int
    summary_chars: int
    model: str
    elapsed_ms: float


class ChatResult(BaseModel):
    """
    The result of a single ``chat()`` call.

    Carries the assistant's reply plus the log positions of both turns and
    whether the rolling context was compacted on this turn.
    """

    session_id: str
    text: str
    user_position: int
    assistant_position: int
    compaction: CompactionResult | None = None

    @property
    def compaction_triggered(self) -> bool:
        return self.compaction is not None


class HistoryPage(BaseModel):
    """A page of the message log together with the current summary and session metadata."""

    session_id: str
    summary: str
    turns: list[Turn]
    created_at: int
    last_access_at: int

    @property
    def next_before(self) -> int | None:
        """Cursor for the next (older) page, or None when this page is empty."""
        if not self.turns:
            return None
        return self.turns[0].position


class SweepResult(BaseModel):
    """Bookkeeping for one expiry sweep tick."""

    cutoff: int
    found: int = 0
    destroyed: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    """Sessions found expired but touched again before their destruction ran."""
    reentered: bool = False
    """True when the tick was refused because a previous tick was still running."""
