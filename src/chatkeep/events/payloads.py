"""Typed payload definitions for each ChatkeepEvent.

Usage example::

    from chatkeep.events.bus import ChatkeepEvent, EventBus
    from chatkeep.events.payloads import SweepCompletedPayload

    def on_sweep(event: ChatkeepEvent, payload: SweepCompletedPayload) -> None:
        print(f"destroyed {len(payload['destroyed'])} idle sessions")

    bus.subscribe(ChatkeepEvent.SWEEP_COMPLETED, on_sweep)  # type: ignore[arg-type]
"""

from __future__ import annotations

from typing import TypedDict

# ── Session lifecycle ─────────────────────────────────────────────────────────


class SessionCreatedPayload(TypedDict):
    """Payload for :attr:`ChatkeepEvent.SESSION_CREATED`."""

    session_id: str
    created_at: int


class SessionResetPayload(TypedDict):
    """Payload for :attr:`ChatkeepEvent.SESSION_RESET`."""

    session_id: str
    full: bool
    """True when the message log was cleared as well."""


class SessionDestroyedPayload(TypedDict):
    """Payload for :attr:`ChatkeepEvent.SESSION_DESTROYED`."""

    session_id: str


# ── Message log ───────────────────────────────────────────────────────────────


class MessageAppendedPayload(TypedDict):
    """Payload for :attr:`ChatkeepEvent.MESSAGE_APPENDED`."""

    session_id: str
    role: str
    position: int


# ── Compaction ────────────────────────────────────────────────────────────────


class CompactionTriggeredPayload(TypedDict):
    """Payload for :attr:`ChatkeepEvent.COMPACTION_TRIGGERED`."""

    session_id: str
    turns_since_compaction: int
    tail_length: int


class CompactionCompletedPayload(TypedDict):
    """Payload for :attr:`ChatkeepEvent.COMPACTION_COMPLETED`.

    Mirrors :class:`~chatkeep.models.message.CompactionResult`.
    """

    session_id: str
    summarized_turns: int
    kept_turns: int
    summary_chars: int
    model: str
    elapsed_ms: float


class CompactionFailedPayload(TypedDict):
    """Payload for :attr:`ChatkeepEvent.COMPACTION_FAILED`."""

    session_id: str
    error: str


# ── Expiry ────────────────────────────────────────────────────────────────────


class SweepCompletedPayload(TypedDict):
    """Payload for :attr:`ChatkeepEvent.SWEEP_COMPLETED`.

    Mirrors :class:`~chatkeep.models.message.SweepResult`.
    """

    cutoff: int
    found: int
    destroyed: list[str]
    failed: list[str]
    skipped: list[str]
    reentered: bool
