"""Configuration models for chatkeep sessions and components."""

from __future__ import annotations

import os
from collections.abc import Mapping

from pydantic import BaseModel, Field, model_validator

DEFAULT_SUMMARY_INSTRUCTION = (
    "Summarise the conversation so far in an operative, faithful way. Capture the "
    "decisions and constraints agreed on, the canonical facts that were introduced, "
    "and any requests that are still open. Maximum 15 lines."
)

DEFAULT_SUMMARY_SYSTEM_PROMPT = (
    "You are an assistant that condenses conversations faithfully and concisely."
)


class CompactionConfig(BaseModel):
    """Configuration for the rolling-context compaction engine."""

    trigger_turns: int = Field(
        default=18,
        ge=2,
        le=1_000,
        description="Turns appended since the last compaction required before it can fire.",
    )

    keep_last_turns: int = Field(
        default=8,
        ge=0,
        le=999,
        description="Most recent turns kept verbatim in the tail after a compaction.",
    )

    summary_model: str | None = Field(
        default=None,
        description="Model used for summarisation. None = use the chat model.",
    )

    summary_instruction: str = DEFAULT_SUMMARY_INSTRUCTION
    """Instruction block placed ahead of the turns being folded into the summary."""

    summary_system_prompt: str = DEFAULT_SUMMARY_SYSTEM_PROMPT
    """System instruction sent with every summarisation request."""

    @model_validator(mode="after")
    def validate_window(self) -> CompactionConfig:
        if self.keep_last_turns >= self.trigger_turns:
            raise ValueError("keep_last_turns must be strictly less than trigger_turns")
        return self


class GenerationConfig(BaseModel):
    """Configuration for calls to the text-generation backend."""

    chat_model: str = Field(
        default="gemini/gemini-2.5-flash",
        description="litellm model string used for regular chat replies.",
    )

    max_output_tokens: int = Field(default=700, ge=1, le=65_536)

    temperature: float = Field(default=0.2, ge=0.0, le=2.0)

    retrieval_store: str | None = Field(
        default=None,
        description=(
            "Name of the file-search store used for retrieval-augmented replies. "
            "Required whenever a call asks for retrieval."
        ),
    )

    api_key: str | None = None
    """Explicit provider key. None = let litellm read the provider's environment variable."""

    system_prompt: str = "You are a helpful assistant."
    """System instruction for chat replies."""

    allow_system_prompt_override: bool = False
    """Whether callers may pass their own system instruction on each chat request."""


class HistoryConfig(BaseModel):
    """Retention and pagination limits for the per-session message log."""

    max_messages: int = Field(
        default=1_000,
        ge=2,
        description="Rows kept in the message log after each chat; older rows are pruned.",
    )

    page_max: int = Field(default=500, ge=1, le=10_000)
    """Largest page a history request may return. Larger limits are clamped."""

    default_page: int = Field(default=120, ge=1)


class ExpiryConfig(BaseModel):
    """Idle-session reclamation settings."""

    idle_threshold_ms: int = Field(
        default=24 * 60 * 60 * 1000,
        ge=1,
        description="Sessions idle for longer than this are destroyed by the sweeper.",
    )

    sweep_batch_limit: int = Field(default=200, ge=1, le=1_000)
    """Maximum sessions destroyed per sweep tick."""

    sweep_interval_seconds: float = Field(default=3_600.0, gt=0)
    """Delay between ticks when the sweeper runs its own periodic loop."""


class StoreConfig(BaseModel):
    """Configuration for the SQLite persistence layer."""

    db_path: str = Field(
        default="~/.chatkeep/sessions.db",
        description="Path to the SQLite database file. ~ is expanded at runtime.",
    )

    wal_mode: bool = True
    """Use WAL journal mode for better concurrent read performance."""

    connection_timeout: float = 30.0
    """Seconds to wait for the database connection before raising."""


class ChatkeepConfig(BaseModel):
    """
    Top-level configuration passed to every chatkeep component.

    Example::

        config = ChatkeepConfig(
            compaction=CompactionConfig(trigger_turns=12, keep_last_turns=4),
            store=StoreConfig(db_path="/var/lib/chat/sessions.db"),
        )
    """

    compaction: CompactionConfig = Field(default_factory=CompactionConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    expiry: ExpiryConfig = Field(default_factory=ExpiryConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)

    @property
    def summary_model(self) -> str:
        """The model used for compaction, falling back to the chat model."""
        return self.compaction.summary_model or self.generation.chat_model

    @classmethod
    def default(cls) -> ChatkeepConfig:
        """Return a config instance with all defaults."""
        return cls()

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ChatkeepConfig:
        """
        Build a config from deployment environment variables.

        Unset variables keep their defaults; integers that fail to parse also
        fall back to the default rather than raising. Integers outside a
        field's bounds are clamped into range, and ``SUMMARY_KEEP_LAST_TURNS``
        is capped one below the trigger.

        Args:
            environ: Mapping to read from. Defaults to ``os.environ``.
        """
        env = os.environ if environ is None else environ

        def _int(name: str, default: int, low: int, high: int | None = None) -> int:
            try:
                value = int(env.get(name, ""))
            except ValueError:
                return default
            value = max(low, value)
            return value if high is None else min(value, high)

        defaults = cls()
        trigger = _int("SUMMARY_TRIGGER_TURNS", defaults.compaction.trigger_turns, 2, 1_000)
        compaction = CompactionConfig(
            trigger_turns=trigger,
            keep_last_turns=_int(
                "SUMMARY_KEEP_LAST_TURNS",
                min(defaults.compaction.keep_last_turns, trigger - 1),
                0,
                trigger - 1,
            ),
            summary_model=env.get("SUMMARY_MODEL") or None,
        )
        generation = GenerationConfig(
            chat_model=env.get("CHAT_MODEL") or defaults.generation.chat_model,
            max_output_tokens=_int(
                "MAX_OUTPUT_TOKENS", defaults.generation.max_output_tokens, 1, 65_536
            ),
            retrieval_store=env.get("RETRIEVAL_STORE_NAME") or None,
        )
        history = HistoryConfig(
            max_messages=_int("HISTORY_MAX_MESSAGES", defaults.history.max_messages, 2),
        )
        expiry = ExpiryConfig(
            idle_threshold_ms=_int("IDLE_THRESHOLD_MS", defaults.expiry.idle_threshold_ms, 1),
            sweep_batch_limit=_int(
                "SWEEP_BATCH_LIMIT", defaults.expiry.sweep_batch_limit, 1, 1_000
            ),
        )
        store = StoreConfig(db_path=env.get("CHATKEEP_DB_PATH") or defaults.store.db_path)
        return cls(
            compaction=compaction,
            generation=generation,
            history=history,
            expiry=expiry,
            store=store,
        )
