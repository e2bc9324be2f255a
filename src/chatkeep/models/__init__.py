"""chatkeep data models."""

from chatkeep.models.config import (
    ChatkeepConfig,
    CompactionConfig,
    ExpiryConfig,
    GenerationConfig,
    HistoryConfig,
    StoreConfig,
)
from chatkeep.models.message import (
    ChatResult,
    CompactionResult,
    ContentBlock,
    HistoryPage,
    IndexEntry,
    Role,
    RollingContextState,
    SessionMeta,
    SweepResult,
    Turn,
    now_ms,
)

__all__ = [
    # Config
    "ChatkeepConfig",
    "CompactionConfig",
    "ExpiryConfig",
    "GenerationConfig",
    "HistoryConfig",
    "StoreConfig",
    # Turns and state
    "Role",
    "Turn",
    "ContentBlock",
    "RollingContextState",
    "SessionMeta",
    "IndexEntry",
    # Results
    "ChatResult",
    "CompactionResult",
    "HistoryPage",
    "SweepResult",
    "now_ms",
]
