"""
chatkeep: bounded-context conversation sessions with durable logs and idle expiry.

Primary entry point::

    from chatkeep import ChatkeepConfig, SessionManager

    async with SessionManager.open(ChatkeepConfig.from_env()) as manager:
        session_id = await manager.create_session()
        result = await manager.chat(session_id, "Hello!")
        print(result.text)
"""

from chatkeep.compaction.engine import CompactionEngine
from chatkeep.context.rolling import RollingContext
from chatkeep.events.bus import ChatkeepEvent, EventBus
from chatkeep.expiry.sweeper import ExpirySweeper
from chatkeep.generation.backend import GenerationBackend, GenerationError, LiteLLMBackend
from chatkeep.manager import SessionLocks, SessionManager
from chatkeep.models import (
    ChatkeepConfig,
    ChatResult,
    CompactionConfig,
    CompactionResult,
    ContentBlock,
    ExpiryConfig,
    GenerationConfig,
    HistoryConfig,
    HistoryPage,
    IndexEntry,
    RollingContextState,
    SessionMeta,
    StoreConfig,
    SweepResult,
    Turn,
)
from chatkeep.session import ChatSession, InvalidInputError, make_id
from chatkeep.store import (
    ChatkeepStoreError,
    MessageLog,
    SessionDatabase,
    SessionIndex,
    SessionNotFoundError,
    StorePool,
)

__version__ = "0.1.0"

__all__ = [
    # Core
    "SessionManager",
    "SessionLocks",
    "ChatSession",
    "make_id",
    # Components
    "MessageLog",
    "RollingContext",
    "CompactionEngine",
    "SessionIndex",
    "ExpirySweeper",
    "SessionDatabase",
    "StorePool",
    # Config
    "ChatkeepConfig",
    "CompactionConfig",
    "GenerationConfig",
    "HistoryConfig",
    "ExpiryConfig",
    "StoreConfig",
    # Models
    "Turn",
    "ContentBlock",
    "RollingContextState",
    "SessionMeta",
    "IndexEntry",
    "ChatResult",
    "CompactionResult",
    "HistoryPage",
    "SweepResult",
    # Generation
    "GenerationBackend",
    "GenerationError",
    "LiteLLMBackend",
    # Events
    "EventBus",
    "ChatkeepEvent",
    # Errors
    "ChatkeepStoreError",
    "SessionNotFoundError",
    "InvalidInputError",
]
