"""chatkeep persistence layer."""

from chatkeep.store.context_state import SessionStateStore
from chatkeep.store.database import (
    ChatkeepStoreError,
    SessionDatabase,
    SessionNotFoundError,
    StoreNotInitializedError,
)
from chatkeep.store.message_log import MessageLog
from chatkeep.store.pool import StorePool
from chatkeep.store.session_index import MAX_EXPIRED_BATCH, SessionIndex

__all__ = [
    "SessionDatabase",
    "StorePool",
    "MessageLog",
    "SessionStateStore",
    "SessionIndex",
    "MAX_EXPIRED_BATCH",
    "ChatkeepStoreError",
    "SessionNotFoundError",
    "StoreNotInitializedError",
]
