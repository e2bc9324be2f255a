"""chatkeep event system."""

from chatkeep.events.bus import ChatkeepEvent, EventBus
from chatkeep.events.payloads import (
    CompactionCompletedPayload,
    CompactionFailedPayload,
    CompactionTriggeredPayload,
    MessageAppendedPayload,
    SessionCreatedPayload,
    SessionDestroyedPayload,
    SessionResetPayload,
    SweepCompletedPayload,
)

__all__ = [
    "EventBus",
    "ChatkeepEvent",
    "SessionCreatedPayload",
    "SessionResetPayload",
    "SessionDestroyedPayload",
    "MessageAppendedPayload",
    "CompactionTriggeredPayload",
    "CompactionCompletedPayload",
    "CompactionFailedPayload",
    "SweepCompletedPayload",
]
