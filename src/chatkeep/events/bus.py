"""In-process pub/sub event bus for session, compaction and sweep events."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any

import structlog

Handler = Callable[["ChatkeepEvent", dict[str, Any]], None | Awaitable[None]]


class ChatkeepEvent(StrEnum):
    """All event types published by chatkeep components.

    Payload ``TypedDict`` definitions live in :mod:`chatkeep.events.payloads`.
    """

    # Session lifecycle
    SESSION_CREATED = "session.created"
    SESSION_RESET = "session.reset"
    SESSION_DESTROYED = "session.destroyed"

    # Message log
    MESSAGE_APPENDED = "message.appended"

    # Compaction lifecycle
    COMPACTION_TRIGGERED = "compaction.triggered"
    COMPACTION_COMPLETED = "compaction.completed"
    COMPACTION_FAILED = "compaction.failed"

    # Expiry
    SWEEP_COMPLETED = "sweep.completed"


class EventBus:
    """
    Simple in-process pub/sub event bus.

    - Sync handlers are called inline within ``publish()``.
    - Async handlers are scheduled with ``create_task()`` (fire-and-forget).
    - Handler exceptions are logged and never reach the publisher.

    One bus is usually shared by a ``SessionManager`` and its sweeper so a
    single subscriber sees every session.

    Example::

        bus = EventBus()
        bus.subscribe(
            ChatkeepEvent.COMPACTION_COMPLETED,
            lambda event, payload: print(payload["summarized_turns"]),
        )
    """

    def __init__(self, logger: structlog.BoundLogger | None = None) -> None:
        self._handlers: dict[ChatkeepEvent, list[Handler]] = {}
        self._global_handlers: list[Handler] = []
        self._tasks: set[asyncio.Task[Any]] = set()
        self._logger = logger or structlog.get_logger("chatkeep.events")

    def subscribe(self, event: ChatkeepEvent, handler: Handler) -> None:
        """Register *handler* for one event type. May be sync or async."""
        self._handlers.setdefault(event, []).append(handler)

    def subscribe_all(self, handler: Handler) -> None:
        """Register *handler* for every event type."""
        self._global_handlers.append(handler)

    def unsubscribe(self, event: ChatkeepEvent, handler: Handler) -> None:
        """Remove a previously registered handler. No-op if not found."""
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, event: ChatkeepEvent, payload: dict[str, Any]) -> None:
        """Deliver *payload* to every handler of *event* and to global handlers."""
        for handler in [*self._handlers.get(event, []), *self._global_handlers]:
            try:
                result = handler(event, payload)
                if asyncio.iscoroutine(result):
                    self._schedule(result)
            except Exception as exc:
                self._logger.error(
                    "event_handler_error",
                    event_type=str(event),
                    handler=getattr(handler, "__qualname__", repr(handler)),
                    error=str(exc),
                )

    def _schedule(self, coro: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No running loop; the coroutine can never run.
            coro.close()
            return
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
