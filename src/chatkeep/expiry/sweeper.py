"""Periodic reclamation of idle sessions driven by the session index."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Literal, Protocol

import structlog

from chatkeep.events.bus import ChatkeepEvent, EventBus
from chatkeep.models.config import ExpiryConfig
from chatkeep.models.message import SweepResult, now_ms
from chatkeep.store.session_index import SessionIndex

Outcome = Literal["destroyed", "skipped", "failed"]


class SessionDestroyer(Protocol):
    """
    Destroys one idle session and removes its index entry, under that
    session's serialisation. Returns False when the session was used again.
    """

    async def destroy_if_idle(self, session_id: str, cutoff: int) -> bool: ...


class ExpirySweeper:
    """
    Finds sessions idle past ``idle_threshold_ms`` and destroys them.

    One :meth:`tick` processes at most ``sweep_batch_limit`` sessions and
    keeps no state between ticks:

    1. ``cutoff = now - idle_threshold_ms``
    2. ``index.find_expired(cutoff, sweep_batch_limit)``
    3. For each session, concurrently: destroy its state, then remove its
       index entry, both under the session's lock.

    A failed destruction leaves both the state and the index entry in place,
    so the session is picked up again by the next tick; it never aborts the
    rest of the batch. A tick requested while another is still running is
    refused rather than queued.

    Example::

        sweeper = manager.sweeper()
        result = await sweeper.tick()
        print(result.destroyed, result.failed)
    """

    def __init__(
        self,
        index: SessionIndex,
        destroyer: SessionDestroyer,
        config: ExpiryConfig,
        *,
        event_bus: EventBus | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._index = index
        self._destroyer = destroyer
        self._config = config
        self._event_bus = event_bus or EventBus()
        self._clock = clock
        self._tick_lock = asyncio.Lock()
        self._task: asyncio.Task[None] | None = None
        self._stop: asyncio.Event | None = None
        self._logger = structlog.get_logger("chatkeep.expiry")

    @property
    def running(self) -> bool:
        """True while a tick is executing."""
        return self._tick_lock.locked()

    async def tick(self) -> SweepResult:
        """Run one sweep. See the class docstring for the protocol."""
        cutoff = self._clock() - self._config.idle_threshold_ms
        if self._tick_lock.locked():
            self._logger.warning("sweep_tick_reentered", cutoff=cutoff)
            return SweepResult(cutoff=cutoff, reentered=True)

        async with self._tick_lock:
            result = SweepResult(cutoff=cutoff)
            if cutoff <= 0:
                return result

            expired = await self._index.find_expired(cutoff, self._config.sweep_batch_limit)
            result.found = len(expired)
            outcomes = await asyncio.gather(
                *(self._expire_one(entry.session_id, cutoff) for entry in expired)
            )
            for entry, outcome in zip(expired, outcomes, strict=True):
                getattr(result, outcome).append(entry.session_id)

        self._logger.info(
            "sweep_completed",
            cutoff=cutoff,
            found=result.found,
            destroyed=len(result.destroyed),
            failed=len(result.failed),
            skipped=len(result.skipped),
        )
        self._event_bus.publish(ChatkeepEvent.SWEEP_COMPLETED, result.model_dump())
        return result

    async def _expire_one(self, session_id: str, cutoff: int) -> Outcome:
        try:
            destroyed = await self._destroyer.destroy_if_idle(session_id, cutoff)
        except Exception as exc:
            # Left in place; the next tick retries it.
            self._logger.error("session_expiry_failed", session_id=session_id, error=str(exc))
            return "failed"
        return "destroyed" if destroyed else "skipped"

    # ── Periodic loop ──────────────────────────────────────────────────────────

    async def run_periodically(self, stop: asyncio.Event | None = None) -> None:
        """
        Tick every ``sweep_interval_seconds`` until *stop* is set.

        A tick that raises (e.g. the index query fails) is logged and the loop
        carries on with the next interval.
        """
        stop = stop or asyncio.Event()
        interval = self._config.sweep_interval_seconds
        while not stop.is_set():
            try:
                await self.tick()
            except Exception as exc:
                self._logger.error("sweep_tick_failed", error=str(exc))
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except TimeoutError:
                continue

    def start(self) -> asyncio.Task[None]:
        """Run :meth:`run_periodically` as a background task."""
        if self._task is not None and not self._task.done():
            return self._task
        self._stop = asyncio.Event()
        self._task = asyncio.create_task(self.run_periodically(self._stop))
        return self._task

    async def stop(self) -> None:
        """Signal the background loop to finish and wait for the current tick."""
        if self._stop is not None:
            self._stop.set()
        if self._task is not None:
            await self._task
        self._task = None
        self._stop = None
