"""Tests for ExpirySweeper."""

from __future__ import annotations

import asyncio

from chatkeep.events.bus import ChatkeepEvent
from chatkeep.expiry.sweeper import ExpirySweeper
from chatkeep.models.config import ExpiryConfig

HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS


class FlakyDestroyer:
    """Delegates to the manager but raises for ids in ``failing``."""

    def __init__(self, manager, failing: set[str]) -> None:
        self._manager = manager
        self.failing = failing

    async def destroy_if_idle(self, session_id: str, cutoff: int) -> bool:
        if session_id in self.failing:
            raise RuntimeError(f"storage unavailable for {session_id}")
        return await self._manager.destroy_if_idle(session_id, cutoff)


class GatedDestroyer:
    """Blocks every destruction until ``release`` is set."""

    def __init__(self, manager) -> None:
        self._manager = manager
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def destroy_if_idle(self, session_id: str, cutoff: int) -> bool:
        self.entered.set()
        await self.release.wait()
        return await self._manager.destroy_if_idle(session_id, cutoff)


class TouchingDestroyer:
    """Simulates a request landing between the sweep query and the destruction."""

    def __init__(self, manager) -> None:
        self._manager = manager

    async def destroy_if_idle(self, session_id: str, cutoff: int) -> bool:
        await self._manager.index.touch(session_id)
        return await self._manager.destroy_if_idle(session_id, cutoff)


class ReinitDestroyer:
    """Re-creates the session as soon as the idle destruction has finished."""

    def __init__(self, manager) -> None:
        self._manager = manager

    async def destroy_if_idle(self, session_id: str, cutoff: int) -> bool:
        destroyed = await self._manager.destroy_if_idle(session_id, cutoff)
        await self._manager.init(session_id)
        return destroyed


async def _create(manager, count: int) -> list[str]:
    return [await manager.create_session() for _ in range(count)]


class TestTick:
    async def test_destroys_only_idle_sessions(self, manager, clock, event_bus):
        idle, active = await _create(manager, 2)
        clock.advance(DAY_MS + HOUR_MS)
        await manager.chat(active, "still here")

        result = await manager.sweeper().tick()

        assert result.cutoff == clock.now - DAY_MS
        assert result.found == 1
        assert result.destroyed == [idle]
        assert not await manager.session(idle).exists()
        assert await manager.index.get(idle) is None
        assert await manager.session(active).exists()
        assert await manager.index.get(active) is not None

        completed = [p for e, p in event_bus.collected if e == ChatkeepEvent.SWEEP_COMPLETED]
        assert completed[-1]["destroyed"] == [idle]

    async def test_second_tick_finds_nothing(self, manager, clock):
        await _create(manager, 3)
        clock.advance(DAY_MS + 1)
        sweeper = manager.sweeper()
        first = await sweeper.tick()
        second = await sweeper.tick()
        assert len(first.destroyed) == 3
        assert second.found == 0
        assert second.destroyed == []

    async def test_failure_isolated_and_retried(self, manager, clock, config):
        ids = await _create(manager, 3)
        clock.advance(DAY_MS + 1)
        destroyer = FlakyDestroyer(manager, {ids[1]})
        sweeper = ExpirySweeper(manager.index, destroyer, config.expiry, clock=clock)

        result = await sweeper.tick()
        assert sorted(result.destroyed) == sorted([ids[0], ids[2]])
        assert result.failed == [ids[1]]
        assert await manager.index.get(ids[1]) is not None
        assert await manager.session(ids[1]).exists()

        destroyer.failing.clear()
        retry = await sweeper.tick()
        assert retry.destroyed == [ids[1]]
        assert await manager.index.count() == 0

    async def test_batch_limit(self, manager, clock):
        await _create(manager, 5)
        clock.advance(DAY_MS + 1)
        sweeper = ExpirySweeper(
            manager.index, manager, ExpiryConfig(sweep_batch_limit=2), clock=clock
        )
        counts = [len((await sweeper.tick()).destroyed) for _ in range(4)]
        assert counts == [2, 2, 1, 0]

    async def test_recently_touched_session_skipped(self, manager, clock):
        (session_id,) = await _create(manager, 1)
        clock.advance(DAY_MS + 1)
        sweeper = ExpirySweeper(
            manager.index, TouchingDestroyer(manager), manager.config.expiry, clock=clock
        )
        result = await sweeper.tick()
        assert result.skipped == [session_id]
        assert result.destroyed == []
        assert await manager.session(session_id).exists()
        assert await manager.index.get(session_id) is not None

    async def test_recreated_session_keeps_index_entry(self, manager, clock):
        """A session re-initialised right after its expiry stays findable by later sweeps."""
        (session_id,) = await _create(manager, 1)
        clock.advance(DAY_MS + 1)
        sweeper = ExpirySweeper(
            manager.index, ReinitDestroyer(manager), manager.config.expiry, clock=clock
        )
        result = await sweeper.tick()

        assert result.destroyed == [session_id]
        assert await manager.session(session_id).exists()
        entry = await manager.index.get(session_id)
        assert entry is not None
        assert entry.last_access_at == clock.now

    async def test_non_positive_cutoff_is_noop(self, manager):
        await _create(manager, 1)
        sweeper = ExpirySweeper(manager.index, manager, ExpiryConfig(), clock=lambda: 1_000)
        result = await sweeper.tick()
        assert result.cutoff <= 0
        assert result.found == 0

    async def test_reentrant_tick_refused(self, manager, clock):
        await _create(manager, 1)
        clock.advance(DAY_MS + 1)
        destroyer = GatedDestroyer(manager)
        sweeper = ExpirySweeper(manager.index, destroyer, ExpiryConfig(), clock=clock)

        first = asyncio.create_task(sweeper.tick())
        await asyncio.wait_for(destroyer.entered.wait(), timeout=2.0)
        assert sweeper.running

        second = await sweeper.tick()
        assert second.reentered is True
        assert second.found == 0

        destroyer.release.set()
        result = await first
        assert len(result.destroyed) == 1
        assert not sweeper.running


class TestPeriodic:
    async def test_start_and_stop(self, manager, clock):
        (session_id,) = await _create(manager, 1)
        clock.advance(HOUR_MS + 1)
        sweeper = ExpirySweeper(
            manager.index,
            manager,
            ExpiryConfig(idle_threshold_ms=HOUR_MS, sweep_interval_seconds=0.01),
            clock=clock,
        )
        sweeper.start()

        async def _gone() -> None:
            while await manager.index.get(session_id) is not None:
                await asyncio.sleep(0.01)

        await asyncio.wait_for(_gone(), timeout=2.0)
        await sweeper.stop()
        assert not await manager.session(session_id).exists()

    async def test_loop_survives_failing_tick(self, manager, clock):
        class BrokenIndex:
            calls = 0

            async def find_expired(self, cutoff, limit):
                BrokenIndex.calls += 1
                raise RuntimeError("index offline")

        sweeper = ExpirySweeper(
            BrokenIndex(),
            manager,
            ExpiryConfig(sweep_interval_seconds=0.01),
            clock=clock,
        )
        sweeper.start()

        async def _ticked_twice() -> None:
            while BrokenIndex.calls < 2:
                await asyncio.sleep(0.01)

        await asyncio.wait_for(_ticked_twice(), timeout=2.0)
        await sweeper.stop()

    async def test_stop_before_start(self, manager):
        await manager.sweeper().stop()
