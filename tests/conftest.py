"""Shared fixtures for chatkeep tests."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import pytest
import pytest_asyncio

from chatkeep.events.bus import ChatkeepEvent, EventBus
from chatkeep.generation.backend import GenerationError
from chatkeep.manager import SessionManager
from chatkeep.models.config import ChatkeepConfig, StoreConfig
from chatkeep.models.message import ContentBlock
from chatkeep.store.database import SessionDatabase
from chatkeep.store.pool import StorePool

T0 = 1_700_000_000_000
HOUR_MS = 60 * 60 * 1000


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: int = T0) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@dataclass
class GenerateCall:
    system_instruction: str
    contents: list[ContentBlock]
    use_retrieval: bool
    model_hint: str | None


class ScriptedBackend:
    """
    In-memory GenerationBackend.

    Chat calls (retrieval on) answer ``"reply N"``; summarisation calls
    (retrieval off) answer ``"summary N"``. Flip ``fail_chat`` /
    ``fail_summary`` to make the next calls raise ``GenerationError``. Set
    ``gate`` to an ``asyncio.Event`` to hold chat calls until it is set.
    """

    def __init__(self) -> None:
        self.calls: list[GenerateCall] = []
        self.fail_chat = False
        self.fail_summary = False
        self.gate: asyncio.Event | None = None
        self.entered = asyncio.Event()
        self._chat_count = 0
        self._summary_count = 0

    @property
    def chat_calls(self) -> list[GenerateCall]:
        return [c for c in self.calls if c.use_retrieval]

    @property
    def summary_calls(self) -> list[GenerateCall]:
        return [c for c in self.calls if not c.use_retrieval]

    async def generate(
        self,
        system_instruction: str,
        contents: Sequence[ContentBlock],
        *,
        use_retrieval: bool,
        model_hint: str | None = None,
    ) -> str:
        self.calls.append(
            GenerateCall(system_instruction, list(contents), use_retrieval, model_hint)
        )
        if not use_retrieval:
            if self.fail_summary:
                raise GenerationError("summariser unavailable", model=model_hint)
            self._summary_count += 1
            return f"summary {self._summary_count}"

        self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_chat:
            raise GenerationError("non-success status 503", model=model_hint)
        self._chat_count += 1
        return f"reply {self._chat_count}"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def backend():
    return ScriptedBackend()


@pytest.fixture
def config(tmp_path):
    """ChatkeepConfig with a temp database path."""
    return ChatkeepConfig(store=StoreConfig(db_path=str(tmp_path / "test.db")))


@pytest.fixture
def event_bus():
    """EventBus with a .collected list for asserting events."""
    bus = EventBus()
    collected: list[tuple[ChatkeepEvent, dict[str, Any]]] = []

    def _collect(event: ChatkeepEvent, payload: dict[str, Any]) -> None:
        collected.append((event, payload))

    bus.subscribe_all(_collect)
    bus.collected = collected  # type: ignore[attr-defined]
    return bus


@pytest_asyncio.fixture
async def pool():
    """StorePool for the test database. Closed after each test."""
    p = StorePool()
    yield p
    await p.close_all()


@pytest_asyncio.fixture
async def db(config, pool):
    """Initialized SessionDatabase backed by a temp SQLite file (pool-managed)."""
    d = SessionDatabase(config.store, pool=pool)
    await d.initialize()
    yield d
    await d.close()


@pytest_asyncio.fixture
async def manager(config, db, backend, event_bus, clock):
    """SessionManager over the test database, scripted backend and fake clock."""
    return SessionManager(config, db, backend, event_bus=event_bus, clock=clock)


@pytest_asyncio.fixture
async def session_id(manager):
    """A freshly created session."""
    return await manager.create_session()
