"""
Example 02: Idle-Session Expiry
===============================

Demonstrates how idle sessions are reclaimed:
- Several sessions, only some of them kept active
- A single ExpirySweeper.tick() destroying the idle ones
- The in-process periodic loop with start()/stop()

A fake clock stands in for a day passing.

Run without an API key:
    CHATKEEP_MOCK_LLM=1 uv run python examples/02_expiry_sweep.py
"""

import asyncio
import sys
import time
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

DAY_MS = 24 * 60 * 60 * 1000


class ShiftedClock:
    """Wall clock that can be pushed forward."""

    def __init__(self) -> None:
        self.offset = 0

    def __call__(self) -> int:
        return int(time.time() * 1000) + self.offset


async def main() -> None:
    from chatkeep import ChatkeepConfig, ChatkeepEvent, ExpiryConfig, SessionManager

    print("=== chatkeep Expiry Example ===\n")

    clock = ShiftedClock()
    config = ChatkeepConfig.from_env().model_copy(
        update={"expiry": ExpiryConfig(sweep_interval_seconds=0.1)}
    )

    async with SessionManager.open(
        config, db_path="/tmp/chatkeep_example_02.db", clock=clock
    ) as manager:
        manager.event_bus.subscribe(
            ChatkeepEvent.SWEEP_COMPLETED,
            lambda event, payload: print(f"  [event] {event}: destroyed {payload['destroyed']}"),
        )

        ids = [await manager.create_session() for _ in range(4)]
        print(f"Created {len(ids)} sessions")

        clock.offset += DAY_MS + 1
        for session_id in ids[:2]:
            await manager.chat(session_id, "Still here!")
        print("A day later, two of them are used again\n")

        sweeper = manager.sweeper()
        result = await sweeper.tick()
        print(f"Sweep found {result.found}, destroyed {len(result.destroyed)}")
        print(f"Sessions left in the index: {await manager.index.count()}\n")

        clock.offset += DAY_MS + 1
        print("Another idle day; running the periodic loop briefly...")
        sweeper.start()
        await asyncio.sleep(0.3)
        await sweeper.stop()
        print(f"Sessions left in the index: {await manager.index.count()}")


if __name__ == "__main__":
    asyncio.run(main())
