"""
Example 01: Basic Session
=========================

Demonstrates the simplest end-to-end usage of SessionManager:
- Creating a session with create_session()
- Sending messages in a loop
- Watching the rolling summary take over via ChatResult.compaction_triggered
- Paging back through the full message log with history()

Run without an API key:
    CHATKEEP_MOCK_LLM=1 uv run python examples/01_basic_session.py

Run with a real LLM (set your provider key and retrieval store first):
    GEMINI_API_KEY=... RETRIEVAL_STORE_NAME=fileSearchStores/... \
        uv run python examples/01_basic_session.py
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path when running directly
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


async def main() -> None:
    from chatkeep import ChatkeepConfig, CompactionConfig, SessionManager

    print("=== chatkeep Basic Session Example ===\n")

    # A short window so the summary shows up after a few exchanges
    config = ChatkeepConfig.from_env().model_copy(
        update={"compaction": CompactionConfig(trigger_turns=6, keep_last_turns=2)}
    )

    async with SessionManager.open(config, db_path="/tmp/chatkeep_example_01.db") as manager:
        session_id = await manager.create_session()
        print(f"Session created: {session_id}\n")

        questions = [
            "What is Python's GIL?",
            "How does asyncio work at a high level?",
            "What's the difference between async/await and threading?",
            "When should I use asyncio vs multiprocessing?",
            "Can you show a simple asyncio example?",
        ]

        for i, question in enumerate(questions, 1):
            print(f"Turn {i}: {question}")
            result = await manager.chat(session_id, question)
            print(f"  Reply (positions {result.user_position}-{result.assistant_position}):")
            print(f"  {result.text[:120]}")

            if result.compaction_triggered:
                assert result.compaction is not None
                print(
                    f"  *** Folded {result.compaction.summarized_turns} turns into the summary ***"
                )
            print()

        page = await manager.history(session_id, limit=4)
        print(f"Current summary:\n{page.summary or '(none yet)'}\n")
        print("Most recent turns:")
        for turn in page.turns:
            print(f"  [{turn.position}] {turn.role}: {turn.text[:80]}")

        older = await manager.history(session_id, limit=4, before_position=page.next_before)
        print(f"\nOlder page holds {len(older.turns)} turns.")

    print("\nManager closed cleanly.")


if __name__ == "__main__":
    asyncio.run(main())
