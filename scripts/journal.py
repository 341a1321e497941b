#!/usr/bin/env python3
"""Interactive journaling session in the terminal.

Drives the full agent loop against the configured memory backend
(``MEMORY_BACKEND=memory`` or ``backboard``).  Useful for trying prompts
and watching the planning state without a UI.

    uv run python scripts/journal.py
    uv run python scripts/journal.py --debug
    uv run python scripts/journal.py --memories
    uv run python scripts/journal.py --search "gym"
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Allow running from project root
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from src.app import create_app
from src.config import settings


async def show_memories(query: str | None) -> None:
    app = await create_app()
    if query:
        memories = await app.retriever.search_memories(query, limit=20)
    else:
        memories = await app.backend.get_memories(limit=50)
    stats = await app.retriever.get_stats()

    print(f"Total memories: {stats.total_memories}")
    for category, count in sorted(stats.memories_by_category.items()):
        print(f"  {category}: {count}")
    print()
    for memory in memories:
        print(f"[{memory.created_at:%Y-%m-%d %H:%M}] {memory.content}")


async def chat(user_id: str, debug: bool) -> None:
    app = await create_app()
    created = await app.conversations.create(user_id=user_id, title="Terminal session")

    greeting = await app.service.start_conversation(created.id, user_id)
    print(f"\nassistant> {greeting.content}\n")

    while True:
        try:
            text = await asyncio.to_thread(input, "you> ")
        except (EOFError, KeyboardInterrupt):
            print()
            break
        if not text.strip():
            continue

        result = await app.service.send_message(created.id, user_id, text)
        print(f"\nassistant> {result.content}\n")
        if debug:
            print(
                f"  [strategy={result.debug.response_strategy} "
                f"memories={result.debug.extracted_memories_count} "
                f"retrieved={result.debug.retrieved_context_count}]\n"
            )
        if result.should_terminate:
            print(f"(session ended: {result.termination_reason})")
            break


def main() -> None:
    parser = argparse.ArgumentParser(description="Journal in the terminal.")
    parser.add_argument("--user", default="local-user", help="User ID to journal as")
    parser.add_argument("--debug", action="store_true", help="Show planning state per turn")
    parser.add_argument("--memories", action="store_true", help="List stored memories and exit")
    parser.add_argument("--search", help="Search stored memories and exit")
    args = parser.parse_args()

    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=logging.DEBUG if args.debug else getattr(logging, settings.log_level),
    )

    if args.memories or args.search:
        asyncio.run(show_memories(args.search))
    else:
        asyncio.run(chat(args.user, args.debug))


if __name__ == "__main__":
    main()
