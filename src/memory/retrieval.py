"""Retrieval stage: pick durable memories relevant to the current turn.

Ranking is a fixed lexical heuristic, not a vector search: a memory scores
the number of its words found in a keyword set built from this turn's
synthesis output and the recent dialogue, divided by the square root of
its word count.
"""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING

from src.backend.models import MemoryStats, RetrievedMemory
from src.memory.models import StageOutcome

if TYPE_CHECKING:
    from collections.abc import Iterable

    from src.backend.base import MemoryBackend
    from src.conversations.models import Message
    from src.memory.models import SynthesisResult

logger = logging.getLogger(__name__)

MIN_KEYWORD_LENGTH = 4
CONTEXT_MESSAGES = 5
SEARCH_POOL_SIZE = 100


def _words(text: str) -> list[str]:
    return text.lower().split()


def build_keywords(
    synthesis_result: SynthesisResult, conversation_context: list[Message]
) -> set[str]:
    """Collect words longer than three characters from this turn's signals."""
    sources: list[str] = [m.content for m in synthesis_result.extracted_memories]
    sources.extend(synthesis_result.elaboration_topics)
    sources.extend(m.content for m in conversation_context[-CONTEXT_MESSAGES:])
    return {w for text in sources for w in _words(text) if len(w) >= MIN_KEYWORD_LENGTH}


def score_memory(content: str, keywords: set[str]) -> float:
    words = _words(content)
    if not words:
        return 0.0
    hits = sum(1 for w in words if w in keywords)
    return hits / math.sqrt(len(words))


def rank_memories(
    memories: Iterable[RetrievedMemory], keywords: set[str]
) -> list[RetrievedMemory]:
    """Score copies of *memories* and sort them, best first.

    ``sorted`` is stable, so equal scores keep the backend's order.
    """
    scored = [
        m.model_copy(update={"relevance_score": score_memory(m.content, keywords)})
        for m in memories
    ]
    return sorted(scored, key=lambda m: m.relevance_score, reverse=True)


class MemoryRetriever:
    """Fetches and ranks memories from a memory backend."""

    def __init__(self, backend: MemoryBackend) -> None:
        self._backend = backend

    async def retrieve_context(
        self,
        synthesis_result: SynthesisResult,
        conversation_context: list[Message],
        limit: int = 10,
    ) -> StageOutcome[list[RetrievedMemory]]:
        """Return up to *limit* memories ranked against this turn.

        Backend failures degrade to an empty list.
        """
        try:
            memories = await self._backend.get_memories(limit=limit)
        except Exception as exc:
            logger.exception("Memory retrieval failed (non-fatal)")
            return StageOutcome.fallback([], str(exc))

        keywords = build_keywords(synthesis_result, conversation_context)
        ranked = rank_memories(memories, keywords)[:limit]
        logger.debug("Retrieved %d memories (%d keywords)", len(ranked), len(keywords))
        return StageOutcome.ok(ranked)

    async def search_memories(self, query: str, limit: int = 10) -> list[RetrievedMemory]:
        """Case-insensitive keyword search (for debugging and admin use)."""
        try:
            memories = await self._backend.get_memories(limit=SEARCH_POOL_SIZE)
        except Exception:
            logger.exception("Memory search failed")
            return []

        query_words = _words(query)
        if not query_words:
            return []
        matches = [
            m for m in memories if any(w in m.content.lower() for w in query_words)
        ]
        return matches[:limit]

    async def get_stats(self) -> MemoryStats:
        try:
            return await self._backend.get_memory_stats()
        except Exception:
            logger.exception("Failed to get memory stats")
            return MemoryStats()
