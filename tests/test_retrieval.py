"""Tests for memory retrieval: keyword scoring, ranking and degradation."""

import math
from unittest.mock import AsyncMock

import pytest

from src.backend.in_memory import InMemoryBackend
from src.backend.models import RetrievedMemory
from src.conversations.models import Message, MessageRole
from src.errors import BackendError
from src.memory.models import ExtractedMemory, MemoryCategory, SynthesisResult
from src.memory.retrieval import MemoryRetriever, build_keywords, rank_memories, score_memory


def _memory(id: str, content: str) -> RetrievedMemory:
    return RetrievedMemory(id=id, content=content)


def _message(content: str) -> Message:
    return Message(id=content, conversation_id="c1", role=MessageRole.USER, content=content)


@pytest.fixture
def retriever(backend: InMemoryBackend) -> MemoryRetriever:
    return MemoryRetriever(backend)


# -- Scoring -------------------------------------------------------------------


class TestKeywords:
    def test_collects_long_words_lowercased(self):
        synthesis = SynthesisResult(
            extracted_memories=[
                ExtractedMemory("Training for a Marathon", MemoryCategory.GOAL, 0.9)
            ],
            elaboration_topics=["knee pain"],
        )
        keywords = build_keywords(synthesis, [_message("The gym was busy")])
        assert keywords == {"training", "marathon", "knee", "pain", "busy"}

    def test_only_last_five_messages(self):
        context = [_message(f"word{i}") for i in range(7)]
        keywords = build_keywords(SynthesisResult(), context)
        assert keywords == {f"word{i}" for i in range(2, 7)}


class TestScoreMemory:
    def test_normalized_by_length(self):
        assert score_memory("Runs every morning", {"runs"}) == pytest.approx(1 / math.sqrt(3))

    def test_case_insensitive(self):
        assert score_memory("MARATHON", {"marathon"}) == 1.0

    def test_empty_content(self):
        assert score_memory("", {"anything"}) == 0.0

    def test_no_hits(self):
        assert score_memory("Likes tea", {"coffee"}) == 0.0


def test_rank_is_stable_on_ties():
    memories = [_memory("a", "tea"), _memory("b", "marathon"), _memory("c", "coffee")]
    ranked = rank_memories(memories, {"marathon"})
    assert [m.id for m in ranked] == ["b", "a", "c"]
    assert memories[1].relevance_score == 1.0  # inputs untouched
    assert ranked[0].relevance_score == 1.0
    assert ranked[1].relevance_score == 0.0


# -- MemoryRetriever -----------------------------------------------------------


async def test_retrieve_context_ranks_backend_memories(
    retriever: MemoryRetriever, backend: InMemoryBackend
) -> None:
    await backend.create_memory("Sister visited last weekend")
    await backend.create_memory("Started a new job at the bakery")

    synthesis = SynthesisResult(elaboration_topics=["sister visit"])
    outcome = await retriever.retrieve_context(synthesis, [], limit=5)

    assert outcome.degraded is False
    assert [m.content for m in outcome.value] == [
        "Sister visited last weekend",
        "Started a new job at the bakery",
    ]
    assert outcome.value[0].relevance_score > 0
    assert outcome.value[1].relevance_score == 0


async def test_retrieve_context_respects_limit(
    retriever: MemoryRetriever, backend: InMemoryBackend
) -> None:
    for i in range(4):
        await backend.create_memory(f"memory {i}")

    outcome = await retriever.retrieve_context(SynthesisResult(), [], limit=2)
    assert len(outcome.value) == 2


async def test_retrieve_context_degrades_on_failure(
    retriever: MemoryRetriever, backend: InMemoryBackend
) -> None:
    backend.get_memories = AsyncMock(side_effect=BackendError("HTTP 502"))

    outcome = await retriever.retrieve_context(SynthesisResult(), [], limit=5)

    assert outcome.value == []
    assert outcome.degraded is True
    assert "HTTP 502" in outcome.error


async def test_empty_store_is_not_degraded(retriever: MemoryRetriever) -> None:
    outcome = await retriever.retrieve_context(SynthesisResult(), [], limit=5)
    assert outcome.value == []
    assert outcome.degraded is False


async def test_search_memories(retriever: MemoryRetriever, backend: InMemoryBackend) -> None:
    await backend.create_memory("Goes to the Gym on Mondays")
    await backend.create_memory("Likes hiking")
    await backend.create_memory("Gym membership renewed")

    results = await retriever.search_memories("gym", limit=10)
    assert [m.content for m in results] == ["Gym membership renewed", "Goes to the Gym on Mondays"]

    assert len(await retriever.search_memories("gym", limit=1)) == 1
    assert await retriever.search_memories("   ") == []


async def test_search_memories_failure_returns_empty(
    retriever: MemoryRetriever, backend: InMemoryBackend
) -> None:
    backend.get_memories = AsyncMock(side_effect=BackendError("down"))
    assert await retriever.search_memories("gym") == []


async def test_get_stats(retriever: MemoryRetriever, backend: InMemoryBackend) -> None:
    await backend.create_memory("Runs", {"category": "goal"})
    stats = await retriever.get_stats()
    assert stats.total_memories == 1
    assert stats.memories_by_category == {"goal": 1}


async def test_get_stats_failure_returns_zero(
    retriever: MemoryRetriever, backend: InMemoryBackend
) -> None:
    backend.get_memory_stats = AsyncMock(side_effect=BackendError("down"))
    stats = await retriever.get_stats()
    assert stats.total_memories == 0
    assert stats.memories_by_category == {}
