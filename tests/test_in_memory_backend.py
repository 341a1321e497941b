"""Tests for InMemoryBackend and the shared MemoryBackend behavior."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from src.backend.base import temporary_thread
from src.backend.in_memory import InMemoryBackend, derived_memory, mock_reply
from src.backend.models import AssistantConfig, MemoryMode
from src.errors import FailedPreconditionError, NotFoundError

ASSISTANT_ID = "asst_test"
CONFIG = AssistantConfig(name="Joanna", system_prompt="Be kind.")


# -- Assistant lifecycle -------------------------------------------------------


async def test_uninitialized_backend_refuses_work() -> None:
    backend = InMemoryBackend()
    with pytest.raises(FailedPreconditionError, match="assistant not initialized"):
        backend.get_assistant_id()
    with pytest.raises(FailedPreconditionError):
        await backend.create_thread()
    with pytest.raises(FailedPreconditionError):
        await backend.get_memories()


async def test_ensure_assistant_keeps_existing(backend: InMemoryBackend) -> None:
    assert await backend.ensure_assistant(CONFIG) == ASSISTANT_ID
    assert list(backend.assistants) == [ASSISTANT_ID]


async def test_ensure_assistant_is_idempotent() -> None:
    backend = InMemoryBackend()
    first = await backend.ensure_assistant(CONFIG)
    second = await backend.ensure_assistant(CONFIG)
    assert first == second
    assert len(backend.assistants) == 1
    assert backend.assistants[first].system_prompt == "Be kind."


async def test_ensure_assistant_concurrent_callers_share_one() -> None:
    backend = InMemoryBackend()
    ids = await asyncio.gather(*(backend.ensure_assistant(CONFIG) for _ in range(5)))
    assert len(set(ids)) == 1
    assert len(backend.assistants) == 1


async def test_ensure_assistant_replaces_stale_id() -> None:
    backend = InMemoryBackend(assistant_id="asst_gone")
    backend._reset()
    backend._assistant_id = "asst_gone"

    new_id = await backend.ensure_assistant(CONFIG)

    assert new_id != "asst_gone"
    assert backend.get_assistant_id() == new_id


async def test_get_assistant_unknown_raises(backend: InMemoryBackend) -> None:
    with pytest.raises(NotFoundError):
        await backend.get_assistant("asst_nope")


# -- Threads -------------------------------------------------------------------


async def test_thread_lifecycle(backend: InMemoryBackend) -> None:
    thread_id = await backend.create_thread()
    thread = await backend.get_thread(thread_id)
    assert thread.thread_id == thread_id

    await backend.delete_thread(thread_id)
    with pytest.raises(NotFoundError):
        await backend.get_thread(thread_id)


async def test_delete_unknown_thread_leaves_state_untouched(backend: InMemoryBackend) -> None:
    kept = await backend.create_thread()

    with pytest.raises(NotFoundError):
        await backend.delete_thread("t_unknown")

    assert list(backend.threads) == [kept]
    assert list(backend.messages) == [kept]


async def test_temporary_thread_is_deleted_on_error(backend: InMemoryBackend) -> None:
    with pytest.raises(ValueError):
        async with temporary_thread(backend) as thread_id:
            assert thread_id in backend.threads
            raise ValueError("boom")
    assert backend.threads == {}


async def test_temporary_thread_swallows_delete_failure(backend: InMemoryBackend) -> None:
    backend.delete_thread = AsyncMock(side_effect=NotFoundError("gone"))
    async with temporary_thread(backend) as thread_id:
        pass
    backend.delete_thread.assert_awaited_once_with(thread_id)


# -- Messages ------------------------------------------------------------------


async def test_add_message_auto_writes_exactly_one_memory(backend: InMemoryBackend) -> None:
    thread_id = await backend.create_thread()

    reply = await backend.add_message(thread_id, "I went hiking", MemoryMode.AUTO)

    assert reply.content == mock_reply("I went hiking")
    assert reply.role == "assistant"
    memories = await backend.get_memories()
    assert [m.content for m in memories] == [derived_memory("I went hiking")]


@pytest.mark.parametrize("mode", [MemoryMode.READONLY, MemoryMode.OFF])
async def test_add_message_without_auto_writes_nothing(
    backend: InMemoryBackend, mode: MemoryMode
) -> None:
    thread_id = await backend.create_thread()
    await backend.add_message(thread_id, "hello", mode)
    assert await backend.get_memories() == []


async def test_add_message_records_history(backend: InMemoryBackend) -> None:
    thread_id = await backend.create_thread()
    await backend.add_message(thread_id, "first", MemoryMode.OFF)
    assert backend.messages[thread_id] == [
        {"role": "user", "content": "first"},
        {"role": "assistant", "content": mock_reply("first")},
    ]


async def test_add_message_recreates_unknown_thread(backend: InMemoryBackend) -> None:
    reply = await backend.add_message("thread_lost", "still here?", MemoryMode.READONLY)
    assert reply.content == mock_reply("still here?")
    assert "thread_lost" in backend.threads


async def test_responder_receives_history_and_prompt() -> None:
    responder = AsyncMock(return_value="Tell me more.")
    backend = InMemoryBackend(assistant_id=ASSISTANT_ID, responder=responder)
    thread_id = await backend.create_thread()

    reply = await backend.add_message(thread_id, "hi", MemoryMode.READONLY, system_prompt="SYS")

    assert reply.content == "Tell me more."
    history, system_prompt = responder.await_args.args
    assert history == [{"role": "user", "content": "hi"}]
    assert system_prompt == "SYS"


async def test_responder_falls_back_to_assistant_prompt() -> None:
    responder = AsyncMock(return_value="ok")
    backend = InMemoryBackend(responder=responder)
    await backend.ensure_assistant(CONFIG)
    thread_id = await backend.create_thread()

    await backend.add_message(thread_id, "hi", MemoryMode.OFF)

    assert responder.await_args.args[1] == "Be kind."


async def test_streaming_reassembles_reply(backend: InMemoryBackend) -> None:
    thread_id = await backend.create_thread()

    chunks = [
        chunk
        async for chunk in backend.add_message_streaming(thread_id, "rainy day", MemoryMode.AUTO)
    ]

    assert len(chunks) > 1
    assert "".join(chunks) == mock_reply("rainy day")
    assert len(await backend.get_memories()) == 1


# -- Memories ------------------------------------------------------------------


async def test_memories_newest_first_with_limit(backend: InMemoryBackend) -> None:
    for text in ("one", "two", "three"):
        await backend.create_memory(text)

    memories = await backend.get_memories(limit=2)
    assert [m.content for m in memories] == ["three", "two"]


async def test_memory_stats_count_categories(backend: InMemoryBackend) -> None:
    await backend.create_memory("runs daily", {"category": "habit"})
    await backend.create_memory("wants a marathon", {"category": "goal"})
    await backend.create_memory("walks", {"category": "habit"})
    await backend.create_memory("untagged")

    stats = await backend.get_memory_stats()
    assert stats.total_memories == 4
    assert stats.memories_by_category == {"habit": 2, "goal": 1}


async def test_delete_memory(backend: InMemoryBackend) -> None:
    memory = await backend.create_memory("forget me")
    await backend.delete_memory(memory.id)
    assert await backend.get_memories() == []

    with pytest.raises(NotFoundError):
        await backend.delete_memory(memory.id)


async def test_memories_limit_zero_returns_none(backend: InMemoryBackend) -> None:
    for text in ("one", "two"):
        await backend.create_memory(text)

    assert await backend.get_memories(limit=0) == []
    assert len(await backend.get_memories(limit=None)) == 2
