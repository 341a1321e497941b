"""In-process memory backend for development and tests.

Mirrors the hosted service's behavior closely enough to drive the agent
loop end to end: unknown assistants, threads and memories raise
``NotFoundError``, and ``MemoryMode.AUTO`` exchanges write exactly one
memory.  Replies come from an optional *responder* (usually an LLM
pass-through) or, without one, from a fixed template.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import TYPE_CHECKING, Any

from src.backend.base import MemoryBackend
from src.backend.models import (
    Assistant,
    AssistantConfig,
    AssistantReply,
    Memory,
    MemoryMode,
    MemoryStats,
    RetrievedMemory,
    Thread,
)
from src.errors import NotFoundError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable

    Responder = Callable[[list[dict[str, str]], str | None], Awaitable[str]]

logger = logging.getLogger(__name__)


def mock_reply(content: str) -> str:
    return f'Mock response to: "{content}"'


def derived_memory(content: str) -> str:
    return f'Memory derived from: "{content}"'


class InMemoryBackend(MemoryBackend):
    """Dictionary-backed ``MemoryBackend``.

    Args:
        assistant_id: Pre-registered assistant ID, as if configured from
            the environment against an existing remote assistant.
        responder: Async callable ``(history, system_prompt) -> reply``.
            *history* is the thread's messages in API format, ending with
            the new user message.
    """

    def __init__(
        self,
        assistant_id: str | None = None,
        responder: Responder | None = None,
    ) -> None:
        super().__init__(assistant_id)
        self._responder = responder
        self.assistants: dict[str, Assistant] = {}
        self.threads: dict[str, Thread] = {}
        self.messages: dict[str, list[dict[str, str]]] = {}
        self.memories: dict[str, list[Memory]] = {}

        if assistant_id:
            self.assistants[assistant_id] = Assistant(
                assistant_id=assistant_id,
                name="Journal Assistant",
                system_prompt="",
            )
            self.memories[assistant_id] = []

    def _reset(self) -> None:
        """Drop all state (for testing)."""
        self.assistants.clear()
        self.threads.clear()
        self.messages.clear()
        self.memories.clear()
        self._assistant_id = None

    # -- Assistant -------------------------------------------------------------

    async def get_assistant(self, assistant_id: str) -> Assistant:
        assistant = self.assistants.get(assistant_id)
        if assistant is None:
            msg = f"Assistant {assistant_id} not found"
            raise NotFoundError(msg)
        return assistant

    async def _create_assistant(self, config: AssistantConfig) -> Assistant:
        assistant = Assistant(
            assistant_id=f"asst_{uuid.uuid4()}",
            name=config.name,
            system_prompt=config.system_prompt,
        )
        self.assistants[assistant.assistant_id] = assistant
        self.memories[assistant.assistant_id] = []
        return assistant

    # -- Threads ---------------------------------------------------------------

    async def create_thread(self) -> str:
        self.get_assistant_id()
        return self._register_thread(f"thread_{uuid.uuid4()}")

    def _register_thread(self, thread_id: str) -> str:
        self.threads[thread_id] = Thread(thread_id=thread_id)
        self.messages[thread_id] = []
        return thread_id

    async def get_thread(self, thread_id: str) -> Thread:
        thread = self.threads.get(thread_id)
        if thread is None:
            msg = f"Thread {thread_id} not found"
            raise NotFoundError(msg)
        return thread

    async def delete_thread(self, thread_id: str) -> None:
        if thread_id not in self.threads:
            msg = f"Thread {thread_id} not found"
            raise NotFoundError(msg)
        del self.threads[thread_id]
        self.messages.pop(thread_id, None)

    # -- Messages --------------------------------------------------------------

    def _thread_log(self, thread_id: str) -> list[dict[str, str]]:
        # Threads vanish when the process restarts; recreate instead of failing.
        if thread_id not in self.threads:
            logger.warning("Thread %s not found, recreating it", thread_id)
            self._register_thread(thread_id)
        return self.messages[thread_id]

    async def _generate(
        self, history: list[dict[str, str]], system_prompt: str | None
    ) -> str:
        if self._responder is None:
            return mock_reply(history[-1]["content"])
        if system_prompt is None and self._assistant_id in self.assistants:
            system_prompt = self.assistants[self._assistant_id].system_prompt or None
        return await self._responder(list(history), system_prompt)

    async def add_message(
        self,
        thread_id: str,
        content: str,
        memory_mode: MemoryMode,
        system_prompt: str | None = None,
    ) -> AssistantReply:
        log = self._thread_log(thread_id)
        log.append({"role": "user", "content": content})

        reply = await self._generate(log, system_prompt)
        log.append({"role": "assistant", "content": reply})

        if memory_mode == MemoryMode.AUTO:
            await self.create_memory(derived_memory(content))

        return AssistantReply(content=reply)

    async def add_message_streaming(
        self,
        thread_id: str,
        content: str,
        memory_mode: MemoryMode,
        system_prompt: str | None = None,
    ) -> AsyncIterator[str]:
        log = self._thread_log(thread_id)
        log.append({"role": "user", "content": content})

        reply = await self._generate(log, system_prompt)
        words = reply.split(" ")
        for i, word in enumerate(words):
            await asyncio.sleep(0)
            yield word if i == len(words) - 1 else f"{word} "

        log.append({"role": "assistant", "content": reply})
        if memory_mode == MemoryMode.AUTO:
            await self.create_memory(derived_memory(content))

    # -- Memories --------------------------------------------------------------

    def _assistant_memories(self) -> list[Memory]:
        return self.memories.setdefault(self.get_assistant_id(), [])

    async def create_memory(
        self, content: str, metadata: dict[str, Any] | None = None
    ) -> Memory:
        memory = Memory(id=f"mem_{uuid.uuid4()}", content=content, metadata=metadata or {})
        self._assistant_memories().append(memory)
        return memory

    async def get_memories(self, limit: int | None = None) -> list[RetrievedMemory]:
        # Reverse first so same-timestamp memories still come newest first.
        ordered = sorted(
            reversed(self._assistant_memories()),
            key=lambda m: m.created_at,
            reverse=True,
        )
        if limit is not None:
            ordered = ordered[:limit]
        return [RetrievedMemory.from_memory(m) for m in ordered]

    async def get_memory_stats(self) -> MemoryStats:
        return MemoryStats.from_memories(self._assistant_memories())

    async def delete_memory(self, memory_id: str) -> None:
        memories = self._assistant_memories()
        remaining = [m for m in memories if m.id != memory_id]
        if len(remaining) == len(memories):
            msg = f"Memory {memory_id} not found"
            raise NotFoundError(msg)
        self.memories[self.get_assistant_id()] = remaining
